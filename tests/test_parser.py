"""Tests for extraction response parsing."""

import pytest

from memory_graph.errors import ExtractionError
from memory_graph.extract.parser import parse_extraction_response


def test_plain_json():
    data = parse_extraction_response(
        '{"entities": [{"type": "Service", "identifier": "crm7"}], "relationships": []}'
    )
    assert data["entities"][0]["identifier"] == "crm7"
    assert data["relationships"] == []


def test_json_wrapped_in_prose():
    raw = 'Here is the result:\n```json\n{"entities": [], "relationships": []}\n```\nDone.'
    assert parse_extraction_response(raw) == {"entities": [], "relationships": []}


def test_null_lists_become_empty():
    data = parse_extraction_response('{"entities": null, "relationships": null}')
    assert data == {"entities": [], "relationships": []}


@pytest.mark.parametrize(
    "raw, message",
    [
        ("", "empty response"),
        ("no json here", "Could not parse extraction result as JSON"),
        ("{not: valid}", "Could not parse extraction result as JSON"),
        ("[1, 2]", "expected a JSON object"),
        ('{"other": 1}', "missing entities and relationships"),
        ('{"entities": []}', "missing relationships"),
        ('{"entities": "crm7", "relationships": []}', "entities must be a list"),
    ],
)
def test_invalid_responses(raw, message):
    with pytest.raises(ExtractionError, match=message):
        parse_extraction_response(raw)
