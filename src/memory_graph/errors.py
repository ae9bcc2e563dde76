"""Error taxonomy for the memory graph.

Only StorageError (and its subclasses) is allowed to escape the agents;
everything else is turned into a ``{"success": False, "error": ...}`` value
at the agent boundary.
"""


class MemoryGraphError(Exception):
    """Base class for all memory graph errors."""


class StorageError(MemoryGraphError):
    """The persistence layer failed. Wraps the backend exception."""


class ReferentialIntegrityError(StorageError):
    """An edge endpoint does not reference an existing node."""


class NodeTypeConflictError(StorageError):
    """An upsert tried to change the type of an existing node (strict mode)."""

    def __init__(self, node_id: str, existing_type: str, new_type: str):
        self.node_id = node_id
        self.existing_type = existing_type
        self.new_type = new_type
        super().__init__(
            f"Node '{node_id}' already exists with type {existing_type}, "
            f"refusing to change it to {new_type}"
        )


class ExtractionError(MemoryGraphError):
    """The text-extraction output was unusable. Fatal to an ingest call."""


class ItemError(MemoryGraphError):
    """A single extracted entity or relationship could not be applied."""


class PlannerError(MemoryGraphError):
    """Base class for planner errors that are returned as values."""


class ValidationError(PlannerError):
    """A planner routine was called without its required context field."""


class NotFoundError(PlannerError):
    """A planner routine's root entity is absent from the graph."""
