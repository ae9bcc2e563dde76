"""Text extraction: prompt templates, response parsing and LLM providers."""
