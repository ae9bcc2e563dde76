"""Central configuration for the memory graph."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file from project root
load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config(BaseModel):
    """All configuration for the memory graph.

    Paths are relative to the working directory unless absolute.
    Credentials should be overridden via environment or .env file.
    """

    # Storage backend: "sqlite" or "neo4j"
    backend: str = Field(default=os.getenv("MEMORY_GRAPH_BACKEND", "sqlite"))
    sqlite_path: str = Field(
        default=os.getenv("MEMORY_GRAPH_SQLITE_PATH", "data/memory_graph.db")
    )

    # Neo4j
    neo4j_uri: str = Field(default=os.getenv("NEO4J_URI", "bolt://localhost:7687"))
    neo4j_user: str = Field(default=os.getenv("NEO4J_USER", "neo4j"))
    neo4j_password: str = Field(default=os.getenv("NEO4J_PASSWORD", "password"))
    neo4j_database: str = Field(default=os.getenv("NEO4J_DATABASE", "neo4j"))

    # Text extraction providers, tried in this order
    extraction_providers: list[str] = Field(
        default_factory=lambda: [
            p.strip()
            for p in os.getenv(
                "EXTRACTION_PROVIDERS", "openai,deepseek,ollama,gemini"
            ).split(",")
            if p.strip()
        ]
    )
    openai_api_key: str = Field(default=os.getenv("OPENAI_API_KEY", ""))
    openai_base_url: str | None = Field(default=os.getenv("OPENAI_BASE_URL") or None)
    openai_model: str = Field(default=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"))
    deepseek_api_key: str = Field(default=os.getenv("DEEPSEEK_API_KEY", ""))
    deepseek_model: str = Field(default=os.getenv("DEEPSEEK_MODEL", "deepseek-chat"))
    ollama_host: str = Field(default=os.getenv("OLLAMA_HOST", "http://localhost:11434"))
    ollama_model: str = Field(default=os.getenv("OLLAMA_MODEL", "llama3.1:8b"))
    gemini_api_key: str = Field(default=os.getenv("GEMINI_API_KEY", ""))
    gemini_model: str = "gemini-2.5-flash"
    extraction_temperature: float = 0.1
    extraction_max_tokens: int = 2000

    # Ingestion
    alias_table_path: Path = Path("data/alias_table.json")
    strict_node_types: bool = Field(
        default_factory=lambda: _env_flag("MEMORY_GRAPH_STRICT_NODE_TYPES")
    )

    # Queries
    default_query_limit: int = 100
