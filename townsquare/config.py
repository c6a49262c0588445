"""
Townsquare Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

from .errors import ConfigurationError

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    # Any OpenAI-compatible server works (vLLM, LM Studio, Ollama's /v1 endpoint)
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-3.5-turbo-16k")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-ada-002")
    # Must match the embedding model; every stored vector has this length
    EMBEDDING_DIMENSION: int = int(os.getenv("EMBEDDING_DIMENSION", "1536"))
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

    # Memory Configuration
    MEMORY_BACKEND: str = os.getenv("MEMORY_BACKEND", "memory")
    MEMORY_DIR: Path = Path(os.getenv("MEMORY_DIR", "memories"))
    DATABASE_URL: str = os.getenv("DATABASE_URL", "postgresql://localhost/townsquare")
    MEMORY_RECALL_LIMIT: int = int(os.getenv("MEMORY_RECALL_LIMIT", "5"))

    # Agent Behaviour
    CONVERSATION_LENGTH_LIMIT: int = int(os.getenv("CONVERSATION_LENGTH_LIMIT", "10"))
    WORLD_WIDTH: int = int(os.getenv("WORLD_WIDTH", "48"))
    WORLD_HEIGHT: int = int(os.getenv("WORLD_HEIGHT", "32"))

    # Scheduling
    CONVERSATION_ROUNDS: int = int(os.getenv("CONVERSATION_ROUNDS", "10"))
    # 1 means a failed tick is surfaced immediately
    TICK_MAX_ATTEMPTS: int = int(os.getenv("TICK_MAX_ATTEMPTS", "1"))

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if not cls.OPENAI_API_KEY:
            raise ConfigurationError(
                "OPENAI_API_KEY is required to call the language model. "
                "Set it in the environment or a .env file; for a local "
                "OpenAI-compatible server, also set OPENAI_BASE_URL."
            )

        if cls.MEMORY_BACKEND not in ("memory", "json", "postgres"):
            raise ConfigurationError(
                f"MEMORY_BACKEND must be one of memory, json, postgres (got {cls.MEMORY_BACKEND!r})"
            )

        positive = {
            "EMBEDDING_DIMENSION": cls.EMBEDDING_DIMENSION,
            "LLM_TIMEOUT_SECONDS": cls.LLM_TIMEOUT_SECONDS,
            "MEMORY_RECALL_LIMIT": cls.MEMORY_RECALL_LIMIT,
            "CONVERSATION_LENGTH_LIMIT": cls.CONVERSATION_LENGTH_LIMIT,
            "WORLD_WIDTH": cls.WORLD_WIDTH,
            "WORLD_HEIGHT": cls.WORLD_HEIGHT,
            "TICK_MAX_ATTEMPTS": cls.TICK_MAX_ATTEMPTS,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive (got {value})")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Townsquare Configuration:",
            f"  LLM Endpoint: {cls.OPENAI_BASE_URL}",
            f"  Chat Model: {cls.CHAT_MODEL}",
            f"  Embedding Model: {cls.EMBEDDING_MODEL} ({cls.EMBEDDING_DIMENSION} dims)",
            f"  API Key: {'set' if cls.OPENAI_API_KEY else 'missing'}",
            f"  Memory Backend: {cls.MEMORY_BACKEND}",
            f"  World: {cls.WORLD_WIDTH}x{cls.WORLD_HEIGHT}",
            f"  Rounds: {cls.CONVERSATION_ROUNDS}, Tick Attempts: {cls.TICK_MAX_ATTEMPTS}",
        ]
        return "\n".join(lines)
