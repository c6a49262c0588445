"""
MemoryPersistence interface for pluggable memory storage backends.

This module provides the abstract MemoryPersistence interface and three concrete
implementations for storing agent memories. The contract is deliberately small:
append memories, and read back every memory an owner has (embeddings included)
so the memory store can score them locally.

Three included implementations:
1. InMemoryPersistence - Dict-based storage, data lost on exit (testing, prototyping)
2. JsonPersistence - One JSONL file per owner, human-readable (small towns)
3. PostgresPersistence - Database storage via asyncpg (production)

Usage pattern:
    persistence = InMemoryPersistence()  # or JsonPersistence(), PostgresPersistence()
    await persistence.initialize()
    await persistence.save_memories(memories)
    owned = await persistence.get_memories("alice")
    await persistence.close()
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from townsquare.schemas import Memory
from .config import Config
from .errors import ConfigurationError

try:  # Optional at runtime (only needed for PostgresPersistence)
    import asyncpg
except ImportError:  # pragma: no cover - asyncpg may not be installed for json/memory usage
    asyncpg = None


class MemoryPersistence(ABC):
    """Abstract base class for durable memory storage.

    Implementations never update or delete a stored memory; retention and
    compaction are outside this contract.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections, create tables or directories."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections and file handles."""
        pass

    @abstractmethod
    async def save_memories(self, memories: Sequence[Memory]) -> None:
        """
        Append memories in the given order.

        Args:
            memories: Fully embedded memories to store

        Raises:
            Exception: If the write fails
        """
        pass

    @abstractmethod
    async def get_memories(self, owner_id: str) -> List[Memory]:
        """
        Return every memory owned by ``owner_id`` with its full embedding.

        Args:
            owner_id: Agent identifier

        Returns:
            Memories in insertion order (empty if the owner has none)
        """
        pass


class InMemoryPersistence(MemoryPersistence):
    """In-memory persistence using a dict keyed by owner.

    Perfect for unit tests and short demo runs; everything is lost on exit.
    """

    def __init__(self):
        self.memories: Dict[str, List[Memory]] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        # Data is kept so callers can inspect memories after a run
        pass

    async def save_memories(self, memories: Sequence[Memory]) -> None:
        for memory in memories:
            self.memories.setdefault(memory.owner_id, []).append(memory)

    async def get_memories(self, owner_id: str) -> List[Memory]:
        return list(self.memories.get(owner_id, []))


class JsonPersistence(MemoryPersistence):
    """File-based persistence with one append-only JSONL stream per owner.

    Directory structure:
    ```
    {base_path}/
      alice.jsonl
      bob.jsonl
    ```

    All file I/O runs in a worker thread (asyncio.to_thread). There is no
    locking, so only one process should write a given directory.
    """

    def __init__(self, base_path: Path | str | None = None):
        self.base_path = Path(base_path) if base_path is not None else Config.MEMORY_DIR

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        return None

    async def save_memories(self, memories: Sequence[Memory]) -> None:
        if not memories:
            return

        by_owner: Dict[str, List[str]] = {}
        for memory in memories:
            by_owner.setdefault(memory.owner_id, []).append(memory.model_dump_json())

        def _append() -> None:
            self.base_path.mkdir(parents=True, exist_ok=True)
            for owner_id, lines in by_owner.items():
                with self._owner_path(owner_id).open("a", encoding="utf-8") as handle:
                    for line in lines:
                        handle.write(line)
                        handle.write("\n")

        await asyncio.to_thread(_append)

    async def get_memories(self, owner_id: str) -> List[Memory]:
        path = self._owner_path(owner_id)
        if not path.exists():
            return []

        lines = await asyncio.to_thread(lambda: path.read_text("utf-8").splitlines())
        return [Memory.model_validate_json(line) for line in lines if line]

    def _owner_path(self, owner_id: str) -> Path:
        # Owner ids become file names and must stay inside base_path
        if not owner_id or owner_id in (".", "..") or "/" in owner_id or "\\" in owner_id:
            raise ValueError(f"Owner id {owner_id!r} cannot be used as a file name")
        return self.base_path / f"{owner_id}.jsonl"


class PostgresPersistence(MemoryPersistence):
    """PostgreSQL-backed persistence using an asyncpg connection pool.

    Embeddings are stored as ``double precision[]`` and read back whole;
    similarity scoring happens in the memory store, not in SQL.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS memories (
            id uuid PRIMARY KEY,
            owner_id text NOT NULL,
            description text NOT NULL,
            embedding double precision[] NOT NULL,
            created_at timestamptz NOT NULL,
            data jsonb NOT NULL
        );
        CREATE INDEX IF NOT EXISTS memories_owner_idx ON memories (owner_id);
    """

    def __init__(self, database_url: Optional[str] = None):
        if asyncpg is None:  # pragma: no cover - handled during runtime when dependency missing
            raise ImportError(
                "asyncpg is required for PostgresPersistence. Install with `pip install asyncpg`."
            )

        self.database_url = database_url or Config.DATABASE_URL
        self.pool: Optional["asyncpg.Pool"] = None

    async def initialize(self) -> None:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.database_url)
            async with self.pool.acquire() as conn:
                await conn.execute(self.SCHEMA)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    async def save_memories(self, memories: Sequence[Memory]) -> None:
        assert self.pool is not None, "Persistence not initialized"

        if not memories:
            return

        query = """
            INSERT INTO memories (id, owner_id, description, embedding, created_at, data)
            VALUES ($1, $2, $3, $4::double precision[], $5, $6::jsonb)
        """
        records = [
            (
                memory.id,
                memory.owner_id,
                memory.description,
                memory.embedding,
                memory.created_at,
                json.dumps(memory.data.model_dump(mode="json")),
            )
            for memory in memories
        ]

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(query, records)

    async def get_memories(self, owner_id: str) -> List[Memory]:
        assert self.pool is not None, "Persistence not initialized"

        query = """
            SELECT id, owner_id, description, embedding, created_at, data
            FROM memories
            WHERE owner_id = $1
            ORDER BY created_at
        """

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, owner_id)

        return [
            Memory(
                id=row["id"],
                owner_id=row["owner_id"],
                description=row["description"],
                embedding=list(row["embedding"]),
                created_at=row["created_at"],
                data=json.loads(row["data"]),
            )
            for row in rows
        ]


def build_persistence(backend: Optional[str] = None) -> MemoryPersistence:
    """Instantiate the backend named by ``backend`` or ``Config.MEMORY_BACKEND``."""

    name = (backend or Config.MEMORY_BACKEND).lower()
    if name == "memory":
        return InMemoryPersistence()
    if name == "json":
        return JsonPersistence()
    if name == "postgres":
        return PostgresPersistence()
    raise ConfigurationError(
        f"Unknown memory backend {name!r}; expected memory, json, or postgres"
    )
