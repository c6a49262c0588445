"""
Semantic long-term memory for agents.

Memories are embedded once, when they are added, and recalled by cosine
similarity against a query embedding. Insertion batches every new memory of a
tick into a single gateway round trip; recall is a pure local computation
over vectors already held by the persistence backend.

Key responsibilities:
- Embed and append memories (never update or delete them)
- Restrict recall to the owning agent
- Rank by similarity, breaking ties by recency
"""

import math
import uuid
from typing import List, Optional, Sequence

from townsquare.schemas import Memory, NewMemory
from .config import Config
from .gateway import LLMGateway
from .logging_utils import Color, colored, debug_enabled, log_deterministic, preview
from .persistence import InMemoryPersistence, MemoryPersistence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    A zero vector has no direction, so its similarity to anything is 0.0.

    Raises:
        ValueError: If the vectors have different lengths
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank_memories(
    memories: Sequence[Memory],
    query_embedding: Sequence[float],
    limit: int,
) -> List[Memory]:
    """Order memories by similarity to the query, most similar first.

    Equal scores fall back to the most recent ``created_at`` first.
    """
    if limit <= 0:
        return []

    scored = [(cosine_similarity(query_embedding, mem.embedding), mem) for mem in memories]
    scored.sort(key=lambda item: (item[0], item[1].created_at.timestamp()), reverse=True)
    return [mem for _, mem in scored[:limit]]


class MemoryStore:
    """Embedding-backed memory store.

    Args:
        gateway: Gateway used to embed memory descriptions
        persistence: Backend holding the memories (defaults to in-memory)
        default_limit: Recall size when callers do not pass one
    """

    def __init__(
        self,
        gateway: LLMGateway,
        persistence: Optional[MemoryPersistence] = None,
        *,
        default_limit: Optional[int] = None,
    ):
        self.gateway = gateway
        self.persistence = persistence or InMemoryPersistence()
        self.default_limit = Config.MEMORY_RECALL_LIMIT if default_limit is None else default_limit

    async def initialize(self) -> None:
        await self.persistence.initialize()

    async def close(self) -> None:
        await self.persistence.close()

    async def add_memories(self, records: Sequence[NewMemory]) -> List[Memory]:
        """
        Embed and store new memories.

        All descriptions are embedded in one batch call; the i-th embedding
        belongs to the i-th record.

        Args:
            records: Memories to add, in the order they should be stored

        Returns:
            The stored memories, in input order

        Raises:
            ProviderError: If the embedding call fails
        """
        records = list(records)
        if not records:
            return []

        batch = await self.gateway.embed_batch([record.description for record in records])
        memories = [
            Memory(
                id=uuid.uuid4(),
                owner_id=record.owner_id,
                description=record.description,
                embedding=embedding,
                created_at=record.created_at,
                data=record.data,
            )
            for record, embedding in zip(records, batch.embeddings)
        ]

        await self.persistence.save_memories(memories)
        log_deterministic(
            f"[Memory] Stored {len(memories)} memor{'y' if len(memories) == 1 else 'ies'} "
            f"({batch.usage.total_tokens} tokens, {batch.latency_ms} ms)"
        )
        return memories

    async def access_memories(
        self,
        owner_id: str,
        query_embedding: Sequence[float],
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """
        Recall the owner's memories most similar to ``query_embedding``.

        Args:
            owner_id: Agent whose memories are searched
            query_embedding: Embedding of the query text
            limit: Maximum memories to return (defaults to ``default_limit``)

        Returns:
            Memories, most relevant first; empty if the owner has none
        """
        limit = self.default_limit if limit is None else limit
        candidates = await self.persistence.get_memories(owner_id)
        # Backends filter by owner already; keep the guarantee local as well.
        candidates = [mem for mem in candidates if mem.owner_id == owner_id]
        ranked = rank_memories(candidates, query_embedding, limit)

        if debug_enabled("DEBUG_MEMORY"):
            print(colored(f"\n  [DEBUG_MEMORY] {owner_id} - Recalled {len(ranked)} of {len(candidates)}:", Color.INFO))
            for i, mem in enumerate(ranked, 1):
                print(colored(f"    {i}. {preview(mem.description, 60)}", Color.INFO))

        return ranked
