"""Shared fakes and snapshot builders for the townsquare tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from townsquare.errors import ProviderError
from townsquare.memory import MemoryStore
from townsquare.persistence import InMemoryPersistence
from townsquare.schemas import (
    Action,
    ChatMessage,
    CompletionResult,
    ConversationMessage,
    EmbeddingBatchResult,
    EmbeddingResult,
    IdleMotion,
    NearbyConversation,
    NearbyPlayer,
    Player,
    Position,
    Snapshot,
    TokenUsage,
    WalkingMotion,
)

NOW = datetime(2160, 3, 21, 10, 0, 0, tzinfo=timezone.utc)


class FakeGateway:
    """In-process gateway: canned completions, deterministic embeddings."""

    def __init__(
        self,
        *,
        summary: str = "We talked about the weather.",
        vectors: Optional[Dict[str, List[float]]] = None,
        fail_with: Optional[Exception] = None,
    ):
        self.summary = summary
        self.vectors = vectors or {}
        self.fail_with = fail_with
        self.completions: List[List[ChatMessage]] = []
        self.embed_calls: List[List[str]] = []

    def _vector(self, text: str) -> List[float]:
        return self.vectors.get(text, [float(len(text)), 1.0, 0.0])

    async def complete(self, messages: Sequence[ChatMessage], options=None) -> CompletionResult:
        self.completions.append(list(messages))
        if self.fail_with is not None:
            raise self.fail_with
        return CompletionResult(
            content=self.summary,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            latency_ms=3,
        )

    async def embed_batch(self, texts) -> EmbeddingBatchResult:
        texts = list(texts)
        self.embed_calls.append(texts)
        if self.fail_with is not None:
            raise self.fail_with
        return EmbeddingBatchResult(
            embeddings=[self._vector(text) for text in texts],
            usage=TokenUsage(prompt_tokens=len(texts), total_tokens=len(texts)),
            latency_ms=2,
        )

    async def embed_one(self, text: str) -> EmbeddingResult:
        batch = await self.embed_batch([text])
        return EmbeddingResult(
            embedding=batch.embeddings[0], usage=batch.usage, latency_ms=batch.latency_ms
        )

    @property
    def call_count(self) -> int:
        return len(self.completions) + len(self.embed_calls)


class RecordingDispatch:
    """Dispatch callable that records every action and accepts per a policy."""

    def __init__(self, accept: Callable[[Action], bool] = lambda action: True):
        self.accept = accept
        self.actions: List[Action] = []

    async def __call__(self, action: Action) -> bool:
        self.actions.append(action)
        return self.accept(action)

    @property
    def types(self) -> List[str]:
        return [action.type for action in self.actions]


def make_player(player_id: str, name: Optional[str] = None, *, walking: bool = False) -> Player:
    if walking:
        motion = WalkingMotion(
            target=Position(x=5, y=5), target_end_ts=NOW + timedelta(minutes=1)
        )
    else:
        motion = IdleMotion(position=Position(x=1, y=1))
    return Player(id=player_id, name=name or player_id.title(), motion=motion)


def make_conversation(conversation_id: str, authors: Sequence[str]) -> NearbyConversation:
    return NearbyConversation(
        conversation_id=conversation_id,
        messages=[
            ConversationMessage(
                from_player=author,
                content=f"line {i} from {author}",
                timestamp=NOW - timedelta(seconds=len(authors) - i),
            )
            for i, author in enumerate(authors)
        ],
    )


def make_snapshot(
    player: Player,
    *,
    nearby: Sequence[Player] = (),
    new: Sequence[str] = (),
    conversations: Sequence[NearbyConversation] = (),
) -> Snapshot:
    return Snapshot(
        player=player,
        nearby_players=[NearbyPlayer(player=p, new=p.id in new) for p in nearby],
        nearby_conversations=list(conversations),
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def memory_store(gateway) -> MemoryStore:
    return MemoryStore(gateway, InMemoryPersistence(), default_limit=5)


@pytest.fixture(autouse=True)
def _plain_output(monkeypatch):
    monkeypatch.setenv("TOWNSQUARE_NO_COLOR", "1")
