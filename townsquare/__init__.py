"""
Townsquare - LLM-backed agents in a shared simulated space.

Each tick an agent reads a snapshot of its surroundings, consults its
semantic memory, and submits at most one action to the world.

The world itself (physics, storage of world state, scheduling) lives
outside this package and is reached through small protocols.
"""

__version__ = "0.1.0"

from .config import Config
from .errors import ConfigurationError, ProviderError

from .gateway import LLMGateway
from .memory import MemoryStore, cosine_similarity, rank_memories
from .persistence import (
    MemoryPersistence,
    InMemoryPersistence,
    JsonPersistence,
    PostgresPersistence,
    build_persistence,
)
from .engine import (
    Candidate,
    CandidateProducer,
    DecisionEngine,
    DEFAULT_PRODUCERS,
    TickContext,
    continue_conversations,
    greet_new_arrivals,
    wander,
    run_agent,
)
from .dispatcher import ActionApplier, ActionDispatcher
from .runner import SnapshotProvider, TownRunner

from .schemas import (
    Position,
    IdleMotion,
    WalkingMotion,
    Player,
    NearbyPlayer,
    ConversationMessage,
    NearbyConversation,
    Snapshot,
    Memory,
    NewMemory,
    ConversationMemoryData,
    ReflectionMemoryData,
    Action,
    ACTION_ADAPTER,
    TravelAction,
    StopAction,
    StartConversationAction,
    SaySomethingAction,
    ContinueAction,
    ChatMessage,
    CompletionOptions,
    CompletionResult,
    EmbeddingBatchResult,
    EmbeddingResult,
    TokenUsage,
)

__all__ = [
    "Config",
    "ConfigurationError",
    "ProviderError",
    # Gateway and memory
    "LLMGateway",
    "MemoryStore",
    "cosine_similarity",
    "rank_memories",
    "MemoryPersistence",
    "InMemoryPersistence",
    "JsonPersistence",
    "PostgresPersistence",
    "build_persistence",
    # Decision engine
    "Candidate",
    "CandidateProducer",
    "DecisionEngine",
    "DEFAULT_PRODUCERS",
    "TickContext",
    "continue_conversations",
    "greet_new_arrivals",
    "wander",
    "run_agent",
    # Dispatch and scheduling
    "ActionApplier",
    "ActionDispatcher",
    "SnapshotProvider",
    "TownRunner",
    # Snapshot schemas
    "Position",
    "IdleMotion",
    "WalkingMotion",
    "Player",
    "NearbyPlayer",
    "ConversationMessage",
    "NearbyConversation",
    "Snapshot",
    # Memory schemas
    "Memory",
    "NewMemory",
    "ConversationMemoryData",
    "ReflectionMemoryData",
    # Action schemas
    "Action",
    "ACTION_ADAPTER",
    "TravelAction",
    "StopAction",
    "StartConversationAction",
    "SaySomethingAction",
    "ContinueAction",
    # Gateway schemas
    "ChatMessage",
    "CompletionOptions",
    "CompletionResult",
    "EmbeddingBatchResult",
    "EmbeddingResult",
    "TokenUsage",
]
