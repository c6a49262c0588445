"""
Pydantic schemas for the Townsquare agent core.

All data structures crossing a component boundary are defined here.

Design Philosophy:
- Snapshots and memories are frozen: the engine reads them, never edits them
- Variants (motion, memory payload, action) are closed unions discriminated
  on a ``type`` literal, so the wire form parses back to the right class
- Timestamps must carry a timezone; naive values are rejected at parse time
- Gateway request/response records carry usage and latency alongside results
"""

from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, TypeAdapter


# ============================================================================
# World Snapshot Schemas
# ============================================================================


class Position(BaseModel):
    """A point in the shared simulated space."""

    model_config = ConfigDict(frozen=True)

    x: float = Field(..., description="Horizontal coordinate")
    y: float = Field(..., description="Vertical coordinate")


class IdleMotion(BaseModel):
    """Player standing still at ``position``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["idle"] = "idle"
    position: Position = Field(..., description="Where the player is standing")


class WalkingMotion(BaseModel):
    """Player walking toward ``target``, due to arrive at ``target_end_ts``.

    A walking motion whose end timestamp has already passed is treated as
    idle by the decision engine.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["walking"] = "walking"
    target: Position = Field(..., description="Destination of the current walk")
    target_end_ts: AwareDatetime = Field(..., description="Expected arrival time")


Motion = Annotated[Union[IdleMotion, WalkingMotion], Field(discriminator="type")]


class Player(BaseModel):
    """Identity and current motion of a player in the world."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique player identifier")
    name: str = Field(..., description="Display name used in prompts")
    motion: Motion = Field(..., description="Current motion (idle or walking)")


class NearbyPlayer(BaseModel):
    """A player within perception range of the agent."""

    model_config = ConfigDict(frozen=True)

    player: Player
    # True for players who entered perception range since the last tick
    new: bool = Field(False, description="Newly arrived since last tick")


class ConversationMessage(BaseModel):
    """One utterance in a conversation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_player: str = Field(..., alias="from", description="Author player id")
    content: str = Field(..., description="What was said")
    timestamp: AwareDatetime = Field(..., description="When it was said")


class NearbyConversation(BaseModel):
    """A conversation the agent can currently perceive."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str = Field(..., description="Unique conversation identifier")
    messages: List[ConversationMessage] = Field(
        default_factory=list, description="Messages, oldest first"
    )


class Snapshot(BaseModel):
    """Read-only perception input to one decision cycle.

    Produced by the external world engine for a single agent. Frozen so a
    producer cannot accidentally edit the view mid-tick; list fields hold
    frozen models as well.
    """

    model_config = ConfigDict(frozen=True)

    player: Player = Field(..., description="The agent itself")
    nearby_players: List[NearbyPlayer] = Field(default_factory=list)
    nearby_conversations: List[NearbyConversation] = Field(default_factory=list)
    last_plan: Optional[str] = Field(None, description="Prior intent, if any")


# ============================================================================
# Memory Schemas
# ============================================================================


class ConversationMemoryData(BaseModel):
    """Payload for a memory summarising a conversation."""

    model_config = ConfigDict(frozen=True)

    type: Literal["conversation"] = "conversation"
    conversation_id: str


class ReflectionMemoryData(BaseModel):
    """Payload for a higher-level memory derived from earlier ones."""

    model_config = ConfigDict(frozen=True)

    type: Literal["reflection"] = "reflection"
    related_memory_ids: List[UUID] = Field(default_factory=list)


MemoryData = Annotated[
    Union[ConversationMemoryData, ReflectionMemoryData],
    Field(discriminator="type"),
]


class NewMemory(BaseModel):
    """A memory waiting to be embedded and stored."""

    owner_id: str = Field(..., description="Agent who owns this memory")
    description: str = Field(..., description="Natural language content (embedded)")
    created_at: AwareDatetime = Field(..., description="When the memory was formed")
    data: MemoryData


class Memory(BaseModel):
    """A stored, embedding-tagged memory.

    Append-only: the embedding is computed once at insertion and never
    changes. Memories belong to exactly one owner and are never shared.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(..., description="Unique memory identifier")
    owner_id: str = Field(..., description="Agent who owns this memory")
    description: str = Field(..., description="Natural language content")
    embedding: List[float] = Field(..., description="Embedding of the description")
    created_at: AwareDatetime = Field(..., description="When the memory was formed")
    data: MemoryData


# ============================================================================
# Action Schemas
# ============================================================================


class TravelAction(BaseModel):
    """Walk to ``position``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["travel"] = "travel"
    position: Position


class StopAction(BaseModel):
    """Stop walking."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stop"] = "stop"


class StartConversationAction(BaseModel):
    """Open a new conversation with ``audience``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["startConversation"] = "startConversation"
    audience: List[str] = Field(..., description="Player ids addressed")
    content: str = Field(..., description="Opening line")


class SaySomethingAction(BaseModel):
    """Take a turn in an existing conversation."""

    model_config = ConfigDict(frozen=True)

    type: Literal["saySomething"] = "saySomething"
    audience: List[str] = Field(..., description="Player ids addressed")
    content: str = Field(..., description="What to say")
    conversation_id: str = Field(..., description="Conversation being continued")


class ContinueAction(BaseModel):
    """Close out the tick; the agent keeps its current motion."""

    model_config = ConfigDict(frozen=True)

    type: Literal["continue"] = "continue"


Action = Annotated[
    Union[
        TravelAction,
        StopAction,
        StartConversationAction,
        SaySomethingAction,
        ContinueAction,
    ],
    Field(discriminator="type"),
]

ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)


# ============================================================================
# Gateway Schemas
# ============================================================================


class ChatMessage(BaseModel):
    """A role-tagged chat turn sent to the completion endpoint."""

    role: Literal["system", "user", "assistant"]
    content: str


class CompletionOptions(BaseModel):
    """Optional model/sampling parameters for a completion request.

    Unset fields are omitted from the request so the provider defaults apply.
    """

    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    top_p: Optional[float] = Field(None, ge=0, le=1)
    max_tokens: Optional[int] = Field(None, ge=1)
    stop: Optional[Union[str, List[str]]] = None
    presence_penalty: Optional[float] = Field(None, ge=-2, le=2)
    frequency_penalty: Optional[float] = Field(None, ge=-2, le=2)
    user: Optional[str] = None


class TokenUsage(BaseModel):
    """Token counters reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResult(BaseModel):
    """Generated text plus cost/time accounting."""

    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = Field(..., ge=0)


class EmbeddingBatchResult(BaseModel):
    """One vector per input text, in input order."""

    embeddings: List[List[float]]
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = Field(..., ge=0)


class EmbeddingResult(BaseModel):
    """A single embedding with its accounting."""

    embedding: List[float]
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = Field(..., ge=0)
