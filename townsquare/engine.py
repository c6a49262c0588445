"""Agent decision engine.

One tick turns a snapshot into at most one accepted world action. The
priority policy is data: an ordered tuple of candidate producers, each an
async generator of :class:`Candidate` objects. The driver walks producers in
order and candidates in the order they are yielded, dispatching each until
the world accepts one.

Default priorities:
1. continue a perceived conversation (or walk away from an over-long one)
2. greet players who just came into range
3. wander somewhere new when standing still
4. otherwise, keep doing whatever the agent is already doing

The closing ``continue`` action is sent only by :func:`run_agent` /
:meth:`DecisionEngine.run_tick`, exactly once per tick, after everything else.
"""

from __future__ import annotations

import random
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence

from .config import Config
from .gateway import LLMGateway
from .logging_utils import log_deterministic, log_info
from .memory import MemoryStore
from .schemas import (
    Action,
    ChatMessage,
    ContinueAction,
    ConversationMemoryData,
    Memory,
    NearbyConversation,
    NewMemory,
    Player,
    Position,
    SaySomethingAction,
    Snapshot,
    StartConversationAction,
    StopAction,
    TravelAction,
)

Dispatch = Callable[[Action], Awaitable[bool]]
PositionPicker = Callable[[], Position]
Clock = Callable[[], datetime]

# Placeholder lines until utterances are generated from memories.
SAY_PLACEHOLDER = "Interesting point"
GREETING = "Hello"
SUMMARY_INSTRUCTION = "Can you summarize the above conversation?"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def random_position(
    width: Optional[int] = None,
    height: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> Position:
    """Pick a random tile inside the world bounds."""

    rng = rng or random
    width = width or Config.WORLD_WIDTH
    height = height or Config.WORLD_HEIGHT
    return Position(x=rng.randrange(width), y=rng.randrange(height))


def is_walking(player: Player, now: datetime) -> bool:
    """True while the player has a walk in progress that has not yet ended."""

    motion = player.motion
    return motion.type == "walking" and motion.target_end_ts > now


@dataclass
class TickContext:
    """Everything producers may read during one tick.

    ``recalled`` is the only field written mid-tick: memories fetched while
    preparing a greeting, kept for richer prompting.
    """

    snapshot: Snapshot
    memory: MemoryStore
    gateway: LLMGateway
    now: datetime
    walking: bool
    clock: Clock
    position_picker: PositionPicker
    conversation_length_limit: int
    say_content: str = SAY_PLACEHOLDER
    greeting_content: str = GREETING
    recalled: List[Memory] = field(default_factory=list)

    @property
    def player(self) -> Player:
        return self.snapshot.player

    def prelude(self) -> List[Action]:
        """Actions to send before any social action: stop if still walking."""
        return [StopAction()] if self.walking else []


@dataclass
class Candidate:
    """A proposed action and the steps around its dispatch.

    The driver sends ``prelude`` actions (outcome ignored), awaits
    ``prepare``, then dispatches ``action``. ``on_accepted`` runs only when the
    world accepted the action.
    """

    action: Action
    reason: str
    prelude: List[Action] = field(default_factory=list)
    prepare: Optional[Callable[[], Awaitable[None]]] = None
    on_accepted: Optional[Callable[[], Awaitable[None]]] = None


CandidateProducer = Callable[[TickContext], AsyncIterator[Candidate]]


def _summarizer(ctx: TickContext, conversation: NearbyConversation) -> Callable[[], Awaitable[None]]:
    async def summarize() -> None:
        prompt = [ChatMessage(role="user", content=m.content) for m in conversation.messages]
        prompt.append(ChatMessage(role="user", content=SUMMARY_INSTRUCTION))
        result = await ctx.gateway.complete(prompt)
        await ctx.memory.add_memories(
            [
                NewMemory(
                    owner_id=ctx.player.id,
                    description=result.content,
                    created_at=ctx.clock(),
                    data=ConversationMemoryData(conversation_id=conversation.conversation_id),
                )
            ]
        )

    return summarize


async def continue_conversations(ctx: TickContext) -> AsyncIterator[Candidate]:
    """Take a turn in each perceived conversation, in snapshot order.

    Over-long conversations yield a walk away instead (nothing while already
    walking). A conversation whose last message is the agent's own yields
    nothing. Turn-taking is opportunistic: the agent always tries to claim
    the next turn and lets the world arbitrate.
    """

    audience = [nearby.player.id for nearby in ctx.snapshot.nearby_players]
    for conversation in ctx.snapshot.nearby_conversations:
        messages = conversation.messages
        if len(messages) >= ctx.conversation_length_limit:
            if not ctx.walking:
                yield Candidate(
                    action=TravelAction(position=ctx.position_picker()),
                    reason=f"leaving chatty conversation {conversation.conversation_id}",
                )
            continue

        if messages and messages[-1].from_player == ctx.player.id:
            continue

        yield Candidate(
            action=SaySomethingAction(
                audience=audience,
                content=ctx.say_content,
                conversation_id=conversation.conversation_id,
            ),
            reason=f"replying in {conversation.conversation_id}",
            prelude=ctx.prelude(),
            on_accepted=_summarizer(ctx, conversation),
        )


async def greet_new_arrivals(ctx: TickContext) -> AsyncIterator[Candidate]:
    """Start a conversation with players who just came into range."""

    arrivals = [nearby.player for nearby in ctx.snapshot.nearby_players if nearby.new]
    if not arrivals:
        return

    async def recall() -> None:
        query = await ctx.gateway.embed_one(f"What do you think about {arrivals[0].name}?")
        ctx.recalled = await ctx.memory.access_memories(ctx.player.id, query.embedding)

    yield Candidate(
        action=StartConversationAction(
            audience=[player.id for player in arrivals],
            content=ctx.greeting_content,
        ),
        reason=f"greeting {', '.join(player.name for player in arrivals)}",
        prelude=ctx.prelude(),
        prepare=recall,
    )


async def wander(ctx: TickContext) -> AsyncIterator[Candidate]:
    """Walk somewhere new when standing still."""

    if not ctx.walking:
        yield Candidate(
            action=TravelAction(position=ctx.position_picker()),
            reason="wandering",
        )


DEFAULT_PRODUCERS: tuple[CandidateProducer, ...] = (
    continue_conversations,
    greet_new_arrivals,
    wander,
)


class DecisionEngine:
    """Runs the candidate producers for one agent tick.

    Args:
        producers: Priority-ordered candidate producers
        conversation_length_limit: Message count at which a conversation is
            considered over-long (defaults to Config)
        position_picker: Source of travel targets (defaults to a random tile)
        clock: Time source used for motion checks and memory timestamps
        say_content: Line spoken when taking a turn
        greeting_content: Line used to open a conversation
    """

    def __init__(
        self,
        producers: Sequence[CandidateProducer] = DEFAULT_PRODUCERS,
        *,
        conversation_length_limit: Optional[int] = None,
        position_picker: Optional[PositionPicker] = None,
        clock: Optional[Clock] = None,
        say_content: str = SAY_PLACEHOLDER,
        greeting_content: str = GREETING,
    ) -> None:
        self.producers = tuple(producers)
        self.conversation_length_limit = (
            Config.CONVERSATION_LENGTH_LIMIT
            if conversation_length_limit is None
            else conversation_length_limit
        )
        self.position_picker = position_picker or random_position
        self.clock = clock or utc_now
        self.say_content = say_content
        self.greeting_content = greeting_content

    def build_context(
        self,
        snapshot: Snapshot,
        memory: MemoryStore,
        gateway: LLMGateway,
    ) -> TickContext:
        now = self.clock()
        return TickContext(
            snapshot=snapshot,
            memory=memory,
            gateway=gateway,
            now=now,
            walking=is_walking(snapshot.player, now),
            clock=self.clock,
            position_picker=self.position_picker,
            conversation_length_limit=self.conversation_length_limit,
            say_content=self.say_content,
            greeting_content=self.greeting_content,
        )

    async def decide(
        self,
        snapshot: Snapshot,
        memory: MemoryStore,
        gateway: LLMGateway,
        dispatch: Dispatch,
    ) -> Optional[Action]:
        """Dispatch candidates until one is accepted; return it (or None).

        Never sends the closing ``continue``. Provider errors propagate.
        """

        ctx = self.build_context(snapshot, memory, gateway)
        for producer in self.producers:
            async with aclosing(producer(ctx)) as candidates:
                async for candidate in candidates:
                    log_deterministic(f"[{ctx.player.name}] Considering: {candidate.reason}")
                    if await self._attempt(candidate, dispatch):
                        return candidate.action

        log_info(f"[{ctx.player.name}] No action accepted; keeping current motion")
        return None

    async def run_tick(
        self,
        snapshot: Snapshot,
        memory: MemoryStore,
        gateway: LLMGateway,
        dispatch: Dispatch,
    ) -> Optional[Action]:
        """Decide, then close the tick with exactly one ``continue``."""

        chosen = await self.decide(snapshot, memory, gateway, dispatch)
        await dispatch(ContinueAction())
        return chosen

    @staticmethod
    async def _attempt(candidate: Candidate, dispatch: Dispatch) -> bool:
        for action in candidate.prelude:
            await dispatch(action)
        if candidate.prepare is not None:
            await candidate.prepare()
        if not await dispatch(candidate.action):
            return False
        if candidate.on_accepted is not None:
            await candidate.on_accepted()
        return True


async def run_agent(
    snapshot: Snapshot,
    memory: MemoryStore,
    gateway: LLMGateway,
    dispatch: Dispatch,
    engine: Optional[DecisionEngine] = None,
) -> Optional[Action]:
    """Entry point for one scheduled tick of one agent."""

    return await (engine or DecisionEngine()).run_tick(snapshot, memory, gateway, dispatch)
