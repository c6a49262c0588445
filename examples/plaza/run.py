"""A small plaza where a handful of agents wander, meet and chat.

The world lives in process: a simulated clock, straight-line walks, and
conversations open to everyone within earshot. It implements both halves of
the world interface so :class:`townsquare.TownRunner` can drive it.

Requires an OpenAI-compatible endpoint (summaries and embeddings):

    export OPENAI_API_KEY=...
    python -m examples.plaza.run --rounds 6

Use a local server instead:

    export OPENAI_BASE_URL=http://localhost:8000/v1
    python -m examples.plaza.run --names Ada Brook Cyrus --backend json

Add DEBUG_LLM=1 or DEBUG_MEMORY=1 to see requests and recalled memories.
"""

from __future__ import annotations

import argparse
import asyncio
import math
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from townsquare import (
    Action,
    Config,
    DecisionEngine,
    LLMGateway,
    MemoryStore,
    TownRunner,
    build_persistence,
)
from townsquare.engine import random_position
from townsquare.schemas import (
    ConversationMessage,
    IdleMotion,
    NearbyConversation,
    NearbyPlayer,
    Player,
    Position,
    Snapshot,
    WalkingMotion,
)

# Seconds of simulated time to cross one tile, and per closing continue
WALK_SECONDS_PER_TILE = 15
TICK_SECONDS = 60
EARSHOT = 8.0


@dataclass
class Conversation:
    conversation_id: str
    participants: Set[str]
    messages: List[ConversationMessage] = field(default_factory=list)


class PlazaWorld:
    """In-process world with a simulated clock."""

    def __init__(self, names: List[str], rng: random.Random):
        self.rng = rng
        self.now = datetime(2160, 3, 21, 9, 0, tzinfo=timezone.utc)
        self.players: Dict[str, Player] = {}
        for name in names:
            player_id = name.lower()
            start = random_position(Config.WORLD_WIDTH, Config.WORLD_HEIGHT, rng)
            self.players[player_id] = Player(
                id=player_id, name=name, motion=IdleMotion(position=start)
            )
        self.conversations: Dict[str, Conversation] = {}
        # Players each viewer saw on its previous snapshot
        self.seen: Dict[str, Set[str]] = {player_id: set() for player_id in self.players}

    def clock(self) -> datetime:
        return self.now

    def position_of(self, player: Player) -> Position:
        motion = player.motion
        if motion.type == "idle":
            return motion.position
        return motion.target

    def _settle(self, player_id: str) -> Player:
        """Turn a finished walk into standing at its target."""
        player = self.players[player_id]
        motion = player.motion
        if motion.type == "walking" and motion.target_end_ts <= self.now:
            player = player.model_copy(update={"motion": IdleMotion(position=motion.target)})
            self.players[player_id] = player
        return player

    def _within_earshot(self, a: Player, b: Player) -> bool:
        pa, pb = self.position_of(a), self.position_of(b)
        return math.dist((pa.x, pa.y), (pb.x, pb.y)) <= EARSHOT

    def _conversation_of(self, player_id: str) -> Optional[Conversation]:
        for conversation in self.conversations.values():
            if player_id in conversation.participants:
                return conversation
        return None

    # SnapshotProvider ------------------------------------------------------

    async def list_player_ids(self) -> List[str]:
        return list(self.players)

    async def get_snapshot(self, player_id: str) -> Snapshot:
        me = self._settle(player_id)
        nearby = [
            self._settle(other_id)
            for other_id in self.players
            if other_id != player_id and self._within_earshot(me, self.players[other_id])
        ]
        previously_seen = self.seen[player_id]
        self.seen[player_id] = {p.id for p in nearby}

        conversation = self._conversation_of(player_id)
        conversations = []
        if conversation is not None:
            conversations.append(
                NearbyConversation(
                    conversation_id=conversation.conversation_id,
                    messages=list(conversation.messages),
                )
            )

        return Snapshot(
            player=me,
            nearby_players=[
                NearbyPlayer(player=p, new=p.id not in previously_seen) for p in nearby
            ],
            nearby_conversations=conversations,
        )

    # ActionApplier ---------------------------------------------------------

    async def apply_action(self, player_id: str, action: Action, *, one_shot: bool) -> bool:
        player = self._settle(player_id)

        if action.type == "travel":
            if player.motion.type == "walking":
                return False
            start = self.position_of(player)
            distance = math.dist((start.x, start.y), (action.position.x, action.position.y))
            arrival = self.now + timedelta(seconds=distance * WALK_SECONDS_PER_TILE)
            self.players[player_id] = player.model_copy(
                update={"motion": WalkingMotion(target=action.position, target_end_ts=arrival)}
            )
            # Leaving the spot ends any conversation the player was part of
            self._leave_conversation(player_id)
            return True

        if action.type == "stop":
            if player.motion.type != "walking":
                return False
            # Walks are straight lines; stopping early lands on the target tile
            self.players[player_id] = player.model_copy(
                update={"motion": IdleMotion(position=player.motion.target)}
            )
            return True

        if action.type == "startConversation":
            if self._conversation_of(player_id) is not None:
                return False
            audience = {p for p in action.audience if self._conversation_of(p) is None}
            if not audience:
                return False
            conversation = Conversation(
                conversation_id=f"c-{uuid.uuid4().hex[:8]}",
                participants={player_id, *audience},
            )
            conversation.messages.append(self._message(player_id, action.content))
            self.conversations[conversation.conversation_id] = conversation
            return True

        if action.type == "saySomething":
            conversation = self.conversations.get(action.conversation_id)
            if conversation is None or player_id not in conversation.participants:
                return False
            if conversation.messages and conversation.messages[-1].from_player == player_id:
                return False
            conversation.messages.append(self._message(player_id, action.content))
            return True

        if action.type == "continue":
            self.now += timedelta(seconds=TICK_SECONDS / max(len(self.players), 1))
            return True

        return False

    def _message(self, player_id: str, content: str) -> ConversationMessage:
        return ConversationMessage(from_player=player_id, content=content, timestamp=self.now)

    def _leave_conversation(self, player_id: str) -> None:
        conversation = self._conversation_of(player_id)
        if conversation is None:
            return
        conversation.participants.discard(player_id)
        if len(conversation.participants) < 2:
            del self.conversations[conversation.conversation_id]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plaza agents demo")
    parser.add_argument("--rounds", type=int, default=Config.CONVERSATION_ROUNDS, help="Rounds to run")
    parser.add_argument(
        "--names",
        nargs="+",
        default=["Ada", "Brook", "Cyrus", "Dana"],
        help="Display names of the agents",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "json", "postgres"],
        default=None,
        help="Memory backend (defaults to MEMORY_BACKEND)",
    )
    parser.add_argument("--seed", type=int, default=7, help="Random seed for placement and travel")
    return parser.parse_args()


async def main(args: argparse.Namespace) -> None:
    if args.backend:
        Config.MEMORY_BACKEND = args.backend
    Config.validate()
    print(Config.display())
    print()

    rng = random.Random(args.seed)
    world = PlazaWorld(args.names, rng)
    gateway = LLMGateway()
    memory = MemoryStore(gateway, build_persistence())
    engine = DecisionEngine(
        clock=world.clock,
        position_picker=lambda: random_position(rng=rng),
    )
    runner = TownRunner(world, world, memory, gateway, engine=engine)

    await memory.initialize()
    try:
        await runner.run_conversation(rounds=args.rounds)
    finally:
        await memory.close()

    print()
    for conversation in world.conversations.values():
        speakers = ", ".join(sorted(conversation.participants))
        print(f"{conversation.conversation_id} ({speakers}): {len(conversation.messages)} messages")


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
