"""
Reference scheduler for agent ticks.

Drives rounds of ticks over a set of players against any world that
implements :class:`SnapshotProvider` and
:class:`~townsquare.dispatcher.ActionApplier`. Each tick takes a fresh
snapshot, so a retried tick sees whatever the world looks like now.
"""

from typing import List, Optional, Protocol, Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .config import Config
from .dispatcher import ActionApplier, ActionDispatcher
from .engine import DecisionEngine
from .errors import ProviderError
from .gateway import LLMGateway
from .logging_utils import log_error, log_info
from .memory import MemoryStore
from .schemas import Action, Snapshot


class SnapshotProvider(Protocol):
    """Protocol for the external world's read side."""

    async def get_snapshot(self, player_id: str) -> Snapshot:
        """Return the current snapshot for ``player_id``."""
        ...

    async def list_player_ids(self) -> List[str]:
        """Return the ids of the players an unparameterised run should drive."""
        ...


class TownRunner:
    """Runs agent ticks round by round.

    Args:
        snapshots: World read side
        applier: World write side
        memory: Memory store shared by all agents (memories are owner-keyed)
        gateway: LLM gateway
        engine: Decision engine (defaults to the standard priorities)
        max_attempts: Attempts per tick; only ProviderError triggers another
            attempt (defaults to Config.TICK_MAX_ATTEMPTS)
        one_shot: Passed through to the world with every action
    """

    def __init__(
        self,
        snapshots: SnapshotProvider,
        applier: ActionApplier,
        memory: MemoryStore,
        gateway: LLMGateway,
        *,
        engine: Optional[DecisionEngine] = None,
        max_attempts: Optional[int] = None,
        one_shot: bool = True,
    ):
        self.snapshots = snapshots
        self.applier = applier
        self.memory = memory
        self.gateway = gateway
        self.engine = engine or DecisionEngine()
        self.max_attempts = max(max_attempts or Config.TICK_MAX_ATTEMPTS, 1)
        self.one_shot = one_shot

    async def run_tick(self, player_id: str) -> Optional[Action]:
        """Run one tick for ``player_id`` and return the accepted action, if any.

        A tick that fails with ProviderError never sent its closing
        ``continue``, so it is safe to run again from a fresh snapshot.
        ConfigurationError and anything else propagate immediately.
        """

        attempt_number = 0
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProviderError),
            stop=stop_after_attempt(self.max_attempts),
            reraise=True,
        ):
            with attempt:
                attempt_number += 1
                if attempt_number > 1:
                    log_error(
                        f"[{player_id}] Retrying tick ({attempt_number}/{self.max_attempts})"
                    )
                try:
                    snapshot = await self.snapshots.get_snapshot(player_id)
                    dispatch = ActionDispatcher(self.applier, player_id, one_shot=self.one_shot)
                    return await self.engine.run_tick(snapshot, self.memory, self.gateway, dispatch)
                except ProviderError as exc:
                    log_error(f"[{player_id}] Tick failed: {exc}")
                    raise

        # AsyncRetrying with reraise=True exits via return or raise.
        raise RuntimeError("Tick retry loop exited unexpectedly")

    async def run_conversation(
        self,
        player_ids: Optional[Sequence[str]] = None,
        rounds: Optional[int] = None,
    ) -> None:
        """Tick every player once per round, sequentially."""

        if player_ids is None:
            player_ids = await self.snapshots.list_player_ids()
        if rounds is None:
            rounds = Config.CONVERSATION_ROUNDS

        log_info(f"Running {rounds} round(s) for {len(player_ids)} player(s)")
        for round_number in range(1, rounds + 1):
            print(f"=== Round {round_number}/{rounds} ===")
            for player_id in player_ids:
                await self.run_tick(player_id)
