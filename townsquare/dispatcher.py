"""Action dispatch to the external world.

The world owns motion and conversation state; this module only forwards a
chosen action and reports whether the world applied it. Rejection is an
ordinary outcome (a walk already in progress, a turn claimed by another
agent first) and is never retried here.
"""

from __future__ import annotations

from typing import List, Protocol, Tuple

from .logging_utils import log_deterministic, log_success, preview
from .schemas import (
    Action,
    ContinueAction,
    SaySomethingAction,
    StartConversationAction,
    StopAction,
    TravelAction,
)


class ActionApplier(Protocol):
    """Protocol for the external world-mutation interface."""

    async def apply_action(
        self,
        player_id: str,
        action: Action,
        *,
        one_shot: bool,
    ) -> bool:
        """Apply ``action`` for ``player_id`` and return whether it was accepted.

        ``one_shot`` tells the world the agent is driven by an external loop
        rather than scheduling its own next tick.
        """

        ...


def describe_action(action: Action) -> str:
    """Short human-readable description of an action for logs."""

    if isinstance(action, TravelAction):
        return f"travel to ({action.position.x:.0f}, {action.position.y:.0f})"
    if isinstance(action, StopAction):
        return "stop"
    if isinstance(action, StartConversationAction):
        return f"start conversation with {', '.join(action.audience)}: \"{preview(action.content, 40)}\""
    if isinstance(action, SaySomethingAction):
        return f"say in {action.conversation_id}: \"{preview(action.content, 40)}\""
    if isinstance(action, ContinueAction):
        return "continue"
    raise TypeError(f"Unknown action type: {type(action).__name__}")


class ActionDispatcher:
    """Callable that submits actions on behalf of one agent.

    ``history`` records every ``(action, accepted)`` pair in dispatch order.
    """

    def __init__(self, applier: ActionApplier, agent_id: str, *, one_shot: bool = False):
        self.applier = applier
        self.agent_id = agent_id
        self.one_shot = one_shot
        self.history: List[Tuple[Action, bool]] = []

    async def __call__(self, action: Action) -> bool:
        description = describe_action(action)
        accepted = bool(
            await self.applier.apply_action(self.agent_id, action, one_shot=self.one_shot)
        )
        self.history.append((action, accepted))

        if accepted:
            log_success(f"[{self.agent_id}] {description}")
        else:
            log_deterministic(f"[{self.agent_id}] {description} (rejected)")
        return accepted
