"""
Execution mode for mutating calls.

The orchestrator sends every call that changes external state through an
Effector. In a real run the call executes; in a dry run it is logged as
"[dry-run] Would <description>" and a planned value is returned instead.
Stage code is therefore identical in both modes.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class Effector(Protocol):
    """Decides whether a mutating call actually runs."""

    @property
    def dry_run(self) -> bool: ...

    async def perform(
        self,
        description: str,
        action: Callable[[], Awaitable[T]],
        *,
        planned: T | None = None,
    ) -> T | None:
        """
        Run or simulate a mutating call.

        Args:
            description: What the call does, phrased to follow "Would".
            action: Zero-argument coroutine function doing the work.
            planned: Value returned when the call is simulated.

        Returns:
            The action's result, or ``planned`` in dry-run mode.
        """
        ...


class RealEffector:
    """Executes every action."""

    def __init__(self) -> None:
        self.performed: list[str] = []

    @property
    def dry_run(self) -> bool:
        return False

    async def perform(
        self,
        description: str,
        action: Callable[[], Awaitable[T]],
        *,
        planned: T | None = None,
    ) -> T | None:
        logger.debug("Performing: %s", description)
        result = await action()
        self.performed.append(description)
        return result


class NoOpEffector:
    """
    Logs each action instead of running it.

    Attributes:
        planned_actions: Descriptions of the skipped actions, in order.
    """

    def __init__(self) -> None:
        self.planned_actions: list[str] = []

    @property
    def dry_run(self) -> bool:
        return True

    async def perform(
        self,
        description: str,
        action: Callable[[], Awaitable[Any]],
        *,
        planned: T | None = None,
    ) -> T | None:
        logger.info("[dry-run] Would %s", description)
        self.planned_actions.append(description)
        return planned


def create_effector(dry_run: bool) -> Effector:
    return NoOpEffector() if dry_run else RealEffector()


__all__ = [
    "Effector",
    "NoOpEffector",
    "RealEffector",
    "create_effector",
]
