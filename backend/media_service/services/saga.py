from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from media_service.core.errors import ServiceError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SagaStep:
    name: str
    action: Callable[[], Awaitable[None]]


@dataclass(slots=True)
class Saga:
    """Ordered cross-store steps; each step must be safe to re-run.

    A failing step stops the run. The raised error carries ``completed_steps``
    and ``pending_steps`` in its context so callers can report what is left to
    re-drive.
    """

    name: str
    steps: list[SagaStep] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)

    def step(self, name: str, action: Callable[[], Awaitable[None]]) -> "Saga":
        self.steps.append(SagaStep(name=name, action=action))
        return self

    def pending(self) -> list[str]:
        return [item.name for item in self.steps if item.name not in self.completed]

    async def run(self, **log_context: object) -> list[str]:
        for item in self.steps:
            if item.name in self.completed:
                continue
            try:
                await item.action()
            except ServiceError as exc:
                pending = self.pending()
                exc.context.update(completed_steps=list(self.completed), pending_steps=pending)
                logger.error(
                    "saga_step_failed",
                    extra={
                        "saga": self.name,
                        "step": item.name,
                        "completed_steps": list(self.completed),
                        "pending_steps": pending,
                        "error": str(exc),
                        **log_context,
                    },
                )
                raise
            self.completed.append(item.name)
        return list(self.completed)
