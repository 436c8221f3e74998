"""Ordered multi-step operations with compensating actions."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

_logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class SagaStep:
    """A forward action and the action that undoes it.

    ``restores_state`` marks a compensation that puts back something the saga
    removed. Its failure is logged but does not leave a stray write behind.
    """

    name: str
    action: Action
    compensation: Action | None = None
    local: bool = False
    restores_state: bool = False


class SagaFailedError(Exception):
    """A forward step failed; completed steps have been compensated."""

    def __init__(
        self,
        saga: str,
        step: SagaStep,
        cause: Exception,
        failed_steps: list[SagaStep],
    ) -> None:
        self.saga = saga
        self.step = step
        self.cause = cause
        self.failed_steps = failed_steps
        super().__init__(f"{saga} failed at {step.name}: {cause}")

    @property
    def failed_compensations(self) -> list[str]:
        return [step.name for step in self.failed_steps]

    @property
    def compensated(self) -> bool:
        """True when every compensation that ran succeeded."""
        return not self.failed_steps

    @property
    def stray_writes(self) -> list[str]:
        """Steps whose write could not be undone."""
        return [step.name for step in self.failed_steps if not step.restores_state]


async def run_saga(name: str, steps: Sequence[SagaStep]) -> None:
    """Run steps in order; on failure, compensate completed steps in reverse."""
    completed: list[SagaStep] = []
    for step in steps:
        try:
            await step.action()
        except Exception as exc:
            _logger.error("%s: step %s failed: %s", name, step.name, exc)
            failed = await _compensate(name, completed)
            raise SagaFailedError(name, step, exc, failed) from exc
        completed.append(step)


async def _compensate(name: str, completed: list[SagaStep]) -> list[SagaStep]:
    failed: list[SagaStep] = []
    for step in reversed(completed):
        if step.compensation is None:
            continue
        try:
            await step.compensation()
        except Exception as exc:  # noqa: BLE001
            _logger.critical(
                "%s: compensation for %s failed, manual cleanup may be needed: %s",
                name,
                step.name,
                exc,
            )
            failed.append(step)
        else:
            _logger.info("%s: compensated %s", name, step.name)
    return failed
