"""
Step executor with compensating actions.

A saga is an ordered list of steps. Each step may register a compensation
that undoes it. If a later step fails, compensations of the steps that
already completed run in reverse order, then the original error is
re-raised. Compensation failures are logged and never mask that error.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from sample_pipeline.utils.errors import StageTimeoutError

Context = Dict[str, Any]
Action = Callable[[Context], Awaitable[Any]]
Compensation = Callable[[Context], Awaitable[None]]


@dataclass(frozen=True)
class SagaStep:
    """
    One stage of a saga.

    ``action`` receives the shared context and may store results in it.
    ``compensate`` receives the same context after a later step failed.
    """

    name: str
    action: Action
    compensate: Optional[Compensation] = None
    timeout: Optional[float] = None
    compensate_timeout: Optional[float] = None


class Saga:
    """Runs SagaSteps in order and unwinds completed ones on failure."""

    def __init__(
        self,
        steps: Sequence[SagaStep],
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        on_enter: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            steps: Steps in execution order
            logger: Logger (or context adapter) for step and rollback messages
            on_enter: Called with the step name before each step starts
        """
        self.steps = list(steps)
        self.logger = logger or logging.getLogger("saga")
        self.on_enter = on_enter
        self.compensation_errors: List[BaseException] = []

    async def run(self, context: Optional[Context] = None) -> Context:
        """
        Execute every step.

        Returns:
            The context after the last step

        Raises:
            Whatever the failing step raised (StageTimeoutError on timeout)
        """
        context = {} if context is None else context
        completed: List[SagaStep] = []

        for step in self.steps:
            if self.on_enter:
                self.on_enter(step.name)
            try:
                await _with_timeout(step.action(context), step.name, step.timeout)
            except Exception:
                await self._unwind(completed, context)
                raise
            completed.append(step)

        return context

    async def _unwind(self, completed: List[SagaStep], context: Context) -> None:
        for step in reversed(completed):
            if step.compensate is None:
                continue
            self.logger.warning(f"Rolling back {step.name}")
            try:
                await _with_timeout(
                    step.compensate(context), f"{step.name} rollback", step.compensate_timeout
                )
            except Exception as e:
                self.compensation_errors.append(e)
                self.logger.error(f"Rollback of {step.name} failed: {e}")


async def _with_timeout(awaitable: Awaitable[Any], stage: str, timeout: Optional[float]) -> Any:
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise StageTimeoutError(stage, timeout) from e
