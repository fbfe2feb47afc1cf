"""
Step runner for multi-step workflows.

A workflow is an ordered list of steps over one mutable CreationRequest.
Each step declares its failure policy:

* MANDATORY: the first failure aborts the workflow. It is raised wrapped in
  the workflow's error class (ProvisionError or TeardownError) carrying the
  partially built request.
* BEST_EFFORT: a failure is logged, recorded on ``creq.warnings`` as a
  TeardownWarning and the workflow continues.

``parallel`` groups steps that have no ordering between each other; the group
finishes only when all its members have finished.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, Type

from .errors import (
    BootstrapError, EnvStackError, ProvisionError, TeardownWarning, ValidationError,
)
from .models import CreationRequest

logger = logging.getLogger(__name__)

MANDATORY = "mandatory"
BEST_EFFORT = "best-effort"

Action = Callable[[CreationRequest], Awaitable[None]]


@dataclass(frozen=True)
class Step:
    name: str
    action: Action
    policy: str = MANDATORY


class _StepFailed(EnvStackError):
    """A mandatory step failed; carries the failing step's own name."""

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause


# already meaningful to callers, never re-wrapped
_PASSTHROUGH = (_StepFailed, ProvisionError, ValidationError, BootstrapError)


def parallel(name: str, steps: Sequence[Step], policy: str = MANDATORY) -> Step:
    """
    Run ``steps`` concurrently as one step.

    Members apply their own policy. A failed mandatory member fails the group
    with that member's error, but only after every member has finished.
    """

    async def run_group(creq: CreationRequest) -> None:
        results = await asyncio.gather(
            *(_run_one(step, creq) for step in steps),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    return Step(name, run_group, policy)


async def _run_one(step: Step, creq: CreationRequest) -> None:
    try:
        await step.action(creq)
    except Exception as e:
        if step.policy == BEST_EFFORT:
            cause = e.cause if isinstance(e, _StepFailed) else e
            logger.warning(f"Best-effort step '{step.name}' failed for {creq.env.stack_name}: {cause}")
            creq.warnings.append(TeardownWarning(step.name, cause))
            return
        if isinstance(e, _PASSTHROUGH):
            raise
        raise _StepFailed(step.name, e) from e
    creq.completed.append(step.name)


async def run_steps(steps: Sequence[Step], creq: CreationRequest,
                    error_cls: Type[ProvisionError] = ProvisionError) -> CreationRequest:
    """
    Run ``steps`` in order over ``creq``.

    Args:
        steps: Ordered steps; a step never starts before the previous one finished
        creq: Accumulator shared by all steps
        error_cls: Error raised for a failed mandatory step

    Returns:
        The accumulator

    Raises:
        error_cls: The first mandatory failure
    """
    for step in steps:
        logger.debug(f"{creq.env.stack_name}: step '{step.name}'")
        try:
            await _run_one(step, creq)
        except _StepFailed as failed:
            raise error_cls(failed.step, failed.cause, creq) from failed.cause
    return creq
