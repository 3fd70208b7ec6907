"""
Shared handler plumbing: execution context, results and step plans
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from errors import StoreError
from zone_commands import AsyncCommandExecutor, CommandResult
from zone_store import ZoneStore

logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """Everything a handler may touch; host identity is never read from the environment"""
    executor: AsyncCommandExecutor
    store: ZoneStore
    host: str
    restart_settle_seconds: float = 2.0
    zonepath_mode: str = '700'
    kill_process: Callable[[int, int], None] = os.kill
    # Set by the task queue; cancels a zone's pending tasks and returns the count
    cancel_zone_tasks: Optional[Callable[[str], Awaitable[int]]] = None


@dataclass
class HandlerResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **details) -> 'HandlerResult':
        return cls(success=True, message=message, details=details)

    @classmethod
    def fail(cls, error: str, **details) -> 'HandlerResult':
        return cls(success=False, error=error, details=details)


@dataclass
class Step:
    description: str
    command: List[str]
    required: bool = True
    # Consumer the command's stdout is piped into
    pipe_to: Optional[List[str]] = None

    async def run(self, executor: AsyncCommandExecutor) -> CommandResult:
        if self.pipe_to:
            return await executor.execute_pipeline(self.command, self.pipe_to)
        return await executor.execute(self.command)


@dataclass
class PlanResult:
    success: bool
    completed: List[Step] = field(default_factory=list)
    failed_step: Optional[Step] = None
    error: Optional[str] = None
    last_result: Optional[CommandResult] = None


class StepPlan:
    """
    Ordered privileged steps with a compensating list for the failure path.

    Steps run in order. The first failing required step aborts the plan; if
    any earlier step had completed, the compensations then run best effort.
    A failing optional step is logged and the plan continues.
    """

    def __init__(self, steps: List[Step], compensations: Optional[List[Step]] = None):
        self.steps = steps
        self.compensations = compensations or []

    async def run(self, executor: AsyncCommandExecutor) -> PlanResult:
        completed = []
        result = None
        for step in self.steps:
            result = await step.run(executor)
            if result.success:
                completed.append(step)
                continue
            if not step.required:
                logger.warning(f"Optional step '{step.description}' failed: {result.error}")
                continue

            logger.error(f"Step '{step.description}' failed: {result.error}")
            if completed:
                await self._compensate(executor)
            return PlanResult(success=False, completed=completed, failed_step=step,
                              error=f"{step.description} failed: {result.error}",
                              last_result=result)

        return PlanResult(success=True, completed=completed, last_result=result)

    async def _compensate(self, executor: AsyncCommandExecutor):
        for step in self.compensations:
            result = await step.run(executor)
            if result.success:
                logger.info(f"Compensation '{step.description}' succeeded")
            else:
                logger.error(f"Compensation '{step.description}' failed: {result.error}")


async def store_cleanup(result: HandlerResult, cleanup: Callable[[], Awaitable[Dict[str, Any]]]) -> HandlerResult:
    """
    Run store cleanup after a successful system change. Failure only attaches
    cleanup_error; the next discovery pass repairs stale rows.
    """
    try:
        summary = await cleanup()
    except StoreError as e:
        logger.warning(f"Store cleanup failed after successful operation: {e}")
        result.details['cleanup_error'] = str(e)
        return result
    if summary:
        result.details['cleanup_summary'] = summary
    return result


async def remove_link_records(ctx: HandlerContext, link_class: str, link: str) -> Dict[str, int]:
    """Delete stored rows for one datalink; same-named links of other classes are untouched"""
    return {
        'network_interfaces': await ctx.store.delete_network_interfaces(
            ctx.host, link_class=link_class, link=link),
        'network_usage': await ctx.store.delete_network_usage(ctx.host, link=link),
    }
