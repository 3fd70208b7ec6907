"""
Async Task Queue - priority-ordered dispatch of zone orchestration tasks
"""
import asyncio
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Union

from prometheus_client import Counter, Histogram

from errors import MetadataValidationError, StoreError, TaskNotFoundError
from handlers import DEFAULT_HANDLERS, HandlerContext, HandlerResult
from models import Task, TaskPriority, TaskStatus, utcnow
from task_metadata import Operation, Payload, decode_metadata, operation_category
from zone_store import ZoneStore

logger = logging.getLogger(__name__)

task_outcomes = Counter('zone_orchestrator_tasks_total',
                        'Tasks finished by the queue', ['operation', 'status'])
task_duration = Histogram('zone_orchestrator_task_duration_seconds',
                          'Task handler duration', ['operation'])

DISCOVERY_ZONE = 'system'


class AsyncTaskQueue:
    """
    Pending tasks are claimed in priority order (oldest first within a tier)
    by removing them from the store's queue index; only one dispatcher can
    win that removal. Handler failures are recorded on the task and never stop
    the workers.
    """

    def __init__(self, store: ZoneStore, context: HandlerContext, max_workers: int = 1,
                 poll_interval: float = 1.0, auto_discovery: bool = False,
                 discovery_interval: float = 600, shutdown_timeout: float = 30,
                 peek_batch: int = 50):
        self.store = store
        self.context = context
        self.max_workers = max_workers
        self.poll_interval = poll_interval
        self.auto_discovery = auto_discovery
        self.discovery_interval = discovery_interval
        self.shutdown_timeout = shutdown_timeout
        self.peek_batch = peek_batch

        self.task_handlers: Dict[str, Callable] = dict(DEFAULT_HANDLERS)
        self.running_tasks: Dict[str, Task] = {}
        self.running_categories: Set[str] = set()
        self.workers: List[asyncio.Task] = []
        self._discovery_task: Optional[asyncio.Task] = None
        self._dispatch_lock = asyncio.Lock()
        self._running = False

        context.cancel_zone_tasks = self.cancel_zone_tasks

    def register_handler(self, operation: str, handler: Callable):
        """Register a handler for an operation, replacing any existing one"""
        self.task_handlers[operation] = handler

    # ==================== ENQUEUE / STATUS ====================

    async def enqueue(self, zone_name: str, operation: str,
                      priority: int = TaskPriority.MEDIUM,
                      created_by: str = 'api',
                      metadata: Union[str, Dict[str, Any], None] = None,
                      status: TaskStatus = TaskStatus.PENDING,
                      depends_on: Optional[str] = None) -> Task:
        """
        Create a task. Metadata is validated first; a malformed document
        raises MetadataValidationError and nothing is stored.
        """
        if status not in (TaskStatus.PENDING, TaskStatus.PREPARED):
            raise ValueError(f"Tasks are created pending or prepared, not {status.value}")
        if not 0 <= int(priority) <= 255:
            raise ValueError(f"Priority {priority} out of range 0-255")

        payload = decode_metadata(operation, metadata)
        document = payload.to_dict() if isinstance(payload, Payload) else payload

        if depends_on and not await self.store.get_task(depends_on):
            raise TaskNotFoundError(f"Dependency task {depends_on} not found")

        task = Task(
            id=str(uuid.uuid4()),
            zone_name=zone_name,
            operation=operation,
            priority=int(priority),
            status=status,
            created_by=created_by,
            metadata=document,
            depends_on=depends_on,
            sequence=await self.store.next_sequence(),
        )
        await self.store.save_task(task)
        if status == TaskStatus.PENDING:
            await self.store.queue_task(task)

        logger.info(f"Created task {task.id} ({operation} on {zone_name}, "
                    f"priority {task.priority}, {status.value})")
        return task

    async def release(self, task_id: str) -> Task:
        """Make a prepared task dispatchable"""
        task = await self.store.get_task(task_id)
        if not task:
            raise TaskNotFoundError(f"Task {task_id} not found")
        task.transition(TaskStatus.PENDING)
        await self.store.save_task(task)
        await self.store.queue_task(task)
        logger.info(f"Released prepared task {task_id}")
        return task

    async def get_task_status(self, task_id: str) -> Optional[Task]:
        return await self.store.get_task(task_id)

    async def list_tasks(self, **filters) -> List[Task]:
        return await self.store.list_tasks(**filters)

    async def cancel(self, task_id: str) -> bool:
        """Cancel a pending task. Running and finished tasks cannot be cancelled."""
        task = await self.store.get_task(task_id)
        if not task or task.status != TaskStatus.PENDING:
            return False
        if not await self.store.remove_from_queue(task_id):
            # Claimed by a dispatcher first
            return False
        await self._mark_cancelled(task, "Cancelled before execution")
        return True

    async def cancel_zone_tasks(self, zone_name: str) -> int:
        cancelled = 0
        for task_id in await self.store.zone_task_ids(zone_name):
            if await self.cancel(task_id):
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending task(s) for zone {zone_name}")
        return cancelled

    async def _mark_cancelled(self, task: Task, message: str):
        task.transition(TaskStatus.CANCELLED)
        task.message = message
        await self.store.save_task(task)
        task_outcomes.labels(operation=task.operation, status='cancelled').inc()
        logger.info(f"Task {task.id} cancelled: {message}")

    # ==================== DISPATCH ====================

    async def dispatch(self) -> Optional[Task]:
        """
        Claim the next runnable task and mark it running.

        Tasks waiting on an unfinished dependency are passed over, paging
        through the whole queue if need be. If the first runnable task
        belongs to a busy operation category, nothing is dispatched rather
        than jumping to a lower-priority task.
        """
        async with self._dispatch_lock:
            offset = 0
            while True:
                page = await self.store.peek_queue(self.peek_batch, offset)
                if not page:
                    return None

                removed = 0
                for task_id in page:
                    task = await self.store.get_task(task_id)
                    if not task or task.status != TaskStatus.PENDING:
                        logger.warning(f"Dropping stale queue entry {task_id}")
                        await self.store.remove_from_queue(task_id)
                        removed += 1
                        continue

                    if task.depends_on:
                        dependency = await self.store.get_task(task.depends_on)
                        if not dependency or dependency.status in (TaskStatus.FAILED, TaskStatus.CANCELLED):
                            state = dependency.status.value if dependency else 'missing'
                            if await self.store.remove_from_queue(task_id):
                                await self._mark_cancelled(task, f"Dependency {task.depends_on} {state}")
                            removed += 1
                            continue
                        if dependency.status != TaskStatus.COMPLETED:
                            continue

                    category = operation_category(task.operation)
                    if category and category in self.running_categories:
                        return None

                    if not await self.store.remove_from_queue(task_id):
                        removed += 1
                        continue

                    task.transition(TaskStatus.RUNNING)
                    await self.store.save_task(task)
                    if category:
                        self.running_categories.add(category)
                    self.running_tasks[task.id] = task
                    return task

                # Entries removed from this page shift the rest of the queue up
                offset += len(page) - removed

    async def execute(self, task: Task) -> Task:
        """Run a dispatched task's handler and record the outcome"""
        logger.info(f"Processing task {task.id}: {task.operation} on {task.zone_name}")
        start_time = time.monotonic()

        try:
            handler = self.task_handlers.get(task.operation)
            if not handler:
                outcome = HandlerResult.fail(f"No handler registered for operation: {task.operation}")
            else:
                payload = decode_metadata(task.operation, task.metadata)
                outcome = await handler(task, payload, self.context)
        except MetadataValidationError as e:
            outcome = HandlerResult.fail(f"Invalid task metadata: {e}")
        except Exception as e:
            logger.error(f"Task {task.id} raised: {e}", exc_info=True)
            outcome = HandlerResult.fail(f"{task.operation} task failed: {e}")
        finally:
            self.running_tasks.pop(task.id, None)
            category = operation_category(task.operation)
            if category:
                self.running_categories.discard(category)

        task_duration.labels(operation=task.operation).observe(time.monotonic() - start_time)

        if outcome.success:
            task.transition(TaskStatus.COMPLETED)
            task.message = outcome.message
            logger.info(f"Task {task.id} completed: {outcome.message}")
        else:
            task.transition(TaskStatus.FAILED)
            task.error_message = outcome.error
            logger.error(f"Task {task.id} failed: {outcome.error}")
        task.result = outcome.details or None
        await self.store.save_task(task)

        task_outcomes.labels(operation=task.operation, status=task.status.value).inc()
        return task

    async def process_next(self) -> Optional[Task]:
        """Dispatch and execute one task; None when nothing was runnable"""
        task = await self.dispatch()
        if task:
            await self.execute(task)
        return task

    # ==================== MAINTENANCE ====================

    async def get_stats(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in TaskStatus}
        for task in await self.store.list_tasks():
            counts[task.status.value] += 1
        return {
            'tasks': counts,
            'queued': await self.store.queue_length(),
            'running_in_process': len(self.running_tasks),
            'running_categories': sorted(self.running_categories),
            'workers': self.max_workers,
            'processing': self._running,
            'store': self.store.redis.get_stats(),
        }

    async def cleanup_old_tasks(self, retention_days: int) -> int:
        """Delete finished tasks older than retention_days"""
        cutoff = utcnow() - timedelta(days=retention_days)
        deleted = 0
        for task in await self.store.list_tasks():
            if task.is_terminal and (task.completed_at or task.updated_at) < cutoff:
                if await self.store.delete_task(task.id):
                    deleted += 1
        if deleted:
            logger.info(f"Cleaned up {deleted} task(s) older than {retention_days} days")
        return deleted

    async def enqueue_discovery(self, created_by: str) -> Optional[Task]:
        """Queue a discovery pass unless one is already waiting"""
        waiting = await self.store.list_tasks(status=TaskStatus.PENDING,
                                              operation=Operation.DISCOVER.value, limit=1)
        if waiting:
            logger.debug(f"Discovery task {waiting[0].id} already pending")
            return None
        return await self.enqueue(DISCOVERY_ZONE, Operation.DISCOVER.value,
                                  priority=TaskPriority.BACKGROUND, created_by=created_by)

    # ==================== WORKERS ====================

    async def start(self):
        if self._running:
            return

        self._running = True
        logger.info(f"Starting task queue with {self.max_workers} workers")

        for i in range(self.max_workers):
            self.workers.append(asyncio.create_task(self._worker(i)))

        if self.auto_discovery:
            await self.enqueue_discovery('system_startup')
            self._discovery_task = asyncio.create_task(self._discovery_loop())

    async def stop(self):
        """Stop workers, letting in-flight tasks finish within shutdown_timeout"""
        if not self._running:
            return

        self._running = False
        logger.info("Stopping task queue")

        if self._discovery_task:
            self._discovery_task.cancel()
            await asyncio.gather(self._discovery_task, return_exceptions=True)
            self._discovery_task = None

        if self.workers:
            _, pending = await asyncio.wait(self.workers, timeout=self.shutdown_timeout)
            for worker in pending:
                logger.warning("Worker did not finish in time, cancelling")
                worker.cancel()
            await asyncio.gather(*self.workers, return_exceptions=True)
            self.workers.clear()

    async def _worker(self, worker_id: int):
        logger.info(f"Worker {worker_id} started")
        while self._running:
            try:
                task = await self.process_next()
                if not task:
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Worker {worker_id} error: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)
        logger.info(f"Worker {worker_id} stopped")

    async def _discovery_loop(self):
        while self._running:
            await asyncio.sleep(self.discovery_interval)
            try:
                await self.enqueue_discovery('system_periodic')
            except StoreError as e:
                logger.error(f"Failed to queue periodic discovery: {e}")
