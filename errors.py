"""
Exception hierarchy for the zone orchestrator
"""


class OrchestratorError(Exception):
    """Base class for orchestrator errors"""
    pass


class MetadataValidationError(OrchestratorError):
    """Raised when a task's metadata document is missing or malformed"""
    pass


class InvalidTransitionError(OrchestratorError):
    """Raised when a task status change is not an allowed transition"""
    def __init__(self, task_id: str, current: str, target: str):
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Task {task_id}: invalid status transition {current} -> {target}")


class TaskNotFoundError(OrchestratorError):
    """Raised when a task id does not exist in the store"""
    pass


class StoreError(OrchestratorError):
    """Raised when a store operation fails"""
    pass


class DuplicateRecordError(StoreError):
    """Raised when a record violates a natural-key uniqueness constraint"""
    pass


class ZoneConfigError(OrchestratorError):
    """Raised when a zone configuration cannot be obtained from the live system"""
    pass


class AsyncConnectionFailureError(StoreError):
    """Raised when the Redis connection cannot be re-established"""
    pass
