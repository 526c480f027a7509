"""
Custom exceptions for DriverSync.
"""


class DriverSyncError(Exception):
    """Base exception for the application."""
    pass


class ConfigurationError(DriverSyncError):
    """Raised when configuration is invalid."""
    pass


class TaskParseError(DriverSyncError):
    """Raised when a backend row cannot be turned into a Task."""
    pass


class InvalidTransitionError(DriverSyncError, ValueError):
    """Raised when a status change would move a task backwards or is not supported."""
    pass


class TransitionError(DriverSyncError):
    """Raised by the backend when a single task's status update fails."""
    def __init__(self, task_id: str, message: str = ""):
        self.task_id = task_id
        self.message = message
        super().__init__(f"Transition failed for task {task_id}: {message}")


class FetchError(DriverSyncError):
    """Raised by the backend when a full task snapshot cannot be fetched."""
    pass


class SessionNotFoundError(DriverSyncError):
    """Raised when no active session exists for a driver."""
    def __init__(self, driver_id: str):
        self.driver_id = driver_id
        super().__init__(f"No active session for driver {driver_id}")


class TaskNotFoundError(DriverSyncError):
    """Raised when a task id is not in the driver's current list."""
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} is not in the current list")


class SelectionError(DriverSyncError, ValueError):
    """Raised when a task cannot join a selection, e.g. a route stop without coordinates."""
    pass
