"""
Custom exceptions for the progress core.
Each exception carries a stable error code that the event coordinator
puts into failed results.
"""
from fitquest.constants import (
    ERR_VALIDATION,
    ERR_NOT_FOUND,
    ERR_REVERSAL_FAILED,
    ERR_DATABASE,
    ERR_INTERNAL,
)


class FitQuestException(Exception):
    """Base exception for the progress core"""
    code = ERR_INTERNAL


class ValidationException(FitQuestException):
    """Raised when data validation fails"""
    code = ERR_VALIDATION

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error for {field}: {message}")


class InvalidTimeFormatException(ValidationException):
    """Raised when time format is invalid"""
    def __init__(self, time_str: str):
        self.time_str = time_str
        super().__init__("scheduled_time", f"Invalid time format: {time_str}. Expected HH:MM")


class TaskNotFoundException(FitQuestException):
    """Raised when a task is not found"""
    code = ERR_NOT_FOUND

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task with ID {task_id} not found")


class EventNotFoundException(FitQuestException):
    """Raised when an event record is not found"""
    code = ERR_NOT_FOUND

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Event with token {token} not found")


class AchievementNotFoundException(FitQuestException):
    """Raised when an achievement id is not in the catalog"""
    code = ERR_NOT_FOUND

    def __init__(self, achievement_id: str):
        self.achievement_id = achievement_id
        super().__init__(f"Achievement {achievement_id} not found")


class BodyweightEntryNotFoundException(FitQuestException):
    """Raised when a bodyweight entry is not found"""
    code = ERR_NOT_FOUND

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Bodyweight entry {entry_id} not found")


class ReversalFailedException(FitQuestException):
    """Raised when a located event cannot be reversed"""
    code = ERR_REVERSAL_FAILED

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"Reversal of {token} failed: {reason}")


class DatabaseException(FitQuestException):
    """Raised when database operations fail"""
    code = ERR_DATABASE

    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database {operation} failed: {details}")
