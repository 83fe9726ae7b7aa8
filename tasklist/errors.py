"""
Task list error hierarchy.

Every failure raised by the service layer is a TaskListError subclass
carrying a human readable message and a context dict. Adapters map each
kind to their own status convention (see main.py).
"""


class TaskListError(Exception):
    """Base exception for all task list errors"""

    kind = "error"

    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        return self.message


class ValidationError(TaskListError):
    """Malformed or out-of-range input, raised before the store is touched"""
    kind = "validation_error"


class NotFoundError(TaskListError):
    """Referenced id or name does not resolve to a live entity"""
    kind = "not_found"


class ConflictError(TaskListError):
    """Uniqueness or dependency constraint would be violated"""
    kind = "conflict"


class CycleError(TaskListError):
    """Parent assignment would make an entity its own ancestor"""
    kind = "cycle"


class StructuralError(TaskListError):
    """A hierarchy invariant was found violated in stored data"""
    kind = "structural_error"


class StoreError(TaskListError):
    """The persistence layer failed"""
    kind = "store_error"
