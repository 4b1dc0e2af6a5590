"""
Custom exceptions for the LabFlow laboratory workflow system
"""


class LIMSException(Exception):
    """Base exception for all LIMS-related errors"""

    def __init__(self, message: str, error_code: str = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class DatabaseException(LIMSException):
    """Database-related exceptions"""
    pass


class RecordNotFound(DatabaseException):
    """Requested record does not exist in the record store"""

    def __init__(self, table: str, record_id):
        self.table = table
        self.record_id = record_id
        super().__init__(f"{table} record {record_id} not found", "RECORD_NOT_FOUND")


class ConcurrencyConflict(DatabaseException):
    """
    Raised when the store detects a write that collided with a concurrent one,
    e.g. two orders created on the same day that read the same daily sequence.
    Callers are expected to retry the read-then-decide sequence.
    """

    def __init__(self, message: str):
        super().__init__(message, "CONCURRENCY_CONFLICT")


class WorkflowException(LIMSException):
    """Order or result workflow rule violations"""
    pass


class InvalidTransition(WorkflowException):
    """Requested status is not reachable from the current state"""

    def __init__(self, current, target, message: str = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot move from '{current}' to '{target}'",
            "INVALID_TRANSITION"
        )


class PreconditionNotMet(WorkflowException):
    """A guarded transition's precondition failed; reason is shown to operators verbatim"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason, "PRECONDITION_NOT_MET")


class ParseFailure(LIMSException):
    """A lab value or reference range could not be interpreted"""

    def __init__(self, text: str, message: str = None):
        self.text = text
        super().__init__(message or f"Unable to parse '{text}'", "PARSE_FAILURE")


class ValidationException(LIMSException):
    """Data validation exceptions"""
    pass


class ConfigurationException(LIMSException):
    """Configuration-related exceptions"""
    pass
