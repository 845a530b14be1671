"""
Domain Exceptions - Custom exceptions for alerting and background job errors.
"""
from typing import Any, Dict, List, Optional


class DomainException(Exception):
    """
    Base exception for all domain-related errors.

    All domain exceptions inherit from this class so callers can handle
    alerting and job failures uniformly.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for logs and job results."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class EntityNotFoundException(DomainException):
    """Raised when a requested alert, threshold or job cannot be found."""

    def __init__(
        self,
        entity_type: str,
        entity_id: Optional[Any] = None,
        message: Optional[str] = None
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        msg = message or f"{entity_type} not found"
        if entity_id is not None:
            msg = f"{entity_type} with id '{entity_id}' not found"
        super().__init__(
            message=msg,
            code='ENTITY_NOT_FOUND',
            details={'entity_type': entity_type, 'entity_id': entity_id}
        )


class ValidationException(DomainException):
    """
    Raised when input validation fails.

    Carries every violation found, not just the first one.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[List[str]] = None
    ):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {', '.join(self.errors)}"
        super().__init__(
            message=message,
            code='VALIDATION_ERROR',
            details={'validation_errors': self.errors}
        )


class InvalidStateTransitionException(DomainException):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        entity_type: str,
        current_state: str,
        target_state: str,
        message: Optional[str] = None
    ):
        msg = message or f"Cannot transition {entity_type} from '{current_state}' to '{target_state}'"
        super().__init__(
            message=msg,
            code='INVALID_STATE_TRANSITION',
            details={
                'entity_type': entity_type,
                'current_state': current_state,
                'target_state': target_state
            }
        )


class TransientStoreException(DomainException):
    """Raised when the backing store fails or is unreachable."""

    def __init__(
        self,
        operation: str,
        message: str,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=f"Store operation '{operation}' failed: {message}",
            code='STORE_ERROR',
            details={
                'operation': operation,
                'original_error': str(original_error) if original_error else None
            }
        )


class ProcessorMissingException(DomainException):
    """Raised when no processor is registered for a job type."""

    def __init__(self, job_type: str):
        super().__init__(
            message=f"No processor registered for job type: {job_type}",
            code='PROCESSOR_MISSING',
            details={'job_type': job_type}
        )


class NotificationException(DomainException):
    """Raised when a notification channel fails to deliver."""

    def __init__(self, channel: str, message: str):
        super().__init__(
            message=f"{channel} notification failed: {message}",
            code='NOTIFICATION_ERROR',
            details={'channel': channel}
        )
