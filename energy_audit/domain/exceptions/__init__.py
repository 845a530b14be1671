# Domain Exceptions
from .domain_exceptions import (
    DomainException,
    EntityNotFoundException,
    ValidationException,
    InvalidStateTransitionException,
    TransientStoreException,
    ProcessorMissingException,
    NotificationException,
)

__all__ = [
    'DomainException',
    'EntityNotFoundException',
    'ValidationException',
    'InvalidStateTransitionException',
    'TransientStoreException',
    'ProcessorMissingException',
    'NotificationException',
]
