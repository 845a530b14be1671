# Application Interfaces
from .services import (
    DataAccess,
    CacheBackend,
    RealtimePublisher,
    NotificationChannelSender,
    AnalyticsService,
)

__all__ = [
    'DataAccess',
    'CacheBackend',
    'RealtimePublisher',
    'NotificationChannelSender',
    'AnalyticsService',
]
