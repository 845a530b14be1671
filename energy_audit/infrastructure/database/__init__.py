# Database Infrastructure
from .connection import (
    DatabaseManager,
    create_engine_from_settings,
    external_metadata,
    health_check,
    init_db,
    metadata,
)
from .data_access import SQLAlchemyDataAccess
from . import tables

__all__ = [
    'DatabaseManager',
    'create_engine_from_settings',
    'external_metadata',
    'health_check',
    'init_db',
    'metadata',
    'SQLAlchemyDataAccess',
    'tables',
]
