"""
Database package for pgtester.

Provides administrative connections with retry, ephemeral database naming,
and SQL migrations.
"""

from .connection_manager import (
    DatabaseConnectionManager,
    DatabaseConnectionError,
    build_dsn,
    derive_db_prefix,
)
from .migration_manager import MigrationManager, MigrationError
from .naming import generate_database_name

__all__ = [
    'DatabaseConnectionManager',
    'DatabaseConnectionError',
    'MigrationManager',
    'MigrationError',
    'build_dsn',
    'derive_db_prefix',
    'generate_database_name'
]
