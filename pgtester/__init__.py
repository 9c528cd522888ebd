"""
pgtester

Ephemeral PostgreSQL databases for async tests: each test gets freshly
created and migrated databases that are dropped afterward, even when the
test fails.
"""

from pgtester.config.config_manager import ConfigManager, ConfigValidationError
from pgtester.database.connection_manager import DatabaseConnectionError
from pgtester.database.migration_manager import MigrationError
from pgtester.testing.decorator import database_test
from pgtester.testing.pool_spec import PoolSpec
from pgtester.testing.test_database import (
    DatabaseTestManager,
    ProvisioningError,
    TeardownError,
    TestAbnormalTermination,
)

__version__ = "0.1.0"

__all__ = [
    'ConfigManager',
    'ConfigValidationError',
    'DatabaseConnectionError',
    'DatabaseTestManager',
    'MigrationError',
    'PoolSpec',
    'ProvisioningError',
    'TeardownError',
    'TestAbnormalTermination',
    'database_test'
]
