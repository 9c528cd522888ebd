"""
pgtester testing infrastructure

Ephemeral database provisioning for async tests, the database_test decorator,
and a Docker-backed PostgreSQL server for integration runs.
"""

from .pool_spec import PoolSpec
from .test_database import (
    DatabaseTestManager,
    EphemeralDatabase,
    InvocationState,
    PoolRegistry,
    ProvisioningError,
    TeardownError,
    TestAbnormalTermination,
    TransactionHandle,
)
from .decorator import database_test

__all__ = [
    'DatabaseTestManager',
    'EphemeralDatabase',
    'InvocationState',
    'PoolRegistry',
    'PoolSpec',
    'ProvisioningError',
    'TeardownError',
    'TestAbnormalTermination',
    'TransactionHandle',
    'database_test'
]
