"""
pgtester Migration Manager
Applies a directory of versioned SQL migrations to a database and keeps a
checksummed record of what was applied.
"""

import sys
import asyncio
import asyncpg
import hashlib
import re
from pathlib import Path
from typing import List, Dict, Tuple, Union
from datetime import datetime, timezone
import logging

MIGRATIONS_TABLE = "_schema_migrations"

# 001_initial_schema.sql or 20240101120000_add_users.up.sql
MIGRATION_FILENAME = re.compile(r"^(?P<version>\d+)_(?P<name>.+?)(?P<up>\.up)?\.sql$")


class MigrationError(Exception):
    """Raised when migrations cannot be read or applied."""
    pass


class Migration:
    """A single migration file."""

    def __init__(self, version: int, name: str, path: Path, sql: str):
        self.version = version
        self.name = name
        self.path = path
        self.sql = sql
        self.checksum = hashlib.sha256(sql.encode('utf-8')).hexdigest()

    def __repr__(self):
        return f"Migration(version={self.version}, name={self.name!r})"


class MigrationManager:
    """Manages database migrations with proper version control."""

    def __init__(self, migrations_dir: Union[str, Path]):
        self.migrations_dir = Path(migrations_dir)
        self.logger = logging.getLogger(__name__)

    async def initialize_migrations_table(self, conn: asyncpg.Connection) -> None:
        """Create the migrations table if it doesn't exist."""
        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                version BIGINT PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                applied_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                checksum VARCHAR(64) NOT NULL
            )
        """)

    async def get_applied_migrations(self, conn: asyncpg.Connection) -> Dict[int, str]:
        """Get applied migration versions mapped to their checksums."""
        rows = await conn.fetch(
            f"SELECT version, checksum FROM {MIGRATIONS_TABLE} ORDER BY version"
        )
        return {row['version']: row['checksum'] for row in rows}

    def get_available_migrations(self) -> List[Migration]:
        """
        Get available migrations sorted by version.

        Raises:
            MigrationError: If the directory is missing, a filename cannot be
                parsed, or two files share a version
        """
        if not self.migrations_dir.is_dir():
            raise MigrationError(f"Migrations directory not found: {self.migrations_dir}")

        migrations: Dict[int, Migration] = {}
        for file_path in sorted(self.migrations_dir.glob("*.sql")):
            if file_path.name.startswith((".", "__")) or file_path.name.endswith(".down.sql"):
                continue

            match = MIGRATION_FILENAME.match(file_path.name)
            if not match:
                raise MigrationError(f"Invalid migration filename format: {file_path.name}")

            version = int(match.group('version'))
            if version in migrations:
                raise MigrationError(
                    f"Duplicate migration version {version}: "
                    f"{migrations[version].path.name} and {file_path.name}"
                )

            sql = file_path.read_text(encoding='utf-8')
            migrations[version] = Migration(version, match.group('name'), file_path, sql)

        return [migrations[version] for version in sorted(migrations)]

    async def apply_migration(self, conn: asyncpg.Connection, migration: Migration) -> None:
        """Apply a single migration and record it in one transaction."""
        try:
            async with conn.transaction():
                if migration.sql.strip():
                    await conn.execute(migration.sql)
                else:
                    self.logger.warning(f"Migration {migration.version} ({migration.name}) is empty, recording only")

                await conn.execute(
                    f"""
                    INSERT INTO {MIGRATIONS_TABLE} (version, name, applied_at, checksum)
                    VALUES ($1, $2, $3, $4)
                    """,
                    migration.version, migration.name, datetime.now(timezone.utc), migration.checksum
                )
        except asyncpg.PostgresError as e:
            raise MigrationError(
                f"Failed to apply migration {migration.version} ({migration.name}): {e}"
            ) from e

        self.logger.info(f"Applied migration {migration.version}: {migration.name}")

    async def run_pending_migrations(self, target: Union[asyncpg.Connection, asyncpg.Pool]) -> int:
        """
        Run all pending migrations.

        Args:
            target: Connection, or pool to acquire one connection from

        Returns:
            Number of migrations applied

        Raises:
            MigrationError: If any migration cannot be applied
        """
        available_migrations = self.get_available_migrations()

        if isinstance(target, asyncpg.Pool):
            async with target.acquire() as conn:
                return await self._run_pending(conn, available_migrations)
        return await self._run_pending(target, available_migrations)

    async def _run_pending(self, conn: asyncpg.Connection, available_migrations: List[Migration]) -> int:
        await self.initialize_migrations_table(conn)
        applied = await self.get_applied_migrations(conn)

        self.logger.debug(f"Found {len(applied)} applied migrations")
        self.logger.debug(f"Found {len(available_migrations)} available migrations")

        applied_count = 0
        for migration in available_migrations:
            checksum = applied.get(migration.version)
            if checksum is None:
                self.logger.debug(f"Applying migration {migration.version}: {migration.name}")
                await self.apply_migration(conn, migration)
                applied_count += 1
            elif checksum != migration.checksum:
                raise MigrationError(
                    f"Migration {migration.version} ({migration.name}) was modified after it was applied"
                )
            else:
                self.logger.debug(f"Migration {migration.version} already applied, skipping")

        self.logger.info(f"Applied {applied_count} migrations from {self.migrations_dir}")
        return applied_count

    async def get_migration_status(self, conn: asyncpg.Connection) -> Dict:
        """Get current migration status."""
        await self.initialize_migrations_table(conn)
        applied = await self.get_applied_migrations(conn)
        available_migrations = self.get_available_migrations()

        pending: List[Tuple[int, str]] = [
            (m.version, m.name) for m in available_migrations if m.version not in applied
        ]

        return {
            'applied_count': len(applied),
            'available_count': len(available_migrations),
            'pending_count': len(pending),
            'applied_versions': sorted(applied),
            'pending_migrations': pending
        }


async def main():
    """Command-line interface for migration manager."""
    import argparse

    from pgtester.config.config_manager import ConfigManager

    parser = argparse.ArgumentParser(description="pgtester Migration Manager")
    parser.add_argument('command', choices=['up', 'status'],
                        help='Migration command to execute')
    parser.add_argument('--database-url', help='Database URL (overrides DATABASE_URL env var)')
    parser.add_argument('--migrations', help='Migrations directory (overrides PGTESTER_MIGRATIONS_DIR)')

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    config = ConfigManager()
    database_url = args.database_url or config.database_url
    manager = MigrationManager(args.migrations or config.default_migrations_dir)

    conn = await asyncpg.connect(database_url)
    try:
        if args.command == 'up':
            try:
                await manager.run_pending_migrations(conn)
            except MigrationError as e:
                logging.getLogger(__name__).error(str(e))
                sys.exit(1)

        elif args.command == 'status':
            status = await manager.get_migration_status(conn)
            print(f"Applied migrations: {status['applied_count']}")
            print(f"Available migrations: {status['available_count']}")
            print(f"Pending migrations: {status['pending_count']}")

            if status['pending_migrations']:
                print("\nPending migrations:")
                for version, name in status['pending_migrations']:
                    print(f"  {version}: {name}")
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(main())
