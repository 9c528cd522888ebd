"""
Configuration Manager for pgtester

Resolves the base PostgreSQL connection URI and the tuning knobs used by the
ephemeral database lifecycle (retry bound, retry interval, default migrations
directory). Environment files are loaded with precedence, process environment
always wins.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


class ConfigManager:
    """
    Central configuration management for pgtester.

    Provides:
    - Environment file loading with precedence
    - Base database URI resolution and validation
    - Retry settings for administrative connections
    - Default migrations directory
    """

    DEFAULT_MAX_RETRIES = 30
    DEFAULT_RETRY_INTERVAL = 10.0
    DEFAULT_MIGRATIONS_DIR = "./migrations"

    VALID_SCHEMES = ('postgres', 'postgresql')

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize ConfigManager.

        Args:
            config_dir: Directory containing environment files
        """
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self._env_vars: Dict[str, str] = {}
        self._load_env_files()

    def _load_env_files(self):
        """Load environment files with precedence: .env.prod > .env.staging > .env.dev > .env"""
        env = os.getenv('ENV', 'dev')

        env_files = ['.env']
        if env in ['dev', 'staging', 'prod']:
            env_files.append('.env.dev')
        if env in ['staging', 'prod']:
            env_files.append('.env.staging')
        if env == 'prod':
            env_files.append('.env.prod')

        # Later files override earlier ones
        for env_file in env_files:
            env_path = self.config_dir / env_file
            if env_path.exists():
                self._load_env_file(env_path)

    def _load_env_file(self, env_path: Path):
        """Load a single environment file into our internal env_vars dict."""
        try:
            with open(env_path, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line.startswith('export '):
                        line = line[len('export '):].lstrip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        value = value.strip()
                        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                            value = value[1:-1]
                        self._env_vars[key.strip()] = value
        except OSError as e:
            logger.warning(f"Could not read environment file {env_path}: {e}")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a setting, process environment first, then loaded env files."""
        value = os.getenv(key)
        if value is None:
            value = self._env_vars.get(key)
        return default if value is None or value == '' else value

    @property
    def database_url(self) -> str:
        """Get the base database URI the ephemeral databases are derived from."""
        database_url = self.get('DATABASE_URL')
        if not database_url:
            raise ConfigValidationError("DATABASE_URL is required but not configured")

        scheme = urlparse(database_url).scheme
        if scheme not in self.VALID_SCHEMES:
            raise ConfigValidationError(
                f"Invalid DATABASE_URL scheme '{scheme}' - expected one of {', '.join(self.VALID_SCHEMES)}"
            )
        return database_url

    @property
    def max_retries(self) -> int:
        """Maximum number of administrative connection attempts."""
        raw = self.get('PGTESTER_MAX_RETRIES')
        if raw is None:
            return self.DEFAULT_MAX_RETRIES
        try:
            value = int(raw)
        except ValueError:
            raise ConfigValidationError(f"Invalid PGTESTER_MAX_RETRIES: '{raw}' - must be an integer")
        if value < 1:
            raise ConfigValidationError(f"Invalid PGTESTER_MAX_RETRIES: '{raw}' - must be at least 1")
        return value

    @property
    def retry_interval(self) -> float:
        """Seconds to wait between administrative connection attempts."""
        raw = self.get('PGTESTER_RETRY_INTERVAL')
        if raw is None:
            return self.DEFAULT_RETRY_INTERVAL
        try:
            value = float(raw)
        except ValueError:
            raise ConfigValidationError(f"Invalid PGTESTER_RETRY_INTERVAL: '{raw}' - must be a number")
        if value < 0:
            raise ConfigValidationError(f"Invalid PGTESTER_RETRY_INTERVAL: '{raw}' - must not be negative")
        return value

    @property
    def default_migrations_dir(self) -> Path:
        """Migrations directory used by pools that do not declare one."""
        return Path(self.get('PGTESTER_MIGRATIONS_DIR', self.DEFAULT_MIGRATIONS_DIR))
