"""Engine configuration.

Settings are read from environment variables (a ``.env`` file is loaded at
package import). Values are looked up on every call so tests can patch the
environment without reloading modules.
"""

import os
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class EngineConfig:
    """Configuration class for engine settings."""

    # Storage
    DEFAULT_STORAGE_BACKEND = "memory"
    DEFAULT_SQLITE_PATH = "data/stepflow.db"

    # Agent models
    DEFAULT_AGENT_MODEL = "gpt-4o-mini"
    DEFAULT_SUMMARY_MODEL = "gpt-4o"

    # Monitoring
    MONITOR_QUEUE_TIMEOUT = 1.0
    MONITOR_HISTORY_LIMIT = 1000

    @classmethod
    def storage_backend(cls) -> str:
        return os.getenv("STORAGE_BACKEND", cls.DEFAULT_STORAGE_BACKEND).lower()

    @classmethod
    def sqlite_path(cls) -> str:
        return os.getenv("SQLITE_DB_PATH", cls.DEFAULT_SQLITE_PATH)

    @classmethod
    def postgres_dsn(cls) -> Optional[str]:
        return os.getenv("POSTGRES_DSN")

    @classmethod
    def strict_schemas(cls) -> bool:
        """Whether schema validation refuses type coercion."""
        return _env_flag("STEPFLOW_STRICT_SCHEMAS", True)

    @classmethod
    def monitor_enabled(cls) -> bool:
        return _env_flag("STEPFLOW_MONITOR_ENABLED", True)

    @classmethod
    def agent_model(cls) -> str:
        return os.getenv("STEPFLOW_AGENT_MODEL", cls.DEFAULT_AGENT_MODEL)

    @classmethod
    def summary_model(cls) -> str:
        return os.getenv("STEPFLOW_SUMMARY_MODEL", cls.DEFAULT_SUMMARY_MODEL)
