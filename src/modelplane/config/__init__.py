"""Config module exports."""

from modelplane.config.loader import load_config, migrations_path
from modelplane.config.models import (
    DatabaseConfig,
    ExecutorConfig,
    LoggingConfig,
    LogOutputConfig,
    MigrationsConfig,
    ModelPlaneConfig,
)

__all__ = [
    "load_config",
    "migrations_path",
    "ModelPlaneConfig",
    "LoggingConfig",
    "LogOutputConfig",
    "DatabaseConfig",
    "MigrationsConfig",
    "ExecutorConfig",
]
