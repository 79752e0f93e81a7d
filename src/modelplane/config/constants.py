"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
For configurable values, see models.py.
"""

# =============================================================================
# Store
# =============================================================================

MIGRATIONS_TABLE = "_modelplane_migrations"
"""Ledger table recording applied migrations. Never part of a PhysicalSchema."""

SQLITE_INTERNAL_PREFIX = "sqlite_"
"""Tables SQLite manages itself, skipped by introspection."""

# =============================================================================
# Executor
# =============================================================================

FIND_MANY_MAX_TAKE = 10_000
"""Hard cap on a single find_many page."""

# =============================================================================
# Migration artifacts
# =============================================================================

MIGRATION_FILE_SUFFIX = ".json"
MIGRATION_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
"""Artifact file names are <timestamp>_<name>.json."""

MIGRATION_FORMAT_VERSION = 1
"""Bumped when the artifact layout changes incompatibly."""

# =============================================================================
# Config files
# =============================================================================

PROJECT_CONFIG_FILENAME = "modelplane.yaml"
ENV_PREFIX = "MODELPLANE__"
