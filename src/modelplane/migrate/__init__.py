"""Migration planning, artifacts and application."""

from modelplane.migrate.apply import apply_plan
from modelplane.migrate.history import MigrationArtifact, MigrationHistory
from modelplane.migrate.ledger import AppliedMigration
from modelplane.migrate.planner import (
    MigrationPlan,
    MigrationStep,
    StepKind,
    apply_step,
    plan,
    replay,
)
from modelplane.migrate.runner import MigrationStatus, Migrator

__all__ = [
    # Planning
    "plan",
    "replay",
    "apply_step",
    "MigrationPlan",
    "MigrationStep",
    "StepKind",
    # Artifacts
    "MigrationHistory",
    "MigrationArtifact",
    # Application
    "apply_plan",
    "AppliedMigration",
    "Migrator",
    "MigrationStatus",
]
