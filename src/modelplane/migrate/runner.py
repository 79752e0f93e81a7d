"""Migration workflow: status, create and deploy.

``create`` plans the resolved schema against the newest artifact's
snapshot and appends a new artifact. ``deploy`` applies every artifact the
ledger has not seen, oldest first, each in its own transaction together
with its ledger row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from modelplane.config.loader import migrations_path
from modelplane.config.models import ModelPlaneConfig
from modelplane.core.errors import MigrationError
from modelplane.migrate import ledger
from modelplane.migrate.apply import apply_plan
from modelplane.migrate.history import MigrationArtifact, MigrationHistory
from modelplane.migrate.planner import plan
from modelplane.schema.physical import PhysicalSchema
from modelplane.store.database import Store

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = structlog.get_logger()


@dataclass
class MigrationStatus:
    """Where the store and the artifact directory stand."""

    applied: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)
    schema_changed: bool = False

    @property
    def up_to_date(self) -> bool:
        return not self.pending and not self.schema_changed


class Migrator:
    """Runs the artifact workflow against one store."""

    def __init__(
        self,
        store: Store,
        history: MigrationHistory,
        *,
        accept_data_loss: bool = False,
    ) -> None:
        self.store = store
        self.history = history
        self.accept_data_loss = accept_data_loss

    @classmethod
    def from_config(
        cls, store: Store, config: ModelPlaneConfig, project_root: Path | None = None
    ) -> Migrator:
        return cls(
            store,
            MigrationHistory(migrations_path(config, project_root)),
            accept_data_loss=config.migrations.accept_data_loss,
        )

    def status(self, schema: PhysicalSchema | None = None) -> MigrationStatus:
        """Compare the ledger with the directory, and ``schema`` with the last artifact.

        ``unknown`` lists ledger entries with no artifact in the directory.
        """
        artifacts = self.history.artifacts()
        done = self._verified_ledger(artifacts)
        ids = [a.id for a in artifacts]
        latest = artifacts[-1].snapshot if artifacts else None
        return MigrationStatus(
            applied=[i for i in ids if i in done],
            pending=[i for i in ids if i not in done],
            unknown=[name for name in done if name not in ids],
            schema_changed=schema is not None and len(plan(latest, schema)) > 0,
        )

    def create(self, schema: PhysicalSchema, name: str) -> MigrationArtifact | None:
        """Write an artifact taking the last snapshot to ``schema``.

        Returns None when there is nothing to change.
        """
        previous = self.history.latest_snapshot()
        steps = plan(previous, schema)
        if not steps:
            logger.info("migration_not_needed", name=name)
            return None
        for step in steps.backfill_steps:
            logger.warning("backfill_required", step=step.describe())
        return self.history.write(name, steps, schema)

    def deploy(self) -> list[MigrationArtifact]:
        """Apply pending artifacts in order. Returns the ones applied.

        Raises:
            MigrationError: An artifact fails to apply (earlier ones stay
                applied), or an applied artifact was edited afterwards.
        """
        artifacts = self.history.artifacts()
        done = self._verified_ledger(artifacts)

        deployed: list[MigrationArtifact] = []
        previous: PhysicalSchema | None = None
        for artifact in artifacts:
            if artifact.id not in done:
                self._apply(artifact, previous)
                deployed.append(artifact)
            previous = artifact.snapshot
        if not deployed:
            logger.info("migrations_up_to_date", applied=len(done))
        return deployed

    def dev(self, schema: PhysicalSchema, name: str) -> MigrationArtifact | None:
        """Create an artifact for ``schema`` if needed, then deploy everything pending."""
        artifact = self.create(schema, name)
        self.deploy()
        return artifact

    def _apply(self, artifact: MigrationArtifact, previous: PhysicalSchema | None) -> None:
        log = logger.bind(migration=artifact.id)
        log.info("migration_started", steps=len(artifact.plan))

        def _record(conn: Connection) -> None:
            ledger.record(
                conn, artifact.id, artifact.checksum, len(artifact.plan), self.store.namespace
            )

        try:
            apply_plan(
                self.store,
                artifact.plan,
                previous,
                accept_data_loss=self.accept_data_loss,
                before_commit=_record,
            )
        except MigrationError as e:
            log.error("migration_failed", error=e.error_name, details=e.details)
            raise
        log.info("migration_applied")

    def _verified_ledger(self, artifacts: list[MigrationArtifact]) -> dict[str, str]:
        by_id = {a.id: a for a in artifacts}
        done: dict[str, str] = {}
        for row in ledger.applied(self.store):
            artifact = by_id.get(row.name)
            if artifact is not None and artifact.checksum != row.checksum:
                raise MigrationError.checksum_mismatch(row.name, row.checksum, artifact.checksum)
            done[row.name] = row.checksum
        return done
