"""Append-only directory of migration artifacts.

Each artifact is one JSON file named ``<YYYYMMDDHHMMSS>_<name>.json``
holding the plan, the snapshot it produces and a checksum over both.
Files are created with exclusive-create and never rewritten; editing one
by hand is detected by the checksum on the next load.

The snapshot of the newest artifact is the "previous" schema the next
plan is computed against.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import structlog

from modelplane.config.constants import (
    MIGRATION_FILE_SUFFIX,
    MIGRATION_FORMAT_VERSION,
    MIGRATION_TIMESTAMP_FORMAT,
)
from modelplane.core.errors import MigrationError
from modelplane.migrate.planner import MigrationPlan
from modelplane.schema.physical import PhysicalSchema

logger = structlog.get_logger()

_FILENAME = re.compile(r"^(\d{14})_([a-z0-9_]+)\.json$")


@dataclass(frozen=True)
class MigrationArtifact:
    """One persisted plan batch."""

    name: str
    created_at: str
    plan: MigrationPlan
    snapshot: PhysicalSchema
    checksum: str
    path: Path

    @property
    def id(self) -> str:
        """File stem, the identity recorded in the ledger."""
        return f"{self.created_at}_{self.name}"


def checksum(name: str, created_at: str, plan: MigrationPlan, snapshot: PhysicalSchema) -> str:
    body = {
        "name": name,
        "created_at": created_at,
        "plan": plan.to_dict(),
        "snapshot": snapshot.to_dict(),
    }
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


def sanitize_name(name: str) -> str:
    """Lower-case, underscores only; empty names become ``migration``."""
    cleaned = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return cleaned or "migration"


class MigrationHistory:
    """Reads and appends artifacts in one directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def paths(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            p
            for p in self.directory.iterdir()
            if p.suffix == MIGRATION_FILE_SUFFIX and _FILENAME.match(p.name)
        )

    def artifacts(self) -> list[MigrationArtifact]:
        """Every artifact, oldest first, checksums and chain verified.

        Raises:
            MigrationError: An artifact was edited, is unreadable, or does not
                follow from the snapshot of the artifact before it.
        """
        result: list[MigrationArtifact] = []
        previous: str | None = None
        for path in self.paths():
            artifact = load_artifact(path)
            if artifact.plan.previous_fingerprint != previous:
                raise MigrationError.invalid_artifact(
                    str(path), "plan does not start from the previous artifact's snapshot"
                )
            previous = artifact.snapshot.fingerprint()
            result.append(artifact)
        return result

    def latest_snapshot(self) -> PhysicalSchema | None:
        artifacts = self.artifacts()
        return artifacts[-1].snapshot if artifacts else None

    def write(
        self,
        name: str,
        plan: MigrationPlan,
        snapshot: PhysicalSchema,
        *,
        now: datetime | None = None,
    ) -> MigrationArtifact:
        """Persist a new artifact.

        Timestamps are strictly increasing within the directory even when
        two artifacts are written in the same second.
        """
        clean = sanitize_name(name)
        stamp = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        existing = self.paths()
        if existing:
            last = _FILENAME.match(existing[-1].name)
            assert last is not None
            floor = datetime.strptime(last.group(1), MIGRATION_TIMESTAMP_FORMAT)
            floor = floor.replace(tzinfo=stamp.tzinfo) + timedelta(seconds=1)
            if stamp < floor:
                stamp = floor
        created_at = stamp.strftime(MIGRATION_TIMESTAMP_FORMAT)

        digest = checksum(clean, created_at, plan, snapshot)
        document: dict[str, Any] = {
            "format": MIGRATION_FORMAT_VERSION,
            "name": clean,
            "created_at": created_at,
            "checksum": digest,
            "plan": plan.to_dict(),
            "snapshot": snapshot.to_dict(),
        }
        path = self.directory / f"{created_at}_{clean}{MIGRATION_FILE_SUFFIX}"
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("x", encoding="utf-8") as f:
                json.dump(document, f, sort_keys=True, indent=2)
                f.write("\n")
        except FileExistsError:
            raise MigrationError.artifact_exists(str(path)) from None

        logger.info("migration_artifact_written", path=str(path), steps=len(plan))
        return MigrationArtifact(
            name=clean,
            created_at=created_at,
            plan=plan,
            snapshot=snapshot,
            checksum=digest,
            path=path,
        )


def load_artifact(path: Path) -> MigrationArtifact:
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise MigrationError.invalid_artifact(str(path), str(e)) from e
    if not isinstance(document, dict):
        raise MigrationError.invalid_artifact(str(path), "top-level value must be an object")
    if document.get("format") != MIGRATION_FORMAT_VERSION:
        raise MigrationError.invalid_artifact(
            str(path), f"unsupported format {document.get('format')!r}"
        )

    try:
        name = document["name"]
        created_at = document["created_at"]
        plan = MigrationPlan.from_dict(document["plan"])
        snapshot = PhysicalSchema.from_dict(document["snapshot"])
        stored = document["checksum"]
    except (KeyError, TypeError, ValueError) as e:
        raise MigrationError.invalid_artifact(str(path), f"malformed: {e}") from e

    actual = checksum(name, created_at, plan, snapshot)
    if actual != stored:
        raise MigrationError.checksum_mismatch(f"{created_at}_{name}", stored, actual)
    if plan.next_fingerprint != snapshot.fingerprint():
        raise MigrationError.invalid_artifact(str(path), "plan does not produce the snapshot")
    return MigrationArtifact(
        name=name,
        created_at=created_at,
        plan=plan,
        snapshot=snapshot,
        checksum=stored,
        path=path,
    )
