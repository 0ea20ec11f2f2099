"""State management for image builds using SQLite
with per-host phase tracking."""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Phase(Enum):
    """Build phases, in order"""

    PROVISIONING = "provisioning"
    AWAITING_CUSTOMIZATION = "awaiting_customization"
    CAPTURING_SPECIALIZED = "capturing_specialized"
    GENERALIZING = "generalizing"
    CAPTURING_GENERALIZED = "capturing_generalized"
    IMPORTING = "importing"
    COMPLETE = "complete"


PHASE_ORDER = list(Phase)


@dataclass
class BuildRecord:  # pylint: disable=too-many-instance-attributes
    """Everything a later invocation needs to resume a build."""

    host_name: str
    group: str
    region: str
    phase: Phase
    request: dict
    instance_id: Optional[str] = None
    specialized_image_id: Optional[str] = None
    generalized_image_id: Optional[str] = None
    gallery_image_id: Optional[str] = None
    updated_at: Optional[str] = None

    def reached(self, phase: Phase) -> bool:
        """True once the build has got to phase or past it."""
        return PHASE_ORDER.index(self.phase) >= PHASE_ORDER.index(phase)


BUILD_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS builds (
        host_name TEXT PRIMARY KEY,
        cloud_group TEXT NOT NULL,
        region TEXT NOT NULL,
        phase TEXT NOT NULL,
        request TEXT NOT NULL,
        instance_id TEXT,
        specialized_image_id TEXT,
        generalized_image_id TEXT,
        gallery_image_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

ARTIFACT_COLUMNS = (
    "instance_id",
    "specialized_image_id",
    "generalized_image_id",
    "gallery_image_id",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseConnection:  # pylint: disable=too-few-public-methods
    """Handles database connection and schema initialization"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._init_schema()

    @contextmanager
    def get_connection(self):
        """Yield a SQLite connection with the configured row factory."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self):
        with self.get_connection() as conn:
            conn.execute(BUILD_TABLE_SQL)
            conn.commit()


class BuildState:
    """Reads and writes BuildRecords keyed by host name."""

    def __init__(self, db_path: str):
        self.db = DatabaseConnection(db_path)

    def create(self, host_name: str, group: str, region: str, request: dict) -> BuildRecord:
        """
        Start tracking a new build in the PROVISIONING phase.

        A record left over from an earlier build of the same host is replaced.
        """
        now = _now()
        with self.db.get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO builds
                    (host_name, cloud_group, region, phase, request, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (host_name, group, region, Phase.PROVISIONING.value, json.dumps(request), now, now),
            )
            conn.commit()
        return self.get(host_name)

    def get(self, host_name: str) -> Optional[BuildRecord]:
        """Return the record for host_name, or None."""
        with self.db.get_connection() as conn:
            row = conn.execute("SELECT * FROM builds WHERE host_name = ?", (host_name,)).fetchone()
        if row is None:
            return None
        return BuildRecord(
            host_name=row["host_name"],
            group=row["cloud_group"],
            region=row["region"],
            phase=Phase(row["phase"]),
            request=json.loads(row["request"]),
            instance_id=row["instance_id"],
            specialized_image_id=row["specialized_image_id"],
            generalized_image_id=row["generalized_image_id"],
            gallery_image_id=row["gallery_image_id"],
            updated_at=row["updated_at"],
        )

    def update(self, host_name: str, phase: Optional[Phase] = None, **artifacts) -> BuildRecord:
        """
        Record a phase transition and/or produced artifact ids.

        Raises:
            ValueError: For unknown artifact names
        """
        unknown = set(artifacts) - set(ARTIFACT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown build artifacts: {sorted(unknown)}")
        assignments = dict(artifacts)
        if phase is not None:
            assignments["phase"] = phase.value
        assignments["updated_at"] = _now()
        columns = ", ".join(f"{column} = ?" for column in assignments)
        with self.db.get_connection() as conn:
            conn.execute(
                f"UPDATE builds SET {columns} WHERE host_name = ?",  # nosec B608
                (*assignments.values(), host_name),
            )
            conn.commit()
        return self.get(host_name)

    def as_dict(self, host_name: str) -> Optional[dict]:
        """Return the record as plain data for display."""
        record = self.get(host_name)
        if record is None:
            return None
        data = asdict(record)
        data["phase"] = record.phase.value
        return data
