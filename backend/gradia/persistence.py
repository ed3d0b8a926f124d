from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.gradia.models import CandidatePipelineRecord


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class PipelinePersistence:
    """
    SQLAlchemy-backed storage for pipelines. Works with SQLite and PostgreSQL URLs.

    Pipeline rows carry a ``version`` column; updates are conditional on the
    version the writer read, so concurrent writers from separate processes
    cannot both commit on top of the same version.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.state_snapshots = Table(
            "state_snapshots",
            self.metadata,
            Column("id", String(50), primary_key=True),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.pipelines = Table(
            "pipelines",
            self.metadata,
            Column("id", String(120), primary_key=True),
            Column("candidate_id", String(120), nullable=False, index=True),
            Column("job_id", String(120), nullable=False, index=True),
            Column("status", String(30), nullable=False),
            Column("current_stage_order", Integer, nullable=False),
            Column("version", Integer, nullable=False),
            Column("payload_json", Text, nullable=False),
            Column("created_at_utc", DateTime, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def save_snapshot(self, payload: dict) -> None:
        with self._lock:
            serialized = json.dumps(payload)
            now = datetime.utcnow()
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.state_snapshots.c.id).where(self.state_snapshots.c.id == "default")
                ).first()
                if existing:
                    conn.execute(
                        self.state_snapshots.update()
                        .where(self.state_snapshots.c.id == "default")
                        .values(payload_json=serialized, updated_at_utc=now)
                    )
                else:
                    conn.execute(
                        self.state_snapshots.insert().values(
                            id="default",
                            payload_json=serialized,
                            updated_at_utc=now,
                        )
                    )

    def load_snapshot(self) -> Optional[dict]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.state_snapshots.c.payload_json).where(
                        self.state_snapshots.c.id == "default"
                    )
                ).first()
            if not row:
                return None
            return json.loads(row[0])

    def insert_pipeline(self, record: CandidatePipelineRecord) -> bool:
        with self._lock:
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        self.pipelines.insert().values(id=record.id, **self._row(record))
                    )
            except IntegrityError:
                return False
            return True

    def compare_and_set_pipeline(
        self,
        record: CandidatePipelineRecord,
        *,
        expected_version: int,
    ) -> bool:
        with self._lock:
            with self.engine.begin() as conn:
                result = conn.execute(
                    self.pipelines.update()
                    .where(
                        and_(
                            self.pipelines.c.id == record.id,
                            self.pipelines.c.version == expected_version,
                        )
                    )
                    .values(**self._row(record))
                )
            return result.rowcount == 1

    def get_pipeline(self, pipeline_id: str) -> Optional[CandidatePipelineRecord]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.pipelines.c.payload_json).where(
                        self.pipelines.c.id == pipeline_id
                    )
                ).first()
        if not row:
            return None
        return CandidatePipelineRecord.model_validate_json(row.payload_json)

    def list_pipelines(self) -> list[CandidatePipelineRecord]:
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    select(self.pipelines.c.payload_json).order_by(
                        self.pipelines.c.created_at_utc
                    )
                ).all()
        return [CandidatePipelineRecord.model_validate_json(row.payload_json) for row in rows]

    @staticmethod
    def _row(record: CandidatePipelineRecord) -> dict:
        return {
            "candidate_id": record.candidate_id,
            "job_id": record.job_id,
            "status": record.status.value,
            "current_stage_order": record.current_stage_order,
            "version": record.version,
            "payload_json": record.model_dump_json(),
            "created_at_utc": record.created_at_utc,
            "updated_at_utc": record.updated_at_utc,
        }
