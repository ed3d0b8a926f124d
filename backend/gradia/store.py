from __future__ import annotations

from datetime import datetime
from threading import RLock
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from backend.gradia.errors import ConcurrentModificationError, PipelineNotFoundError
from backend.gradia.models import (
    AIEvaluation,
    CandidatePipelineRecord,
    InterviewQuestion,
    InterviewSessionRecord,
    PipelineCreateRequest,
    PipelineStatus,
    StageEventRecord,
    utc_now,
)

if TYPE_CHECKING:
    from backend.gradia.persistence import PipelinePersistence


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class InMemoryStore:
    def __init__(self, persistence: Optional["PipelinePersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.pipelines: dict[str, CandidatePipelineRecord] = {}
        self.events: list[StageEventRecord] = []
        self.sessions: dict[str, InterviewSessionRecord] = {}

        if self.persistence:
            for record in self.persistence.list_pipelines():
                self.pipelines[record.id] = record
            snapshot = self.persistence.load_snapshot()
            if snapshot:
                self._hydrate_from_snapshot(snapshot)

    def create_or_get_pipeline(
        self, request: PipelineCreateRequest
    ) -> tuple[CandidatePipelineRecord, bool]:
        candidate_id = request.candidate_id.strip()
        job_id = request.job_id.strip()
        with self._lock:
            for pipeline in self.pipelines.values():
                if pipeline.job_id == job_id and pipeline.candidate_id == candidate_id:
                    return pipeline, False

            now = utc_now()
            pipeline = CandidatePipelineRecord(
                id=new_id("pipe"),
                candidate_id=candidate_id,
                job_id=job_id,
                current_stage_order=1,
                status=PipelineStatus.in_progress,
                results=[],
                version=1,
                context=request.context,
                created_at_utc=now,
                updated_at_utc=now,
            )
            if self.persistence:
                self.persistence.insert_pipeline(pipeline)
            self.pipelines[pipeline.id] = pipeline
            return pipeline, True

    def get_pipeline(self, pipeline_id: str) -> CandidatePipelineRecord:
        pipeline = self.pipelines.get(pipeline_id)
        if not pipeline:
            raise PipelineNotFoundError(f"pipeline not found: {pipeline_id}")
        return pipeline

    def compare_and_set(
        self,
        updated: CandidatePipelineRecord,
        *,
        expected_version: int,
    ) -> CandidatePipelineRecord:
        with self._lock:
            current = self.get_pipeline(updated.id)
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    f"pipeline {updated.id} is at version {current.version}, "
                    f"expected {expected_version}"
                )
            if updated.version <= current.version:
                raise ConcurrentModificationError(
                    f"pipeline {updated.id} update must carry a newer version"
                )
            if self.persistence and not self.persistence.compare_and_set_pipeline(
                updated, expected_version=expected_version
            ):
                raise ConcurrentModificationError(
                    f"pipeline {updated.id} was modified by another writer"
                )
            self.pipelines[updated.id] = updated
            return updated

    def record_event(
        self,
        *,
        before: CandidatePipelineRecord,
        after: CandidatePipelineRecord,
        action: str,
        note: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> StageEventRecord:
        with self._lock:
            event = StageEventRecord(
                id=new_id("evt"),
                pipeline_id=after.id,
                stage_order=before.current_stage_order,
                action=action,
                from_status=before.status,
                to_status=after.status,
                from_stage_order=before.current_stage_order,
                to_stage_order=after.current_stage_order,
                note=note,
                actor=actor,
                created_at_utc=after.updated_at_utc,
            )
            self.events.append(event)
            self._persist_state()
            return event

    def list_events(self, pipeline_id: str) -> list[StageEventRecord]:
        with self._lock:
            return [event for event in self.events if event.pipeline_id == pipeline_id]

    def list_job_pipelines(self, job_id: str) -> list[CandidatePipelineRecord]:
        with self._lock:
            records = [
                pipeline for pipeline in self.pipelines.values() if pipeline.job_id == job_id
            ]
        records.sort(key=lambda item: item.created_at_utc)
        return records

    def save_session_questions(
        self,
        *,
        pipeline: CandidatePipelineRecord,
        stage_order: int,
        questions: list[InterviewQuestion],
    ) -> InterviewSessionRecord:
        with self._lock:
            now = utc_now()
            existing = self.sessions.get(pipeline.id)
            if existing:
                session = existing.model_copy(
                    update={
                        "stage_order": stage_order,
                        "questions": questions,
                        "status": "pending",
                        "answers": [],
                        "evaluation": None,
                        "updated_at_utc": now,
                    }
                )
            else:
                session = InterviewSessionRecord(
                    id=new_id("ses"),
                    pipeline_id=pipeline.id,
                    job_id=pipeline.job_id,
                    stage_order=stage_order,
                    questions=questions,
                    status="pending",
                    created_at_utc=now,
                    updated_at_utc=now,
                )
            self.sessions[pipeline.id] = session
            self._persist_state()
            return session

    def complete_session(
        self,
        *,
        pipeline_id: str,
        stage_order: int,
        answers: list[str],
        evaluation: Optional[AIEvaluation],
        completed_at: Optional[datetime] = None,
    ) -> Optional[InterviewSessionRecord]:
        with self._lock:
            session = self.sessions.get(pipeline_id)
            if not session or session.stage_order != stage_order:
                return None
            updated = session.model_copy(
                update={
                    "answers": answers,
                    "evaluation": evaluation,
                    "status": "completed",
                    "updated_at_utc": completed_at or utc_now(),
                }
            )
            self.sessions[pipeline_id] = updated
            self._persist_state()
            return updated

    def get_session(self, pipeline_id: str) -> Optional[InterviewSessionRecord]:
        return self.sessions.get(pipeline_id)

    def drop_session(self, pipeline_id: str) -> None:
        with self._lock:
            if self.sessions.pop(pipeline_id, None) is not None:
                self._persist_state()

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        with self._lock:
            self.persistence.save_snapshot(self._snapshot_data())

    def _snapshot_data(self) -> dict:
        return {
            "events": [record.model_dump(mode="json") for record in self.events],
            "sessions": [record.model_dump(mode="json") for record in self.sessions.values()],
        }

    def _hydrate_from_snapshot(self, snapshot: dict) -> None:
        self.events = [
            StageEventRecord.model_validate(record) for record in snapshot.get("events", [])
        ]
        self.sessions = {
            record["pipeline_id"]: InterviewSessionRecord.model_validate(record)
            for record in snapshot.get("sessions", [])
        }
