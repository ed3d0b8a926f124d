from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend.gradia.errors import ConcurrentModificationError
from backend.gradia.main import create_app
from backend.gradia.models import PipelineCreateRequest
from backend.gradia.persistence import PipelinePersistence
from backend.gradia.store import InMemoryStore


def _new_client(monkeypatch, db_path: Path, collaborators) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "true")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("QUESTION_COUNT", "3")
    monkeypatch.setenv("PERSISTENCE_DB_PATH", str(db_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{str(db_path).replace(chr(92), '/')}")
    return TestClient(create_app(collaborators=collaborators))


def test_pipelines_and_events_persist_across_restart(monkeypatch, tmp_path, collaborators) -> None:
    db_path = tmp_path / "gradia_pipeline.sqlite3"
    first_client = _new_client(monkeypatch, db_path, collaborators)
    created = first_client.post("/pipelines", json={"candidate_id": "cand-7", "job_id": "job-7"})
    assert created.status_code == 201
    pipeline_id = created.json()["pipeline_id"]
    advanced = first_client.post(
        f"/pipelines/{pipeline_id}/actions",
        json={"action": "advance", "stage_order": 1, "score": 80},
    )
    assert advanced.status_code == 200

    restarted_client = _new_client(monkeypatch, db_path, collaborators)
    fetched = restarted_client.get(f"/pipelines/{pipeline_id}")
    assert fetched.status_code == 200
    assert fetched.json()["current_stage_order"] == 2
    assert fetched.json()["version"] == 2

    events = restarted_client.get(f"/pipelines/{pipeline_id}/events")
    assert [event["action"] for event in events.json()] == ["advance"]

    session = restarted_client.get(f"/pipelines/{pipeline_id}/session")
    assert session.status_code == 200
    assert len(session.json()["questions"]) == 3

    again = restarted_client.post("/pipelines", json={"candidate_id": "cand-7", "job_id": "job-7"})
    assert again.status_code == 200
    assert again.json()["pipeline_id"] == pipeline_id


def test_sql_compare_and_set_refuses_stale_version(tmp_path) -> None:
    persistence = PipelinePersistence(f"sqlite:///{(tmp_path / 'cas.sqlite3').as_posix()}")
    store = InMemoryStore(persistence=persistence)
    pipeline, _ = store.create_or_get_pipeline(
        PipelineCreateRequest(candidate_id="cand-1", job_id="job-1")
    )

    advanced = pipeline.model_copy(update={"version": 2, "current_stage_order": 2})
    assert persistence.compare_and_set_pipeline(advanced, expected_version=1)
    assert not persistence.compare_and_set_pipeline(
        pipeline.model_copy(update={"version": 2}), expected_version=1
    )
    assert persistence.get_pipeline(pipeline.id).current_stage_order == 2
    assert not persistence.insert_pipeline(pipeline)


def test_second_writer_on_same_database_gets_conflict(tmp_path) -> None:
    database_url = f"sqlite:///{(tmp_path / 'shared.sqlite3').as_posix()}"
    first = InMemoryStore(persistence=PipelinePersistence(database_url))
    pipeline, _ = first.create_or_get_pipeline(
        PipelineCreateRequest(candidate_id="cand-1", job_id="job-1")
    )
    second = InMemoryStore(persistence=PipelinePersistence(database_url))
    assert second.get_pipeline(pipeline.id).version == 1

    first.compare_and_set(
        pipeline.model_copy(update={"version": 2, "current_stage_order": 2}),
        expected_version=1,
    )
    with pytest.raises(ConcurrentModificationError):
        second.compare_and_set(
            pipeline.model_copy(update={"version": 2, "rejection_reason": "late"}),
            expected_version=1,
        )
    assert second.get_pipeline(pipeline.id).version == 1


def test_sqlite_url_creates_missing_parent_directories(tmp_path) -> None:
    db_path = tmp_path / "nested" / "gradia_pipeline.sqlite3"
    persistence = PipelinePersistence(f"sqlite:///{db_path.as_posix()}")
    assert db_path.parent.exists()
    assert persistence.ping()
