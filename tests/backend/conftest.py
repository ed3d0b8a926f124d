from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.gradia.main import create_app
from backend.gradia.services.catalog import default_catalog
from backend.gradia.services.pipeline import Collaborators, PipelineService
from backend.gradia.store import InMemoryStore
from tests.backend.fakes import FakeGateway, RecordingNotifier


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def collaborators(notifier: RecordingNotifier, gateway: FakeGateway) -> Collaborators:
    return Collaborators(notifier=notifier, question_generator=gateway, evaluator=gateway)


@pytest.fixture()
def service(collaborators: Collaborators) -> PipelineService:
    pipeline_service = PipelineService(
        store=InMemoryStore(),
        catalog=default_catalog(),
        collaborators=collaborators,
        timeout_seconds=2.0,
        question_count=3,
    )
    yield pipeline_service
    pipeline_service.close()


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch, collaborators: Collaborators) -> TestClient:
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("QUESTION_COUNT", "3")
    app = create_app(collaborators=collaborators)
    return TestClient(app)
