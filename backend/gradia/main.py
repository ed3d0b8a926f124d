from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from backend.gradia.auth import AuthContext, ensure_can_view_pipeline, require_roles
from backend.gradia.errors import (
    ConcurrentModificationError,
    PipelineError,
    PipelineNotFoundError,
)
from backend.gradia.models import (
    ActionPayload,
    ActionRequest,
    ActionResponse,
    CandidatePipelineRecord,
    InterviewSessionRecord,
    JobPipelineItem,
    JobPipelinesResponse,
    PipelineCreateRequest,
    PipelineProgress,
    PipelineResponse,
    PipelineStatus,
    QuestionsResponse,
    ResetRequest,
    Stage,
    StageEventRecord,
)
from backend.gradia.observability import MetricsRegistry, configure_logging, observe_request
from backend.gradia.persistence import PipelinePersistence
from backend.gradia.services.catalog import load_catalog
from backend.gradia.services.pipeline import Collaborators, PipelineService, build_collaborators
from backend.gradia.settings import Settings, load_settings
from backend.gradia.store import InMemoryStore

ACTION_UNAVAILABLE = "this action is no longer available"
REFRESH_AND_RETRY = "please refresh and retry"

STAFF = ("employer", "recruiter", "admin")


def create_app(collaborators: Optional[Collaborators] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.pipeline_service.close()

    app = FastAPI(title="Gradia Interview Pipeline API", version="0.1.0", lifespan=lifespan)
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    persistence = (
        PipelinePersistence(settings.database_url) if settings.persistence_enabled else None
    )
    app.state.settings = settings
    app.state.metrics = MetricsRegistry()
    app.state.store = InMemoryStore(persistence=persistence)
    app.state.pipeline_service = PipelineService(
        store=app.state.store,
        catalog=load_catalog(settings.stage_catalog_path),
        collaborators=collaborators or build_collaborators(settings),
        pass_mark=settings.pass_mark,
        timeout_seconds=settings.collaborator_timeout_seconds,
        question_count=settings.question_count,
        metrics=app.state.metrics,
    )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_service(request: Request) -> PipelineService:
    return request.app.state.pipeline_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def http_error(exc: PipelineError) -> HTTPException:
    if isinstance(exc, PipelineNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": exc.code, "message": exc.message},
        )
    message = REFRESH_AND_RETRY if isinstance(exc, ConcurrentModificationError) else ACTION_UNAVAILABLE
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"code": exc.code, "message": message, "reason": exc.message},
    )


def pipeline_response(
    service: PipelineService, pipeline: CandidatePipelineRecord
) -> PipelineResponse:
    return PipelineResponse(
        pipeline_id=pipeline.id,
        candidate_id=pipeline.candidate_id,
        job_id=pipeline.job_id,
        status=pipeline.status,
        current_stage_order=pipeline.current_stage_order,
        current_stage_name=service.stage_name(pipeline.current_stage_order),
        rejection_reason=pipeline.rejection_reason,
        version=pipeline.version,
        results=pipeline.results,
        updated_at_utc=pipeline.updated_at_utc,
    )


def _load_visible_pipeline(
    service: PipelineService, pipeline_id: str, auth: AuthContext
) -> CandidatePipelineRecord:
    try:
        pipeline = service.get_pipeline(pipeline_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    ensure_can_view_pipeline(auth, candidate_id=pipeline.candidate_id)
    return pipeline


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = getattr(request.app.state.store, "persistence", None)
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.get("/stages", response_model=list[Stage])
    def list_stages(request: Request) -> list[Stage]:
        return list(get_service(request).catalog.stages)

    @router.post("/pipelines", response_model=PipelineResponse)
    def create_pipeline(
        payload: PipelineCreateRequest,
        request: Request,
        response: Response,
        _: AuthContext = Depends(require_roles(*STAFF, "service")),
    ) -> PipelineResponse:
        service = get_service(request)
        pipeline, created = service.create_pipeline(payload)
        response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
        return pipeline_response(service, pipeline)

    @router.get("/pipelines/{pipeline_id}", response_model=PipelineResponse)
    def get_pipeline(
        pipeline_id: str,
        request: Request,
        auth: AuthContext = Depends(require_roles(*STAFF, "candidate")),
    ) -> PipelineResponse:
        service = get_service(request)
        pipeline = _load_visible_pipeline(service, pipeline_id, auth)
        return pipeline_response(service, pipeline)

    @router.get("/pipelines/{pipeline_id}/progress", response_model=PipelineProgress)
    def get_progress(
        pipeline_id: str,
        request: Request,
        auth: AuthContext = Depends(require_roles(*STAFF, "candidate")),
    ) -> PipelineProgress:
        service = get_service(request)
        _load_visible_pipeline(service, pipeline_id, auth)
        return service.get_progress(pipeline_id)

    @router.post("/pipelines/{pipeline_id}/actions", response_model=ActionResponse)
    def apply_action(
        pipeline_id: str,
        payload: ActionRequest,
        request: Request,
        auth: AuthContext = Depends(require_roles(*STAFF)),
    ) -> ActionResponse:
        service = get_service(request)
        action_payload = ActionPayload.model_validate(
            payload.model_dump(exclude={"action", "expected_version"})
        )
        try:
            result = service.apply_action(
                pipeline_id,
                payload.action,
                action_payload,
                expected_version=payload.expected_version,
                actor=auth.user_id,
            )
        except PipelineError as exc:
            raise http_error(exc) from exc
        return ActionResponse(
            outcome=result.outcome,
            pipeline=pipeline_response(service, result.pipeline),
            progress=result.progress,
            warnings=result.warnings,
        )

    @router.post("/pipelines/{pipeline_id}/reset", response_model=PipelineResponse)
    def reset_pipeline(
        pipeline_id: str,
        payload: ResetRequest,
        request: Request,
        auth: AuthContext = Depends(require_roles("admin")),
    ) -> PipelineResponse:
        service = get_service(request)
        try:
            pipeline = service.reset(pipeline_id, reason=payload.reason, actor=auth.user_id)
        except PipelineError as exc:
            raise http_error(exc) from exc
        return pipeline_response(service, pipeline)

    @router.get("/pipelines/{pipeline_id}/events", response_model=list[StageEventRecord])
    def list_events(
        pipeline_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*STAFF)),
    ) -> list[StageEventRecord]:
        try:
            return get_service(request).list_events(pipeline_id)
        except PipelineError as exc:
            raise http_error(exc) from exc

    @router.get("/pipelines/{pipeline_id}/session", response_model=InterviewSessionRecord)
    def get_session(
        pipeline_id: str,
        request: Request,
        auth: AuthContext = Depends(require_roles(*STAFF, "candidate")),
    ) -> InterviewSessionRecord:
        service = get_service(request)
        _load_visible_pipeline(service, pipeline_id, auth)
        session = service.get_session(pipeline_id)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "not_found", "message": "no interview session for pipeline"},
            )
        return session

    @router.post("/pipelines/{pipeline_id}/questions", response_model=QuestionsResponse)
    def generate_questions(
        pipeline_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*STAFF)),
    ) -> QuestionsResponse:
        try:
            result = get_service(request).generate_questions(pipeline_id)
        except PipelineError as exc:
            raise http_error(exc) from exc
        return QuestionsResponse(
            pipeline_id=result.pipeline_id,
            stage_order=result.stage_order,
            questions=result.questions,
            warnings=result.warnings,
        )

    @router.get("/jobs/{job_id}/pipelines", response_model=JobPipelinesResponse)
    def job_pipelines(
        job_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(*STAFF)),
    ) -> JobPipelinesResponse:
        service = get_service(request)
        records = service.list_job_pipelines(job_id)
        counts_by_status = {value: 0 for value in PipelineStatus}
        counts_by_stage = {stage.name: 0 for stage in service.catalog}
        items: list[JobPipelineItem] = []
        for record in records:
            counts_by_status[record.status] += 1
            stage_name = service.stage_name(record.current_stage_order)
            if record.status == PipelineStatus.in_progress and stage_name:
                counts_by_stage[stage_name] += 1
            scored = [result.score for result in record.results if result.score is not None]
            items.append(
                JobPipelineItem(
                    pipeline_id=record.id,
                    candidate_id=record.candidate_id,
                    status=record.status,
                    current_stage_order=record.current_stage_order,
                    current_stage_name=stage_name,
                    latest_score=scored[-1] if scored else None,
                )
            )
        return JobPipelinesResponse(
            job_id=job_id,
            counts_by_status=counts_by_status,
            counts_by_stage=counts_by_stage,
            pipelines=items,
        )

    return router


app = create_app()
