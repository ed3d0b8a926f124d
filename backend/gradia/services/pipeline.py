from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from backend.gradia.errors import CollaboratorUnavailableError, InvalidStageError, TerminalStateError
from backend.gradia.models import (
    ActionOutcome,
    ActionPayload,
    AIEvaluation,
    CandidatePipelineRecord,
    Diagnostic,
    InterviewQuestion,
    InterviewSessionRecord,
    PipelineAction,
    PipelineCreateRequest,
    PipelineProgress,
    PipelineStatus,
    RubricContext,
    Stage,
    StageContext,
    StageEventRecord,
    utc_now,
)
from backend.gradia.services.ai_gateway import (
    AIGatewayClient,
    AnswerEvaluator,
    DisabledAIGateway,
    QuestionGenerator,
)
from backend.gradia.services.catalog import StageCatalog
from backend.gradia.services.dispatcher import (
    Effect,
    EffectKind,
    apply_action,
    current_stage,
    validate_action,
)
from backend.gradia.services.notifications import LoggingNotifier, Notifier, ResendNotifier
from backend.gradia.services.progress import evaluate_progress
from backend.gradia.settings import Settings
from backend.gradia.store import InMemoryStore

if TYPE_CHECKING:
    from backend.gradia.observability import MetricsRegistry

logger = logging.getLogger("gradia_pipeline.service")

T = TypeVar("T")


@dataclass(frozen=True)
class Collaborators:
    notifier: Notifier
    question_generator: QuestionGenerator
    evaluator: AnswerEvaluator


def build_collaborators(settings: Settings) -> Collaborators:
    if settings.resend_api_key:
        notifier: Notifier = ResendNotifier(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            reply_to=settings.email_reply_to,
            timeout_seconds=settings.collaborator_timeout_seconds,
        )
    else:
        notifier = LoggingNotifier()

    if settings.ai_api_key:
        gateway: Any = AIGatewayClient(
            api_key=settings.ai_api_key,
            base_url=settings.ai_gateway_url,
            model=settings.ai_model,
            timeout_seconds=settings.collaborator_timeout_seconds,
            max_retries=settings.ai_max_retries,
        )
    else:
        gateway = DisabledAIGateway()
    return Collaborators(notifier=notifier, question_generator=gateway, evaluator=gateway)


@dataclass
class ActionResult:
    pipeline: CandidatePipelineRecord
    progress: PipelineProgress
    outcome: ActionOutcome
    warnings: list[Diagnostic] = field(default_factory=list)


@dataclass
class QuestionsResult:
    pipeline_id: str
    stage_order: int
    questions: list[InterviewQuestion]
    warnings: list[Diagnostic] = field(default_factory=list)


class PipelineService:
    """Runs pipeline actions: validate, dispatch, compare-and-set commit, then effects.

    Effects (candidate notification, interview question generation) run only
    after the new version is committed. Each one gets at most
    ``timeout_seconds``; failures and timeouts come back as warnings and never
    undo the transition.
    """

    def __init__(
        self,
        *,
        store: InMemoryStore,
        catalog: StageCatalog,
        collaborators: Collaborators,
        pass_mark: float = 60.0,
        timeout_seconds: float = 10.0,
        question_count: int = 5,
        metrics: Optional["MetricsRegistry"] = None,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.collaborators = collaborators
        self.pass_mark = pass_mark
        self.timeout_seconds = timeout_seconds
        self.question_count = question_count
        self.metrics = metrics
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="pipeline-effects"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def create_pipeline(
        self, request: PipelineCreateRequest
    ) -> tuple[CandidatePipelineRecord, bool]:
        pipeline, created = self.store.create_or_get_pipeline(request)
        if created:
            logger.info(
                "pipeline_created pipeline=%s candidate=%s job=%s",
                pipeline.id,
                pipeline.candidate_id,
                pipeline.job_id,
            )
        return pipeline, created

    def get_pipeline(self, pipeline_id: str) -> CandidatePipelineRecord:
        return self.store.get_pipeline(pipeline_id)

    def get_progress(self, pipeline_id: str) -> PipelineProgress:
        return evaluate_progress(self.catalog, self.store.get_pipeline(pipeline_id))

    def list_job_pipelines(self, job_id: str) -> list[CandidatePipelineRecord]:
        return self.store.list_job_pipelines(job_id)

    def list_events(self, pipeline_id: str) -> list[StageEventRecord]:
        self.store.get_pipeline(pipeline_id)
        return self.store.list_events(pipeline_id)

    def get_session(self, pipeline_id: str) -> Optional[InterviewSessionRecord]:
        self.store.get_pipeline(pipeline_id)
        return self.store.get_session(pipeline_id)

    def stage_name(self, order: int) -> Optional[str]:
        stage = self.catalog.get(order)
        return stage.name if stage else None

    def apply_action(
        self,
        pipeline_id: str,
        action: PipelineAction,
        payload: ActionPayload,
        *,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> ActionResult:
        pipeline = self.store.get_pipeline(pipeline_id)
        base_version = expected_version if expected_version is not None else pipeline.version
        stage = validate_action(pipeline, action, payload, self.catalog)

        warnings: list[Diagnostic] = []
        evaluation: Optional[AIEvaluation] = None
        if action == PipelineAction.evaluate and payload.answers and stage.kind.is_ai_graded:
            payload, evaluation = self._evaluate_answers(pipeline, stage, payload, warnings)

        dispatched = apply_action(
            pipeline,
            action,
            payload,
            self.catalog,
            pass_mark=self.pass_mark,
        )
        committed = dispatched.pipeline
        if dispatched.changed:
            committed = self.store.compare_and_set(
                dispatched.pipeline, expected_version=base_version
            )
            self.store.record_event(
                before=pipeline,
                after=committed,
                action=action.value,
                note=payload.reason or payload.feedback,
                actor=actor,
            )
            if evaluation is not None:
                self.store.complete_session(
                    pipeline_id=committed.id,
                    stage_order=stage.order,
                    answers=payload.answers,
                    evaluation=evaluation,
                )

        logger.info(
            "pipeline_action pipeline=%s action=%s outcome=%s stage=%s version=%s",
            committed.id,
            action.value,
            dispatched.outcome.value,
            committed.current_stage_order,
            committed.version,
        )
        if self.metrics:
            self.metrics.record_action(action=action.value, outcome=dispatched.outcome.value)

        warnings.extend(self._run_effects(committed, dispatched.effects))
        return ActionResult(
            pipeline=committed,
            progress=evaluate_progress(self.catalog, committed),
            outcome=dispatched.outcome,
            warnings=warnings,
        )

    def generate_questions(self, pipeline_id: str) -> QuestionsResult:
        pipeline = self.store.get_pipeline(pipeline_id)
        if pipeline.status.is_terminal:
            raise TerminalStateError(
                f"pipeline {pipeline.id} is {pipeline.status.value}; questions are not generated"
            )
        stage = current_stage(pipeline, self.catalog)
        if not stage.kind.is_ai_driven:
            raise InvalidStageError(f"stage {stage.name} does not use AI interview questions")
        warnings = self._run_effects(
            pipeline,
            (Effect(kind=EffectKind.generate_questions, stage_order=stage.order),),
        )
        session = self.store.get_session(pipeline.id)
        questions = (
            session.questions if session and session.stage_order == stage.order else []
        )
        return QuestionsResult(
            pipeline_id=pipeline.id,
            stage_order=stage.order,
            questions=questions,
            warnings=warnings,
        )

    def reset(
        self,
        pipeline_id: str,
        *,
        reason: str,
        expected_version: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> CandidatePipelineRecord:
        pipeline = self.store.get_pipeline(pipeline_id)
        base_version = expected_version if expected_version is not None else pipeline.version
        updated = pipeline.model_copy(
            update={
                "current_stage_order": 1,
                "status": PipelineStatus.in_progress,
                "results": [],
                "rejection_reason": None,
                "version": pipeline.version + 1,
                "updated_at_utc": utc_now(),
            }
        )
        committed = self.store.compare_and_set(updated, expected_version=base_version)
        self.store.drop_session(committed.id)
        self.store.record_event(
            before=pipeline,
            after=committed,
            action="reset",
            note=reason,
            actor=actor,
        )
        logger.info("pipeline_reset pipeline=%s actor=%s", committed.id, actor)
        return committed

    def _evaluate_answers(
        self,
        pipeline: CandidatePipelineRecord,
        stage: Stage,
        payload: ActionPayload,
        warnings: list[Diagnostic],
    ) -> tuple[ActionPayload, Optional[AIEvaluation]]:
        session = self.store.get_session(pipeline.id)
        questions = session.questions if session and session.stage_order == stage.order else []
        rubric = RubricContext(
            stage_name=stage.name,
            job_title=pipeline.context.job_title,
            job_skills=pipeline.context.job_skills,
            questions=questions,
            notes=payload.feedback,
        )
        try:
            evaluation = self._call(
                "ai_gateway",
                lambda: self.collaborators.evaluator.evaluate(
                    answers=payload.answers, rubric_context=rubric
                ),
            )
        except CollaboratorUnavailableError as exc:
            warnings.append(self._report_failure(pipeline, exc))
            return payload, None
        except Exception as exc:
            logger.exception("pipeline_evaluation_crashed pipeline=%s", pipeline.id)
            warnings.append(
                self._report_failure(pipeline, CollaboratorUnavailableError("ai_gateway", str(exc)))
            )
            return payload, None

        update: dict[str, Any] = {}
        if payload.score is None:
            update["score"] = evaluation.overall_score
        if payload.feedback is None:
            update["feedback"] = evaluation.feedback
        return payload.model_copy(update=update), evaluation

    def _run_effects(
        self,
        pipeline: CandidatePipelineRecord,
        effects: tuple[Effect, ...],
    ) -> list[Diagnostic]:
        if not effects:
            return []
        submitted: list[tuple[str, Future]] = []
        for effect in effects:
            collaborator, task = self._effect_task(pipeline, effect)
            submitted.append((collaborator, self._executor.submit(task)))

        deadline = time.monotonic() + self.timeout_seconds
        warnings: list[Diagnostic] = []
        for collaborator, future in submitted:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                future.result(timeout=remaining)
            except FutureTimeoutError:
                warnings.append(
                    self._report_failure(
                        pipeline,
                        CollaboratorUnavailableError(
                            collaborator,
                            f"{collaborator} did not respond within {self.timeout_seconds}s",
                        ),
                    )
                )
            except CollaboratorUnavailableError as exc:
                warnings.append(self._report_failure(pipeline, exc))
            except Exception as exc:
                logger.exception(
                    "pipeline_effect_crashed pipeline=%s collaborator=%s",
                    pipeline.id,
                    collaborator,
                )
                warnings.append(
                    self._report_failure(
                        pipeline, CollaboratorUnavailableError(collaborator, str(exc))
                    )
                )
        return warnings

    def _effect_task(
        self,
        pipeline: CandidatePipelineRecord,
        effect: Effect,
    ) -> tuple[str, Callable[[], Any]]:
        if effect.kind == EffectKind.notify_candidate:
            extra_info = {
                **pipeline.context.model_dump(),
                **effect.extra_info,
                "stage_order": effect.stage_order,
            }

            def notify() -> Any:
                return self.collaborators.notifier.send(
                    candidate_id=pipeline.candidate_id,
                    job_id=pipeline.job_id,
                    status_kind=effect.notification,
                    extra_info=extra_info,
                )

            return "notification", notify

        stage = self.catalog.require(effect.stage_order)
        stage_context = StageContext(
            stage_name=stage.name,
            stage_kind=stage.kind,
            stage_order=stage.order,
            job_title=pipeline.context.job_title,
            job_skills=pipeline.context.job_skills,
            job_description=pipeline.context.job_description,
            candidate_name=pipeline.context.candidate_name,
            question_count=self.question_count,
        )

        def generate() -> Any:
            questions = self.collaborators.question_generator.generate(
                job_id=pipeline.job_id,
                candidate_id=pipeline.candidate_id,
                stage_context=stage_context,
            )
            return self.store.save_session_questions(
                pipeline=pipeline,
                stage_order=stage.order,
                questions=questions,
            )

        return "ai_gateway", generate

    def _call(self, collaborator: str, task: Callable[[], T]) -> T:
        future = self._executor.submit(task)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            raise CollaboratorUnavailableError(
                collaborator,
                f"{collaborator} did not respond within {self.timeout_seconds}s",
            ) from exc

    def _report_failure(
        self,
        pipeline: CandidatePipelineRecord,
        exc: CollaboratorUnavailableError,
    ) -> Diagnostic:
        logger.warning(
            "collaborator_unavailable pipeline=%s collaborator=%s error=%s",
            pipeline.id,
            exc.collaborator,
            exc.message,
        )
        if self.metrics:
            self.metrics.record_collaborator_failure(collaborator=exc.collaborator)
        return Diagnostic(
            code=exc.code,
            collaborator=exc.collaborator,
            message=exc.message,
        )
