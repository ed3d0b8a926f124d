from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from backend.gradia.errors import InvalidStageError, TerminalStateError
from backend.gradia.models import (
    ActionOutcome,
    ActionPayload,
    CandidatePipelineRecord,
    NotificationKind,
    PipelineAction,
    PipelineStatus,
    Stage,
    StageKind,
    StageResult,
    utc_now,
)
from backend.gradia.services.catalog import StageCatalog
from backend.gradia.services.workflow import ACTIONS_BY_STATUS, ALLOWED_TRANSITIONS


class EffectKind(str, Enum):
    notify_candidate = "notify_candidate"
    generate_questions = "generate_questions"


@dataclass(frozen=True)
class Effect:
    """Side effect to run after the new pipeline version is committed."""

    kind: EffectKind
    stage_order: int
    notification: Optional[NotificationKind] = None
    extra_info: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchOutcome:
    pipeline: CandidatePipelineRecord
    outcome: ActionOutcome
    effects: tuple[Effect, ...] = ()
    changed: bool = True


def current_stage(pipeline: CandidatePipelineRecord, catalog: StageCatalog) -> Stage:
    stage = catalog.get(pipeline.current_stage_order)
    if stage is None:
        raise InvalidStageError(
            f"pipeline {pipeline.id} points at stage {pipeline.current_stage_order} "
            f"which is not in the catalog"
        )
    return stage


def validate_action(
    pipeline: CandidatePipelineRecord,
    action: PipelineAction,
    payload: ActionPayload,
    catalog: StageCatalog,
) -> Stage:
    if action not in ACTIONS_BY_STATUS[pipeline.status]:
        raise TerminalStateError(
            f"pipeline {pipeline.id} is {pipeline.status.value}; {action.value} is not accepted"
        )
    stage = current_stage(pipeline, catalog)
    if (
        action in {PipelineAction.advance, PipelineAction.evaluate}
        and payload.stage_order is not None
        and payload.stage_order != pipeline.current_stage_order
    ):
        raise InvalidStageError(
            f"stage {payload.stage_order} is not the current stage "
            f"({pipeline.current_stage_order}) of pipeline {pipeline.id}"
        )
    return stage


def apply_action(
    pipeline: CandidatePipelineRecord,
    action: PipelineAction,
    payload: ActionPayload,
    catalog: StageCatalog,
    *,
    pass_mark: float = 60.0,
    now: Optional[datetime] = None,
) -> DispatchOutcome:
    stage = validate_action(pipeline, action, payload, catalog)
    timestamp = now or utc_now()
    if action == PipelineAction.evaluate:
        return _evaluate(pipeline, payload, pass_mark=pass_mark, now=timestamp)
    if action == PipelineAction.advance:
        return _advance(pipeline, stage, payload, catalog, now=timestamp)
    return _reject(pipeline, stage, payload, now=timestamp)


def _evaluate(
    pipeline: CandidatePipelineRecord,
    payload: ActionPayload,
    *,
    pass_mark: float,
    now: datetime,
) -> DispatchOutcome:
    existing = pipeline.result_for(pipeline.current_stage_order)
    base = existing or StageResult(stage_order=pipeline.current_stage_order)
    score = payload.score if payload.score is not None else base.score
    if payload.passed is not None:
        passed = payload.passed
    elif payload.score is not None:
        passed = payload.score >= pass_mark
    else:
        passed = base.passed
    result = base.model_copy(
        update={
            "score": score,
            "passed": passed,
            "feedback": payload.feedback or base.feedback,
        }
    )
    updated = _next_version(
        pipeline,
        now=now,
        results=_with_result(pipeline.results, result),
    )
    return DispatchOutcome(pipeline=updated, outcome=ActionOutcome.evaluated)


def _advance(
    pipeline: CandidatePipelineRecord,
    stage: Stage,
    payload: ActionPayload,
    catalog: StageCatalog,
    *,
    now: datetime,
) -> DispatchOutcome:
    existing = pipeline.result_for(stage.order)
    base = existing or StageResult(stage_order=stage.order)
    result = base.model_copy(
        update={
            "completed_at": now,
            "score": payload.score if payload.score is not None else base.score,
            "passed": base.passed if base.passed is not None else True,
            "feedback": payload.feedback or base.feedback,
        }
    )
    results = _with_result(pipeline.results, result)
    next_stage = catalog.next_after(stage.order)

    if next_stage is None:
        updated = _next_version(
            pipeline,
            now=now,
            results=results,
            status=PipelineStatus.hired,
        )
        effects = (
            Effect(
                kind=EffectKind.notify_candidate,
                stage_order=stage.order,
                notification=NotificationKind.hired,
                extra_info={"completed_stage": stage.name, "score": result.score},
            ),
        )
        return DispatchOutcome(pipeline=updated, outcome=ActionOutcome.hired, effects=effects)

    updated = _next_version(
        pipeline,
        now=now,
        results=results,
        current_stage_order=next_stage.order,
    )
    notification = (
        NotificationKind.offer_received
        if next_stage.kind == StageKind.offer
        else NotificationKind.stage_advanced
    )
    effect_list = [
        Effect(
            kind=EffectKind.notify_candidate,
            stage_order=next_stage.order,
            notification=notification,
            extra_info={
                "completed_stage": stage.name,
                "next_stage": next_stage.name,
                "score": result.score,
            },
        )
    ]
    if next_stage.kind.is_ai_driven:
        effect_list.append(
            Effect(kind=EffectKind.generate_questions, stage_order=next_stage.order)
        )
    return DispatchOutcome(
        pipeline=updated,
        outcome=ActionOutcome.advanced,
        effects=tuple(effect_list),
    )


def _reject(
    pipeline: CandidatePipelineRecord,
    stage: Stage,
    payload: ActionPayload,
    *,
    now: datetime,
) -> DispatchOutcome:
    if pipeline.status == PipelineStatus.rejected:
        return DispatchOutcome(
            pipeline=pipeline,
            outcome=ActionOutcome.unchanged,
            changed=False,
        )

    reason = payload.reason or payload.feedback
    existing = pipeline.result_for(stage.order)
    base = existing or StageResult(stage_order=stage.order)
    # the stage stays incomplete so the pipeline view shows where it stopped
    result = base.model_copy(
        update={
            "score": payload.score if payload.score is not None else base.score,
            "passed": False,
            "feedback": reason or base.feedback,
        }
    )
    updated = _next_version(
        pipeline,
        now=now,
        results=_with_result(pipeline.results, result),
        status=PipelineStatus.rejected,
        rejection_reason=reason,
    )
    effects = (
        Effect(
            kind=EffectKind.notify_candidate,
            stage_order=stage.order,
            notification=NotificationKind.rejected,
            extra_info={"stage": stage.name, "rejection_reason": reason},
        ),
    )
    return DispatchOutcome(pipeline=updated, outcome=ActionOutcome.rejected, effects=effects)


def _with_result(results: list[StageResult], result: StageResult) -> list[StageResult]:
    merged = [item for item in results if item.stage_order != result.stage_order]
    merged.append(result)
    merged.sort(key=lambda item: item.stage_order)
    return merged


def _next_version(
    pipeline: CandidatePipelineRecord,
    *,
    now: datetime,
    **changes: Any,
) -> CandidatePipelineRecord:
    to_status = changes.get("status", pipeline.status)
    if to_status not in ALLOWED_TRANSITIONS[pipeline.status]:
        raise TerminalStateError(
            f"invalid transition {pipeline.status.value} -> {to_status.value}"
        )
    changes["version"] = pipeline.version + 1
    changes["updated_at_utc"] = now
    return pipeline.model_copy(update=changes)
