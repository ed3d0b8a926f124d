from __future__ import annotations

import logging
from typing import Iterable, Optional

from backend.gradia.models import (
    CandidatePipelineRecord,
    PipelineProgress,
    PipelineStatus,
    Stage,
    StageProgress,
    StageResult,
    StageStatus,
)
from backend.gradia.services.catalog import StageCatalog

logger = logging.getLogger("gradia_pipeline.progress")


def _find_result(results: Iterable[StageResult], stage_order: int) -> Optional[StageResult]:
    for result in results:
        if result.stage_order == stage_order:
            return result
    return None


def stage_status(
    stage: Stage,
    current_stage_order: int,
    results: Iterable[StageResult],
) -> StageStatus:
    result = _find_result(results, stage.order)
    if result is not None and result.completed_at is not None:
        return StageStatus.completed
    if stage.order == current_stage_order:
        return StageStatus.current
    if stage.order < current_stage_order:
        return StageStatus.completed
    return StageStatus.locked


def evaluate_progress(
    catalog: StageCatalog,
    pipeline: CandidatePipelineRecord,
) -> PipelineProgress:
    terminal = pipeline.status.is_terminal
    stages: list[StageProgress] = []
    for stage in catalog:
        status = stage_status(stage, pipeline.current_stage_order, pipeline.results)
        result = pipeline.result_for(stage.order)
        if (
            status == StageStatus.completed
            and stage.order < pipeline.current_stage_order
            and (result is None or result.completed_at is None)
        ):
            logger.warning(
                "implicit_stage_completion pipeline=%s stage_order=%s current_stage_order=%s",
                pipeline.id,
                stage.order,
                pipeline.current_stage_order,
            )
        if status == StageStatus.current and terminal:
            status = StageStatus.locked
        stages.append(
            StageProgress(
                name=stage.name,
                order=stage.order,
                kind=stage.kind,
                description=stage.description,
                status=status,
                score=result.score if result else None,
                passed=result.passed if result else None,
                feedback=result.feedback if result else None,
                completed_at=result.completed_at if result else None,
            )
        )

    completed = len([item for item in stages if item.status == StageStatus.completed])
    total = len(stages)
    stopped_at = None
    if pipeline.status == PipelineStatus.rejected:
        stopped_at = pipeline.current_stage_order
    return PipelineProgress(
        pipeline_id=pipeline.id,
        status=pipeline.status,
        current_stage_order=None if terminal else pipeline.current_stage_order,
        stopped_at_stage_order=stopped_at,
        completed_stages=completed,
        total_stages=total,
        percent_complete=round((completed / total) * 100, 2) if total else 0.0,
        stages=stages,
    )
