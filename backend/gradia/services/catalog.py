from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from backend.gradia.errors import CatalogError
from backend.gradia.models import Stage, StageKind

DEFAULT_STAGES: tuple[Stage, ...] = (
    Stage(
        name="Resume Screening",
        order=1,
        description="AI-assisted review of the resume against the job requirements.",
        kind=StageKind.resume_screening,
    ),
    Stage(
        name="AI Technical Interview",
        order=2,
        description="Recorded interview with AI-generated technical questions.",
        kind=StageKind.ai_interview,
    ),
    Stage(
        name="Technical Assessment",
        order=3,
        description="Hands-on assessment of role-specific skills.",
        kind=StageKind.assessment,
    ),
    Stage(
        name="HR Round",
        order=4,
        description="Culture fit, communication and expectations discussion.",
        kind=StageKind.hr_round,
    ),
    Stage(
        name="Viva",
        order=5,
        description="Live panel discussion with the hiring team.",
        kind=StageKind.viva,
    ),
    Stage(
        name="Final Review",
        order=6,
        description="Consolidated review of all previous stages.",
        kind=StageKind.review,
    ),
    Stage(
        name="Offer Stage",
        order=7,
        description="Offer preparation and acceptance.",
        kind=StageKind.offer,
    ),
)


class StageCatalog:
    """Ordered, validated list of interview stages.

    Orders must be unique and contiguous starting at 1; the catalog is
    immutable once built.
    """

    def __init__(self, stages: Iterable[Stage]) -> None:
        ordered = sorted(stages, key=lambda stage: stage.order)
        if not ordered:
            raise CatalogError("stage catalog must contain at least one stage")
        expected = list(range(1, len(ordered) + 1))
        actual = [stage.order for stage in ordered]
        if actual != expected:
            raise CatalogError(
                f"stage orders must be unique and contiguous from 1, got {actual}"
            )
        names = [stage.name for stage in ordered]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise CatalogError(f"stage names must be unique, got duplicates {duplicates}")
        self._stages: tuple[Stage, ...] = tuple(ordered)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def final_order(self) -> int:
        return self._stages[-1].order

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self):
        return iter(self._stages)

    def get(self, order: int) -> Optional[Stage]:
        if 1 <= order <= len(self._stages):
            return self._stages[order - 1]
        return None

    def require(self, order: int) -> Stage:
        stage = self.get(order)
        if stage is None:
            raise CatalogError(f"no stage with order {order}")
        return stage

    def next_after(self, order: int) -> Optional[Stage]:
        return self.get(order + 1)


def default_catalog() -> StageCatalog:
    return StageCatalog(DEFAULT_STAGES)


def load_catalog(path: Optional[str]) -> StageCatalog:
    if not path:
        return default_catalog()
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogError(f"unable to read stage catalog {path}: {exc}") from exc
    if not isinstance(raw, list):
        raise CatalogError("stage catalog file must contain a JSON list")
    try:
        stages = [Stage.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise CatalogError(f"invalid stage definition: {exc.errors()}") from exc
    return StageCatalog(stages)
