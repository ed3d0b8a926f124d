from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.utcnow()


class StageKind(str, Enum):
    resume_screening = "resume_screening"
    ai_interview = "ai_interview"
    assessment = "assessment"
    hr_round = "hr_round"
    viva = "viva"
    review = "review"
    offer = "offer"
    general = "general"

    @property
    def is_ai_driven(self) -> bool:
        return self in AI_DRIVEN_KINDS

    @property
    def is_ai_graded(self) -> bool:
        return self in AI_GRADED_KINDS


AI_DRIVEN_KINDS = frozenset({StageKind.ai_interview})
AI_GRADED_KINDS = frozenset({StageKind.resume_screening, StageKind.ai_interview})


class StageStatus(str, Enum):
    completed = "completed"
    current = "current"
    locked = "locked"


class PipelineStatus(str, Enum):
    in_progress = "in_progress"
    rejected = "rejected"
    hired = "hired"

    @property
    def is_terminal(self) -> bool:
        return self is not PipelineStatus.in_progress


class PipelineAction(str, Enum):
    advance = "advance"
    reject = "reject"
    evaluate = "evaluate"


class ActionOutcome(str, Enum):
    advanced = "advanced"
    hired = "hired"
    rejected = "rejected"
    evaluated = "evaluated"
    unchanged = "unchanged"


class NotificationKind(str, Enum):
    stage_advanced = "stage_advanced"
    offer_received = "offer_received"
    hired = "hired"
    rejected = "rejected"


class Recommendation(str, Enum):
    strongly_recommend = "strongly_recommend"
    recommend = "recommend"
    maybe = "maybe"
    not_recommend = "not_recommend"


class Stage(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    order: int = Field(ge=1)
    description: str = ""
    kind: StageKind = StageKind.general


class StageResult(BaseModel):
    stage_order: int = Field(ge=1)
    completed_at: Optional[datetime] = None
    score: Optional[float] = Field(default=None, ge=0, le=100)
    passed: Optional[bool] = None
    feedback: Optional[str] = None


class PipelineContext(BaseModel):
    candidate_name: Optional[str] = Field(default=None, max_length=120)
    candidate_email: Optional[str] = Field(default=None, max_length=254)
    job_title: Optional[str] = Field(default=None, max_length=160)
    company_name: Optional[str] = Field(default=None, max_length=160)
    job_skills: list[str] = Field(default_factory=list)
    job_description: Optional[str] = Field(default=None, max_length=4000)


class CandidatePipelineRecord(BaseModel):
    id: str
    candidate_id: str
    job_id: str
    current_stage_order: int = Field(ge=1)
    status: PipelineStatus
    results: list[StageResult] = Field(default_factory=list)
    rejection_reason: Optional[str] = None
    version: int = Field(default=1, ge=1)
    context: PipelineContext = Field(default_factory=PipelineContext)
    created_at_utc: datetime
    updated_at_utc: datetime

    def result_for(self, stage_order: int) -> Optional[StageResult]:
        for result in self.results:
            if result.stage_order == stage_order:
                return result
        return None


class StageEventRecord(BaseModel):
    id: str
    pipeline_id: str
    stage_order: int
    action: str
    from_status: PipelineStatus
    to_status: PipelineStatus
    from_stage_order: int
    to_stage_order: int
    note: Optional[str] = None
    actor: Optional[str] = None
    created_at_utc: datetime


class InterviewQuestion(BaseModel):
    id: int
    question: str
    category: str = "General"
    difficulty: str = "Medium"
    expected_duration_seconds: int = Field(default=120, ge=0)
    key_points: list[str] = Field(default_factory=list)


class AIEvaluation(BaseModel):
    overall_score: float = Field(ge=0, le=100)
    scores: dict[str, float] = Field(default_factory=dict)
    feedback: str = ""
    recommendation: Recommendation = Recommendation.maybe
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)


class InterviewSessionRecord(BaseModel):
    id: str
    pipeline_id: str
    job_id: str
    stage_order: int
    questions: list[InterviewQuestion] = Field(default_factory=list)
    status: str = "pending"
    answers: list[str] = Field(default_factory=list)
    evaluation: Optional[AIEvaluation] = None
    created_at_utc: datetime
    updated_at_utc: datetime


class StageContext(BaseModel):
    stage_name: str
    stage_kind: StageKind
    stage_order: int
    job_title: Optional[str] = None
    job_skills: list[str] = Field(default_factory=list)
    job_description: Optional[str] = None
    candidate_name: Optional[str] = None
    question_count: int = Field(default=5, ge=1, le=20)


class RubricContext(BaseModel):
    stage_name: str
    job_title: Optional[str] = None
    job_skills: list[str] = Field(default_factory=list)
    questions: list[InterviewQuestion] = Field(default_factory=list)
    notes: Optional[str] = None


class Diagnostic(BaseModel):
    code: str = "collaborator_unavailable"
    collaborator: str
    message: str


class PipelineCreateRequest(BaseModel):
    candidate_id: str = Field(min_length=1, max_length=120)
    job_id: str = Field(min_length=1, max_length=120)
    context: PipelineContext = Field(default_factory=PipelineContext)

    @field_validator("candidate_id", "job_id", mode="before")
    @classmethod
    def strip_identifier(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class ActionPayload(BaseModel):
    stage_order: Optional[int] = Field(default=None, ge=1)
    score: Optional[float] = Field(default=None, ge=0, le=100)
    passed: Optional[bool] = None
    feedback: Optional[str] = Field(default=None, max_length=2000)
    reason: Optional[str] = Field(default=None, max_length=500)
    answers: list[str] = Field(default_factory=list)


class ActionRequest(ActionPayload):
    action: PipelineAction
    expected_version: Optional[int] = Field(default=None, ge=1)


class ResetRequest(BaseModel):
    reason: str = Field(min_length=2, max_length=200)


class StageProgress(BaseModel):
    name: str
    order: int
    kind: StageKind
    description: str
    status: StageStatus
    score: Optional[float] = None
    passed: Optional[bool] = None
    feedback: Optional[str] = None
    completed_at: Optional[datetime] = None


class PipelineProgress(BaseModel):
    pipeline_id: str
    status: PipelineStatus
    current_stage_order: Optional[int]
    stopped_at_stage_order: Optional[int] = None
    completed_stages: int
    total_stages: int
    percent_complete: float
    stages: list[StageProgress]

    @model_validator(mode="after")
    def validate_single_current(self) -> "PipelineProgress":
        current = [stage for stage in self.stages if stage.status == StageStatus.current]
        if len(current) > 1:
            raise ValueError("at most one stage can be current")
        if current and self.status.is_terminal:
            raise ValueError("terminal pipelines have no current stage")
        return self


class PipelineResponse(BaseModel):
    pipeline_id: str
    candidate_id: str
    job_id: str
    status: PipelineStatus
    current_stage_order: int
    current_stage_name: Optional[str]
    rejection_reason: Optional[str]
    version: int
    results: list[StageResult]
    updated_at_utc: datetime


class ActionResponse(BaseModel):
    outcome: ActionOutcome
    pipeline: PipelineResponse
    progress: PipelineProgress
    warnings: list[Diagnostic] = Field(default_factory=list)


class JobPipelineItem(BaseModel):
    pipeline_id: str
    candidate_id: str
    status: PipelineStatus
    current_stage_order: int
    current_stage_name: Optional[str]
    latest_score: Optional[float]


class JobPipelinesResponse(BaseModel):
    job_id: str
    counts_by_status: dict[PipelineStatus, int]
    counts_by_stage: dict[str, int]
    pipelines: list[JobPipelineItem]


class QuestionsResponse(BaseModel):
    pipeline_id: str
    stage_order: int
    questions: list[InterviewQuestion]
    warnings: list[Diagnostic] = Field(default_factory=list)
