"""
AI gateway client for interview question generation and answer evaluation.

The gateway speaks the OpenAI chat-completions protocol, so the ``openai``
client is pointed at its base URL. Model output is expected as JSON, possibly
wrapped in a markdown code fence; output that cannot be parsed falls back to
generic questions or a neutral evaluation instead of failing the caller.
Transport and HTTP errors raise CollaboratorUnavailableError.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Protocol

import httpx
from openai import APIError, APIStatusError, OpenAI
from pydantic import ValidationError

from backend.gradia.errors import CollaboratorUnavailableError
from backend.gradia.models import (
    AIEvaluation,
    InterviewQuestion,
    Recommendation,
    RubricContext,
    StageContext,
)

logger = logging.getLogger("gradia_pipeline.ai_gateway")

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

FALLBACK_EVALUATION_FEEDBACK = (
    "Evaluation completed. Please review the recording for detailed assessment."
)


class QuestionGenerator(Protocol):
    def generate(
        self,
        *,
        job_id: str,
        candidate_id: str,
        stage_context: StageContext,
    ) -> list[InterviewQuestion]: ...


class AnswerEvaluator(Protocol):
    def evaluate(
        self,
        *,
        answers: list[str],
        rubric_context: RubricContext,
    ) -> AIEvaluation: ...


def fallback_questions(job_title: Optional[str]) -> list[InterviewQuestion]:
    role = job_title or "this"
    return [
        InterviewQuestion(
            id=1,
            question=f"Tell me about your experience relevant to the {role} role.",
            category="General",
            difficulty="Easy",
            expected_duration_seconds=120,
            key_points=["Relevant experience", "Key achievements"],
        ),
        InterviewQuestion(
            id=2,
            question="Describe a challenging technical problem you solved recently.",
            category="Technical",
            difficulty="Medium",
            expected_duration_seconds=180,
            key_points=["Problem identification", "Solution approach", "Outcome"],
        ),
        InterviewQuestion(
            id=3,
            question="How do you stay updated with the latest developments in your field?",
            category="Professional",
            difficulty="Easy",
            expected_duration_seconds=120,
            key_points=["Learning methods", "Industry awareness"],
        ),
    ]


def extract_json(content: str) -> Any:
    match = _FENCE_PATTERN.search(content)
    text = match.group(1) if match else content
    return json.loads(text.strip())


def parse_questions(content: str, *, job_title: Optional[str]) -> list[InterviewQuestion]:
    try:
        raw = extract_json(content)
    except json.JSONDecodeError:
        logger.warning("ai_questions_unparseable length=%s", len(content))
        return fallback_questions(job_title)
    if isinstance(raw, dict):
        raw = raw.get("questions", [])
    if not isinstance(raw, list):
        return fallback_questions(job_title)

    questions: list[InterviewQuestion] = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict) or not str(item.get("question", "")).strip():
            continue
        try:
            questions.append(
                InterviewQuestion(
                    id=int(item.get("id") or index),
                    question=str(item["question"]).strip(),
                    category=str(item.get("category") or "General"),
                    difficulty=str(item.get("difficulty") or "Medium"),
                    expected_duration_seconds=int(item.get("expectedDuration") or 120),
                    key_points=[str(point) for point in item.get("keyPoints") or []],
                )
            )
        except (TypeError, ValueError, ValidationError):
            continue
    return questions or fallback_questions(job_title)


def _average_scores(evaluations: Any) -> dict[str, float]:
    if not isinstance(evaluations, list):
        return {}
    totals: dict[str, float] = {}
    counts: dict[str, int] = {}
    for item in evaluations:
        scores = item.get("scores") if isinstance(item, dict) else None
        if not isinstance(scores, dict):
            continue
        for key, value in scores.items():
            try:
                number = float(value)
            except (TypeError, ValueError):
                continue
            totals[key] = totals.get(key, 0.0) + number
            counts[key] = counts.get(key, 0) + 1
    return {key: round(totals[key] / counts[key], 2) for key in totals}


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def _recommendation(value: Any) -> Recommendation:
    try:
        return Recommendation(str(value))
    except ValueError:
        return Recommendation.maybe


def parse_evaluation(content: str) -> AIEvaluation:
    try:
        raw = extract_json(content)
    except json.JSONDecodeError:
        logger.warning("ai_evaluation_unparseable length=%s", len(content))
        raw = None
    if not isinstance(raw, dict):
        return AIEvaluation(
            overall_score=50,
            feedback=FALLBACK_EVALUATION_FEEDBACK,
            recommendation=Recommendation.maybe,
        )
    try:
        score = float(raw.get("overallScore", 50))
    except (TypeError, ValueError):
        score = 50.0
    return AIEvaluation(
        overall_score=max(0.0, min(100.0, score)),
        scores=_average_scores(raw.get("evaluations")),
        feedback=str(raw.get("overallFeedback") or FALLBACK_EVALUATION_FEEDBACK),
        recommendation=_recommendation(raw.get("recommendation")),
        strengths=_string_list(raw.get("topStrengths")),
        improvements=_string_list(raw.get("areasForImprovement")),
    )


def _question_prompt(stage_context: StageContext) -> str:
    lines = [
        "You are a senior technical interviewer. Generate "
        f"{stage_context.question_count} interview questions for the "
        f'"{stage_context.stage_name}" stage of a '
        f"{stage_context.job_title or 'technical'} position.",
        "",
        "Job Details:",
        f"- Title: {stage_context.job_title or 'N/A'}",
        f"- Required Skills: {', '.join(stage_context.job_skills) or 'N/A'}",
        f"- Description: {stage_context.job_description or 'N/A'}",
    ]
    if stage_context.candidate_name:
        lines.append(f"- Candidate: {stage_context.candidate_name}")
    lines.extend(
        [
            "",
            "Questions should test role knowledge, mix conceptual and practical topics,",
            "range from basic to advanced, and be answerable verbally in 2-3 minutes.",
            "",
            "Return ONLY a valid JSON array in this exact format:",
            '[{"id": 1, "question": "...", "category": "Technical/Conceptual/Practical", '
            '"difficulty": "Easy/Medium/Hard", "expectedDuration": 120, '
            '"keyPoints": ["..."]}]',
        ]
    )
    return "\n".join(lines)


def _evaluation_prompt(rubric_context: RubricContext) -> str:
    return "\n".join(
        [
            "You are an expert technical interviewer evaluating candidate responses for a "
            f"{rubric_context.job_title or 'technical'} position "
            f'("{rubric_context.stage_name}" stage).',
            f"Required Skills: {', '.join(rubric_context.job_skills) or 'N/A'}",
            "",
            "Evaluate each answer on technicalAccuracy, clarity, depth and communication (0-10).",
            "",
            "Return ONLY a valid JSON object in this exact format:",
            '{"evaluations": [{"questionIndex": 0, "scores": {"technicalAccuracy": 8, '
            '"clarity": 7, "depth": 8, "communication": 9}, "feedback": "..."}], '
            '"overallScore": 75, "overallFeedback": "...", '
            '"recommendation": "strongly_recommend|recommend|maybe|not_recommend", '
            '"topStrengths": ["..."], "areasForImprovement": ["..."]}',
        ]
    )


def _answers_block(answers: list[str], rubric_context: RubricContext) -> str:
    blocks: list[str] = []
    count = max(len(answers), len(rubric_context.questions))
    for index in range(count):
        question = (
            rubric_context.questions[index] if index < len(rubric_context.questions) else None
        )
        answer = answers[index] if index < len(answers) else "No answer provided"
        lines = [f"Question {index + 1}: {question.question if question else 'Open response'}"]
        if question:
            lines.append(f"Category: {question.category}")
            lines.append(f"Difficulty: {question.difficulty}")
            lines.append(f"Key Points Expected: {', '.join(question.key_points) or 'N/A'}")
        lines.append(f"Candidate's Answer: {answer}")
        blocks.append("\n".join(lines))
    if rubric_context.notes:
        blocks.append(f"Interviewer notes: {rubric_context.notes}")
    return "\n---\n".join(blocks)


class AIGatewayClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 1,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.model = model
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=max_retries,
            http_client=http_client,
        )

    def _complete(self, system_prompt: str, user_content: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=0.2,
            )
        except APIStatusError as exc:
            raise CollaboratorUnavailableError(
                "ai_gateway",
                f"AI gateway returned status {exc.status_code}",
                status_code=exc.status_code,
            ) from exc
        except APIError as exc:
            raise CollaboratorUnavailableError(
                "ai_gateway", f"AI gateway request failed: {exc}"
            ) from exc
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def generate(
        self,
        *,
        job_id: str,
        candidate_id: str,
        stage_context: StageContext,
    ) -> list[InterviewQuestion]:
        content = self._complete(
            _question_prompt(stage_context),
            f"Generate {stage_context.question_count} interview questions for "
            f"job {job_id}, candidate {candidate_id}.",
        )
        return parse_questions(content, job_title=stage_context.job_title)

    def evaluate(
        self,
        *,
        answers: list[str],
        rubric_context: RubricContext,
    ) -> AIEvaluation:
        content = self._complete(
            _evaluation_prompt(rubric_context),
            f"Evaluate these interview responses:\n\n{_answers_block(answers, rubric_context)}",
        )
        return parse_evaluation(content)


class DisabledAIGateway:
    """Stand-in when no AI key is configured; every call reports the gateway as unavailable."""

    def generate(
        self,
        *,
        job_id: str,
        candidate_id: str,
        stage_context: StageContext,
    ) -> list[InterviewQuestion]:
        raise CollaboratorUnavailableError("ai_gateway", "AI gateway is not configured")

    def evaluate(
        self,
        *,
        answers: list[str],
        rubric_context: RubricContext,
    ) -> AIEvaluation:
        raise CollaboratorUnavailableError("ai_gateway", "AI gateway is not configured")
