from __future__ import annotations

import json

import httpx
import pytest

from backend.gradia.errors import CollaboratorUnavailableError
from backend.gradia.models import (
    InterviewQuestion,
    NotificationKind,
    Recommendation,
    RubricContext,
    StageContext,
    StageKind,
)
from backend.gradia.services.ai_gateway import (
    FALLBACK_EVALUATION_FEEDBACK,
    AIGatewayClient,
    parse_evaluation,
    parse_questions,
)
from backend.gradia.services.email_templates import render_status_email
from backend.gradia.services.notifications import RESEND_EMAILS_URL, ResendNotifier

EXTRA_INFO = {
    "candidate_email": "asha@example.com",
    "candidate_name": "Asha Rao",
    "job_title": "Backend Engineer",
    "company_name": "Acme",
    "completed_stage": "Resume Screening",
    "next_stage": "AI Technical Interview",
    "score": 81,
}


def _resend(handler) -> ResendNotifier:
    return ResendNotifier(
        api_key="re_test",
        sender="Gradia Hiring <noreply@gradia.co.in>",
        reply_to="support@gradia.co.in",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_resend_notifier_posts_rendered_email() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"id": "email_123"})

    message_id = _resend(handler).send(
        candidate_id="cand-1",
        job_id="job-1",
        status_kind=NotificationKind.stage_advanced,
        extra_info=EXTRA_INFO,
    )

    assert message_id == "email_123"
    request = captured[0]
    assert str(request.url) == RESEND_EMAILS_URL
    assert request.headers["Authorization"] == "Bearer re_test"
    body = json.loads(request.content)
    assert body["to"] == ["asha@example.com"]
    assert body["subject"] == "Resume Screening complete - Backend Engineer at Acme"
    assert "AI Technical Interview" in body["html"]
    assert "81%" in body["html"]


def test_resend_notifier_reports_provider_errors() -> None:
    notifier = _resend(lambda request: httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(CollaboratorUnavailableError) as excinfo:
        notifier.send(
            candidate_id="cand-1",
            job_id="job-1",
            status_kind=NotificationKind.rejected,
            extra_info=EXTRA_INFO,
        )
    assert excinfo.value.collaborator == "notification"
    assert excinfo.value.status_code == 500


def test_resend_notifier_reports_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CollaboratorUnavailableError):
        _resend(handler).send(
            candidate_id="cand-1",
            job_id="job-1",
            status_kind=NotificationKind.hired,
            extra_info=EXTRA_INFO,
        )


def test_resend_notifier_needs_an_email_address() -> None:
    notifier = _resend(lambda request: httpx.Response(200, json={"id": "never"}))
    with pytest.raises(CollaboratorUnavailableError):
        notifier.send(
            candidate_id="cand-1",
            job_id="job-1",
            status_kind=NotificationKind.hired,
            extra_info={"candidate_name": "Asha"},
        )


def test_status_emails_escape_caller_values() -> None:
    rendered = render_status_email(
        NotificationKind.rejected,
        candidate_name="<b>Asha</b>",
        job_title="Backend Engineer",
        company_name="Acme & Co",
        extra_info={"rejection_reason": "<script>x</script>"},
    )
    assert rendered.subject == "Application update for Backend Engineer at Acme & Co"
    assert "&lt;b&gt;Asha&lt;/b&gt;" in rendered.html
    assert "&lt;script&gt;" in rendered.html
    assert "Acme &amp; Co" in rendered.html

    offer = render_status_email(
        NotificationKind.offer_received,
        candidate_name="Asha",
        job_title="Backend Engineer",
        company_name="Acme",
    )
    assert offer.subject == "Job offer for Backend Engineer at Acme"


def _completion(content: str) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1760000000,
        "model": "google/gemini-2.5-flash",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def _gateway(handler) -> AIGatewayClient:
    return AIGatewayClient(
        api_key="test-key",
        base_url="https://gateway.test/v1",
        model="google/gemini-2.5-flash",
        max_retries=0,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


STAGE_CONTEXT = StageContext(
    stage_name="AI Technical Interview",
    stage_kind=StageKind.ai_interview,
    stage_order=2,
    job_title="Backend Engineer",
    job_skills=["python", "sql"],
    question_count=2,
)


def test_gateway_generates_questions_from_fenced_json() -> None:
    seen: list[dict] = []
    content = (
        "Here you go:\n```json\n"
        '[{"id": 1, "question": "Explain database indexes.", "category": "Technical", '
        '"difficulty": "Medium", "expectedDuration": 150, "keyPoints": ["B-trees"]}, '
        '{"id": 2, "question": "How do you test async code?"}]'
        "\n```"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/chat/completions")
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=_completion(content))

    questions = _gateway(handler).generate(
        job_id="job-1", candidate_id="cand-1", stage_context=STAGE_CONTEXT
    )

    assert [question.question for question in questions] == [
        "Explain database indexes.",
        "How do you test async code?",
    ]
    assert questions[0].expected_duration_seconds == 150
    assert questions[0].key_points == ["B-trees"]
    assert questions[1].difficulty == "Medium"
    assert seen[0]["model"] == "google/gemini-2.5-flash"
    assert "python, sql" in seen[0]["messages"][0]["content"]


def test_gateway_evaluates_answers() -> None:
    content = json.dumps(
        {
            "evaluations": [
                {"questionIndex": 0, "scores": {"clarity": 8, "depth": 6}},
                {"questionIndex": 1, "scores": {"clarity": 6, "depth": 9}},
            ],
            "overallScore": 74,
            "overallFeedback": "Solid fundamentals.",
            "recommendation": "recommend",
            "topStrengths": ["SQL"],
            "areasForImprovement": ["Testing"],
        }
    )
    client = _gateway(lambda request: httpx.Response(200, json=_completion(content)))
    evaluation = client.evaluate(
        answers=["B-trees", "pytest-asyncio"],
        rubric_context=RubricContext(
            stage_name="AI Technical Interview",
            questions=[InterviewQuestion(id=1, question="Explain database indexes.")],
        ),
    )
    assert evaluation.overall_score == 74
    assert evaluation.scores == {"clarity": 7.0, "depth": 7.5}
    assert evaluation.recommendation == Recommendation.recommend
    assert evaluation.strengths == ["SQL"]


def test_gateway_status_error_is_unavailable() -> None:
    client = _gateway(lambda request: httpx.Response(503, json={"error": "overloaded"}))
    with pytest.raises(CollaboratorUnavailableError) as excinfo:
        client.generate(job_id="job-1", candidate_id="cand-1", stage_context=STAGE_CONTEXT)
    assert excinfo.value.collaborator == "ai_gateway"
    assert excinfo.value.status_code == 503


def test_gateway_transport_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    with pytest.raises(CollaboratorUnavailableError):
        _gateway(handler).evaluate(
            answers=["x"], rubric_context=RubricContext(stage_name="Resume Screening")
        )


def test_unparseable_model_output_falls_back() -> None:
    questions = parse_questions("I cannot help with that.", job_title="Data Analyst")
    assert len(questions) == 3
    assert "Data Analyst" in questions[0].question

    wrapped = parse_questions(
        '{"questions": [{"question": "What is a join?"}]}', job_title=None
    )
    assert [question.question for question in wrapped] == ["What is a join?"]

    evaluation = parse_evaluation("not json")
    assert evaluation.overall_score == 50
    assert evaluation.recommendation == Recommendation.maybe
    assert evaluation.feedback == FALLBACK_EVALUATION_FEEDBACK

    odd = parse_evaluation('{"overallScore": 140, "recommendation": "hire now"}')
    assert odd.overall_score == 100
    assert odd.recommendation == Recommendation.maybe


def test_evaluation_ignores_non_list_highlights() -> None:
    evaluation = parse_evaluation(
        '{"overallScore": 80, "topStrengths": 5, "areasForImprovement": "Testing"}'
    )
    assert evaluation.overall_score == 80
    assert evaluation.strengths == []
    assert evaluation.improvements == []
