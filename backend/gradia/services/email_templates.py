"""
HTML templates for candidate status emails.

Every template shares one wrapper and renders a subject plus body for a
NotificationKind. Values coming from callers are HTML-escaped.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Any, Optional

from backend.gradia.models import NotificationKind

WRAPPER = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: Arial, Helvetica, sans-serif; font-size: 14px; line-height: 1.5; color: #374151; margin: 0; padding: 0; background-color: #f9fafb;">
  <table width="100%" cellpadding="0" cellspacing="0" style="max-width: 600px; margin: 0 auto; background-color: #ffffff;">
    <tr>
      <td style="padding: 32px 24px; border-bottom: 1px solid #e5e7eb;">
        <h1 style="margin: 0; font-size: 18px; font-weight: 600; color: #111827;">{heading}</h1>
      </td>
    </tr>
    <tr>
      <td style="padding: 24px;">
        {content}
      </td>
    </tr>
    <tr>
      <td style="padding: 24px; background-color: #f9fafb; border-top: 1px solid #e5e7eb;">
        <p style="margin: 0; font-size: 12px; color: #9ca3af; text-align: center;">
          This email was sent by Gradia Job Portal on behalf of {company}.
        </p>
      </td>
    </tr>
  </table>
</body>
</html>"""


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


def _score_line(score: Optional[Any]) -> str:
    if score is None:
        return ""
    try:
        value = float(score)
    except (TypeError, ValueError):
        return ""
    return f'<p style="margin: 0 0 16px;"><strong>Stage score:</strong> {value:.0f}%</p>'


def render_status_email(
    kind: NotificationKind,
    *,
    candidate_name: str,
    job_title: str,
    company_name: str,
    extra_info: Optional[dict[str, Any]] = None,
) -> RenderedEmail:
    info = extra_info or {}
    name = escape(candidate_name)
    job = escape(job_title)
    company = escape(company_name)
    greeting = f'<p style="margin: 0 0 16px;">Dear {name},</p>'
    sign_off = f'<p style="margin: 0;">Best regards,<br>The {company} Hiring Team</p>'

    if kind == NotificationKind.stage_advanced:
        completed = escape(str(info.get("completed_stage") or "the previous stage"))
        next_stage = escape(str(info.get("next_stage") or "the next stage"))
        subject = f"{info.get('completed_stage') or 'Stage'} complete - {job_title} at {company_name}"
        body = (
            f"{greeting}"
            f'<p style="margin: 0 0 16px;">You have successfully completed the '
            f"<strong>{completed}</strong> stage for the <strong>{job}</strong> position "
            f"at <strong>{company}</strong>.</p>"
            f"{_score_line(info.get('score'))}"
            f'<p style="margin: 0 0 24px;">You are advancing to the <strong>{next_stage}</strong> '
            f"stage. We will be in touch with the details.</p>"
            f"{sign_off}"
        )
        heading = "Stage Completed"
    elif kind == NotificationKind.offer_received:
        subject = f"Job offer for {job_title} at {company_name}"
        body = (
            f"{greeting}"
            f'<p style="margin: 0 0 16px;">We are pleased to let you know that you have cleared '
            f"every interview stage for <strong>{job}</strong> at <strong>{company}</strong>.</p>"
            f'<p style="margin: 0 0 24px; color: #6b7280;">Your offer letter will be sent '
            f"separately. Please review it carefully and let us know if you have questions.</p>"
            f"{sign_off}"
        )
        heading = "Offer Stage"
    elif kind == NotificationKind.hired:
        subject = f"Welcome aboard - {job_title} at {company_name}"
        body = (
            f"{greeting}"
            f'<p style="margin: 0 0 16px;">Congratulations! You have completed all interview '
            f"stages for <strong>{job}</strong> at <strong>{company}</strong>.</p>"
            f'<p style="margin: 0 0 24px;">Our team will reach out shortly with onboarding '
            f"details.</p>"
            f'<p style="margin: 0;">Welcome to the team,<br>The {company} Hiring Team</p>'
        )
        heading = "Congratulations"
    else:
        reason = info.get("rejection_reason")
        reason_block = (
            f'<p style="margin: 0 0 16px;"><strong>Feedback:</strong> {escape(str(reason))}</p>'
            if reason
            else ""
        )
        subject = f"Application update for {job_title} at {company_name}"
        body = (
            f"{greeting}"
            f'<p style="margin: 0 0 16px;">Thank you for your interest in the '
            f"<strong>{job}</strong> position at <strong>{company}</strong>.</p>"
            f'<p style="margin: 0 0 16px;">After careful consideration, we have decided to move '
            f"forward with other candidates whose qualifications more closely match our "
            f"current needs.</p>"
            f"{reason_block}"
            f'<p style="margin: 0 0 24px; color: #6b7280;">We encourage you to apply for other '
            f"opportunities that match your skills.</p>"
            f"{sign_off}"
        )
        heading = "Application Update"

    return RenderedEmail(
        subject=subject,
        html=WRAPPER.format(heading=heading, content=body, company=company),
    )
