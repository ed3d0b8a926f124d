from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from backend.gradia.errors import CollaboratorUnavailableError
from backend.gradia.models import NotificationKind
from backend.gradia.services.email_templates import render_status_email

logger = logging.getLogger("gradia_pipeline.notifications")

RESEND_EMAILS_URL = "https://api.resend.com/emails"


class Notifier(Protocol):
    def send(
        self,
        *,
        candidate_id: str,
        job_id: str,
        status_kind: NotificationKind,
        extra_info: dict[str, Any],
    ) -> Optional[str]: ...


class LoggingNotifier:
    """Used when no email provider is configured; records the notification in the log."""

    def send(
        self,
        *,
        candidate_id: str,
        job_id: str,
        status_kind: NotificationKind,
        extra_info: dict[str, Any],
    ) -> Optional[str]:
        logger.info(
            "notification_logged candidate=%s job=%s kind=%s email=%s",
            candidate_id,
            job_id,
            status_kind.value,
            extra_info.get("candidate_email"),
        )
        return None


class ResendNotifier:
    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        reply_to: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.reply_to = reply_to
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def send(
        self,
        *,
        candidate_id: str,
        job_id: str,
        status_kind: NotificationKind,
        extra_info: dict[str, Any],
    ) -> Optional[str]:
        email = extra_info.get("candidate_email")
        if not email:
            raise CollaboratorUnavailableError(
                "notification",
                f"no email address on file for candidate {candidate_id}",
            )
        rendered = render_status_email(
            status_kind,
            candidate_name=extra_info.get("candidate_name") or "Candidate",
            job_title=extra_info.get("job_title") or "the position",
            company_name=extra_info.get("company_name") or "Gradia",
            extra_info=extra_info,
        )
        try:
            response = self._client.post(
                RESEND_EMAILS_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [email],
                    "reply_to": self.reply_to,
                    "subject": rendered.subject,
                    "html": rendered.html,
                },
            )
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailableError(
                "notification", f"email provider request failed: {exc}"
            ) from exc
        if response.status_code >= 400:
            raise CollaboratorUnavailableError(
                "notification",
                f"email provider rejected message with status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None
        logger.info(
            "notification_sent candidate=%s job=%s kind=%s message_id=%s",
            candidate_id,
            job_id,
            status_kind.value,
            message_id,
        )
        return message_id
