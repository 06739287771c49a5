"""
conveyor — end-of-run notifications

File: src/conveyor/reporting/notifications.py
Last updated: 2026-10-19

Purpose
- Compose the success/failure notification for a finished run and send it
  to commit authors, declared owners, and the triggering actor.

Functional requirements
- Recipients are de-duplicated in first-seen order: authors, owners, actor.
- Subject and body are jinja2 templates rendered with strict undefined
  variables; the defaults can be replaced from config.
- Delivery problems surface as ``NotificationFailed``; callers log and
  continue.
"""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Final, Protocol

from jinja2 import Environment, StrictUndefined, TemplateError

from conveyor.domain.errors import PipelineError
from conveyor.domain.models import PipelineRun, RunContext, RunStatus

logger = logging.getLogger(__name__)


class NotificationFailed(PipelineError):
    """Raised when a notifier cannot deliver a notification."""


@dataclass(frozen=True, slots=True)
class Notification:
    run_id: str
    status: RunStatus
    subject: str
    body: str
    recipients: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RecipientPolicy:
    owners: tuple[str, ...] = ()

    def recipients(self, context: RunContext) -> tuple[str, ...]:
        candidates: list[str] = [*context.commit_authors, *self.owners]
        if context.triggered_by:
            candidates.append(context.triggered_by)
        return _dedupe(candidates)


class Notifier(Protocol):
    def send(self, notification: Notification) -> None: ...


DEFAULT_SUBJECT_TEMPLATE: Final[str] = (
    "[conveyor] {{ repository or 'pipeline' }} build #{{ build_number }} {{ outcome }}"
)
DEFAULT_BODY_TEMPLATE: Final[str] = (
    "Build #{{ build_number }} {{ outcome }}.\n"
    "Environment: {{ environment }}\n"
    "{% if branch %}Branch: {{ branch }}\n{% endif %}"
    "{% if commit %}Commit: {{ commit }}\n{% endif %}"
    "{% if failed_stage %}Failed stage: {{ failed_stage }}\n{% endif %}"
    "{% if reason %}Reason: {{ reason }}\n{% endif %}"
    "\n"
    "Stages:\n"
    "{% for stage in stages %}  {{ stage.name }}: {{ stage.state }}\n{% endfor %}"
)

_TEMPLATE_ENVIRONMENT = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
    newline_sequence="\n",
)


@dataclass(frozen=True, slots=True)
class NotificationTemplates:
    """Subject and body templates; both see the variables from ``notification_variables``."""

    subject: str = DEFAULT_SUBJECT_TEMPLATE
    body: str = DEFAULT_BODY_TEMPLATE

    def render(self, variables: dict[str, Any]) -> tuple[str, str]:
        try:
            subject = _TEMPLATE_ENVIRONMENT.from_string(self.subject).render(variables)
            body = _TEMPLATE_ENVIRONMENT.from_string(self.body).render(variables)
        except TemplateError as exc:
            raise NotificationFailed(f"notification template error: {exc}") from exc
        # Subjects are single-line.
        return " ".join(subject.split()), body


def notification_variables(run: PipelineRun) -> dict[str, Any]:
    context = run.context
    return {
        "run_id": run.run_id,
        "build_number": context.build_number,
        "repository": context.repository,
        "branch": context.branch,
        "commit": context.commit_sha,
        "triggered_by": context.triggered_by,
        "outcome": "succeeded" if run.status is RunStatus.SUCCEEDED else "failed",
        "environment": run.parameters.environment.value,
        "failed_stage": run.failed_stage,
        "reason": run.failure_reason,
        "stages": [
            {"name": result.name, "state": result.state.value} for result in run.stages
        ],
    }


def build_notification(
    run: PipelineRun,
    policy: RecipientPolicy,
    templates: NotificationTemplates | None = None,
) -> Notification:
    subject, body = (templates or NotificationTemplates()).render(notification_variables(run))
    return Notification(
        run_id=run.run_id,
        status=RunStatus.SUCCEEDED if run.status is RunStatus.SUCCEEDED else RunStatus.FAILED,
        subject=subject,
        body=body,
        recipients=policy.recipients(run.context),
    )


class LoggingNotifier:
    """Logs notifications instead of sending them; keeps what it logged."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)
        logger.info(
            "notification: %s",
            notification.subject,
            extra={"recipients": list(notification.recipients)},
        )


class SmtpNotifier:
    def __init__(
        self,
        *,
        host: str,
        port: int = 25,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        timeout_seconds: float = 30.0,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._timeout_seconds = timeout_seconds
        self._smtp_factory = smtp_factory

    def send(self, notification: Notification) -> None:
        if not notification.recipients:
            logger.warning("notification has no recipients; skipped")
            return

        message = EmailMessage()
        message["Subject"] = notification.subject
        message["From"] = self._sender
        message["To"] = ", ".join(notification.recipients)
        message.set_content(notification.body)

        try:
            with self._smtp_factory(self._host, self._port, timeout=self._timeout_seconds) as smtp:
                if self._username and self._password:
                    smtp.starttls()
                    smtp.login(self._username, self._password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationFailed(
                f"smtp delivery to {self._host}:{self._port} failed: {exc}"
            ) from exc


def _dedupe(items: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        cleaned = item.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        out.append(cleaned)
    return tuple(out)


__all__ = [
    "DEFAULT_BODY_TEMPLATE",
    "DEFAULT_SUBJECT_TEMPLATE",
    "LoggingNotifier",
    "Notification",
    "NotificationFailed",
    "NotificationTemplates",
    "Notifier",
    "RecipientPolicy",
    "SmtpNotifier",
    "build_notification",
    "notification_variables",
]
