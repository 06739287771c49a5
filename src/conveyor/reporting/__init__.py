"""Status reporting and end-of-run notifications."""

from conveyor.reporting.commit_status import COMMIT_STATE_BY_STATUS, CommitStatusSink
from conveyor.reporting.notifications import (
    LoggingNotifier,
    Notification,
    NotificationFailed,
    NotificationTemplates,
    Notifier,
    RecipientPolicy,
    SmtpNotifier,
    build_notification,
)
from conveyor.reporting.status import LoggingStatusSink, StatusReporter, StatusSink

__all__ = [
    "COMMIT_STATE_BY_STATUS",
    "CommitStatusSink",
    "LoggingNotifier",
    "LoggingStatusSink",
    "Notification",
    "NotificationFailed",
    "NotificationTemplates",
    "Notifier",
    "RecipientPolicy",
    "SmtpNotifier",
    "StatusReporter",
    "StatusSink",
    "build_notification",
]
