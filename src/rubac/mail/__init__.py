"""Notification mails for backup batches."""

from .mailer import Mailer, default_sender
from .notification import NotificationBuffer, batch_subject, disk_usage_report

__all__ = [
    "Mailer",
    "NotificationBuffer",
    "batch_subject",
    "default_sender",
    "disk_usage_report",
]
