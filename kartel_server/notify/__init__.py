"""
Notification collaborators (email and web push).

Both are treated as unreliable side channels: domain operations dispatch
them after their primary write and record failures as warnings.
"""

from .email import (
    DisabledEmailSender,
    EmailMessage,
    EmailSender,
    RecordingEmailSender,
    SendGridEmailSender,
    create_email_sender,
)
from .push import (
    DisabledPushSender,
    PushGoneError,
    PushSender,
    RecordingPushSender,
    WebPushSender,
    create_push_sender,
)

__all__ = [
    "EmailSender",
    "EmailMessage",
    "SendGridEmailSender",
    "DisabledEmailSender",
    "RecordingEmailSender",
    "create_email_sender",
    "PushSender",
    "PushGoneError",
    "WebPushSender",
    "DisabledPushSender",
    "RecordingPushSender",
    "create_push_sender",
]
