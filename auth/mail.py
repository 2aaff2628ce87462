"""
auth/mail.py -- Outbound mail for the password reset flow.

MailDispatcher is the seam: PasswordResetManager depends on the protocol, not
on a transport. LoggingMailDispatcher is the development implementation -- it
writes the message to the log instead of sending it. A production deployment
supplies an SMTP or API-backed dispatcher with the same two methods.

Security:
  Recipient addresses are masked in every log line. The reset URL carries the
  raw token, so it is logged only at DEBUG level and only by the development
  dispatcher.

Dispatch errors propagate. request_reset() swallows them (enumeration
resistance); reset_password() lets them roll back the reset transaction.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Protocol

from core.logging import mask_email

logger = logging.getLogger("sessionguard.auth.mail")

RESET_SUBJECT = "Reset Your Password"
CONFIRMATION_SUBJECT = "Your Password Has Been Reset"


class MailDispatcher(Protocol):
    def send_password_reset_email(self, to: str, reset_url: str) -> None: ...

    def send_password_reset_confirmation(self, to: str) -> None: ...


class LoggingMailDispatcher:
    """Development dispatcher: logs mail instead of delivering it."""

    def __init__(self, reset_expire_seconds: int = 15 * 60) -> None:
        self.reset_expire_minutes = max(1, reset_expire_seconds // 60)

    def send_password_reset_email(self, to: str, reset_url: str) -> None:
        logger.info("Password reset email to=%s subject=%r", mask_email(to), RESET_SUBJECT)
        logger.debug(
            "Reset link (expires in %d minutes): %s",
            self.reset_expire_minutes,
            reset_url,
        )

    def send_password_reset_confirmation(self, to: str) -> None:
        logger.info("Password reset confirmation to=%s subject=%r", mask_email(to), CONFIRMATION_SUBJECT)
