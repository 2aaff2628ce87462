"""
core/logging.py -- Logging setup and security-event helpers.

All SessionGuard loggers live under the "sessionguard" namespace so a single
handler configuration covers every module.

Security events are logged through log_security_event() so incident responders
can grep for a stable event name (TOKEN_REUSE_DETECTED, LOGIN, ...) followed by
key=value context. The same fields are attached as LogRecord extras for
structured handlers (JSON formatters, log shippers).

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging

_LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
    )


def log_security_event(
    logger: logging.Logger,
    level: int,
    event: str,
    message: str,
    **fields: object,
) -> None:
    """Emit a security-relevant state transition.

    The rendered line reads "<message> event=<EVENT> user_id=... family_id=...".
    Never pass raw tokens, password hashes, or full email addresses as fields.
    """
    context = " ".join(f"{key}={value}" for key, value in fields.items())
    rendered = f"{message} event={event}"
    if context:
        rendered = f"{rendered} {context}"
    logger.log(level, rendered, extra={"event": event, **fields})


def mask_email(email: str) -> str:
    """Mask an email address for logging ("john@example.com" -> "j***@example.com")."""
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain:
        return "***@***"
    return f"{local[0]}***@{domain}"
