# src/epickup_backend/app/core/logging.py
from __future__ import annotations
import logging
import os
import re

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Firebase SDK and its transports log every token fetch at INFO.
QUIET_LOGGERS = ("google", "urllib3", "firebase_admin", "cachecontrol")

_E164_IN_TEXT = re.compile(r"\+\d{10,15}")


def mask_phone(phone: str | None, keep: int = 4) -> str:
    """'+919876543210' -> '********3210'. Used for every log line carrying a phone."""
    if not phone:
        return "<none>"
    return "*" * max(0, len(phone) - keep) + phone[-keep:]


class PhoneRedactingFilter(logging.Filter):
    """
    Masks E.164 numbers in the rendered message, for log lines from code
    that did not run its phone through mask_phone first.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        redacted = _E164_IN_TEXT.sub(lambda m: mask_phone(m.group(0)), msg)
        if redacted != msg:
            record.msg, record.args = redacted, None
        return True


def _level_from_env(var: str, default: str = "INFO") -> int:
    name = (os.getenv(var) or default).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.getLevelName(default)


def setup_logging() -> None:
    """
    Configure the root logger once; later calls only re-apply LOG_LEVEL.
    The installed handler redacts phone numbers.
    """
    root = logging.getLogger()
    level = _level_from_env("LOG_LEVEL")
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if any(isinstance(f, PhoneRedactingFilter) for h in root.handlers for f in h.filters):
        return
    if root.handlers:
        # pytest / uvicorn own the handlers; redact on theirs
        for h in root.handlers:
            h.addFilter(PhoneRedactingFilter())
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(PhoneRedactingFilter())
    root.addHandler(handler)
