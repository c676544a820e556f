# src/epickup_backend/app/core/trace.py
from __future__ import annotations
import logging
import os
from typing import Any

from .logging import mask_phone, setup_logging

setup_logging()

_log = logging.getLogger("epickup.auth")

_ON = ("1", "true", "yes", "on")


def trace_enabled() -> bool:
    return os.getenv("AUTH_TRACE", "").strip().lower() in _ON


def _field(key: str, value: Any) -> str:
    if "phone" in key.lower():
        value = mask_phone(value)
    return f"{key}={value}"


def auth_trace(event: str, **fields: Any) -> None:
    """
    One line per auth decision, only when AUTH_TRACE is on:

      [auth] exchange.issued uid=Ub41f... role=driver firebase_uid=fb-1

    Fields that are None are left out. Any field whose name mentions a
    phone is masked, so callers pass the raw number.
    """
    if not trace_enabled():
        return
    parts = [_field(k, v) for k, v in fields.items() if v is not None]
    _log.info("[auth] %s", " ".join([event, *parts]))
