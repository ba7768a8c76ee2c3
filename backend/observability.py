"""
Logging setup and structured log lines.
"""
from __future__ import annotations

import logging
import sys
from collections.abc import Mapping

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | int = logging.INFO) -> None:
    """Configure root logging to stdout. Safe to call more than once."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])


def _kv_pairs(fields: Mapping[str, object]) -> str:
    parts: list[str] = []
    for key, value in fields.items():
        if value is None:
            continue
        text = str(value).strip()
        if not text:
            continue
        parts.append(f"{key}={text}")
    return " ".join(parts)


def log_event(logger: logging.Logger, message: str, level: int = logging.INFO, **fields: object) -> None:
    """Emit `message k=v ...`; None and empty values are dropped."""
    suffix = _kv_pairs(fields)
    if suffix:
        logger.log(level, "%s %s", message, suffix)
    else:
        logger.log(level, "%s", message)


def mask_email(email: str) -> str:
    """jo***@example.com: keeps the domain, hides most of the local part."""
    trimmed = email.strip().lower()
    at = trimmed.find("@")
    if at <= 0 or at == len(trimmed) - 1:
        return "<invalid-email>"
    local, domain = trimmed[:at], trimmed[at + 1:]
    prefix = local[:1] if len(local) <= 2 else local[:2]
    return f"{prefix}***@{domain}"
