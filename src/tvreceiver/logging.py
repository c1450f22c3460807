"""Logging configuration for the receiver.

:func:`setup_logging` installs a text or JSON formatter on the root logger,
masks signaling tokens that would otherwise leak into log lines, and quiets
the chatty media and socket libraries.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Optional

_TOKEN_RE = re.compile(r"(token=)[^&\s]+")

_NOISY_LOGGERS = {
    "websockets": logging.WARNING,
    "aiortc": logging.WARNING,
    "aioice": logging.WARNING,
    "asyncio": logging.ERROR,
}


class _TokenFilter(logging.Filter):
    """Replace ``token=...`` query values in rendered messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if "token=" in msg:
            record.msg = _TOKEN_RE.sub(r"\1***", msg)
            record.args = None
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; carries the session generation when logged with one."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        generation = getattr(record, "generation", None)
        if generation is not None:
            data["generation"] = generation
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Optional[str] = None,
    name: Optional[str] = None,
) -> logging.Logger:
    """Configure the root logger and return ``name`` (or the root).

    Parameters
    ----------
    level:
        Logging level name such as ``"INFO"``; unknown names fall back to INFO.
    fmt:
        ``"text"`` or ``"json"``.
    log_file:
        Optional extra file destination next to stderr.
    name:
        Logger to return.
    """

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    formatter: logging.Formatter
    if fmt.lower() == "json":
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(name)s %(levelname)s - %(message)s", "%H:%M:%S"
        )

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    token_filter = _TokenFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(token_filter)
        root.addHandler(handler)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for logger_name, logger_level in _NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(logger_level)

    return logging.getLogger(name) if name else root


__all__ = ["setup_logging"]
