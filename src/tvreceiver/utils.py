"""Miscellaneous small utilities shared across modules."""
from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse


def env_bool(name: str, default: bool) -> bool:
    """Parse an environment variable as a boolean.

    Values like ``1``, ``true``, ``yes`` and ``on`` are treated as ``True`` while
    ``0``/``false``/``no``/``off`` map to ``False``.  If the variable is not set
    the ``default`` value is returned.
    """

    val = os.getenv(name)
    if val is None:
        return default
    try:
        return bool(int(val))
    except ValueError:
        return val.strip().lower() in {"true", "t", "yes", "y", "on"}


def redact_url(url: str) -> str:
    """Return ``url`` with any ``token`` query parameter masked."""
    try:
        parsed = urlparse(url)
        qs = parse_qs(parsed.query)
        if "token" in qs:
            qs["token"] = ["***"]
        safe_q = urlencode(qs, doseq=True)
        return urlunparse((parsed.scheme, parsed.netloc, parsed.path, parsed.params, safe_q, parsed.fragment))
    except ValueError:
        return url


def safe_mkdir(path: str | Path) -> Path:
    """Create a directory if it does not exist and return its path."""
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


__all__ = ["env_bool", "redact_url", "safe_mkdir"]
