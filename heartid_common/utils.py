"""
utils.py - Common Utility Functions
"""

import os
import json
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def format_timestamp(ts: float) -> str:
    """ISO-8601 UTC rendering used in user-facing lockout messages."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_remaining(seconds: float) -> str:
    """Compact 'Xh Ym Zs' rendering of a remaining wait time."""
    total = max(0, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, default=str)


def mask_sensitive(data: dict, keys=("samples", "feature_vector", "ciphertext", "grant")) -> dict:
    """
    Return a copy of *data* with sensitive fields replaced by a placeholder.
    Useful for safe logging.
    """
    masked = {}
    for k, v in data.items():
        if k in keys:
            size = len(v) if isinstance(v, (list, dict, str)) else len(str(v))
            masked[k] = f"<{k}: {size} items>"
        elif isinstance(v, dict):
            masked[k] = mask_sensitive(v, keys)
        else:
            masked[k] = v
    return masked


def ensure_dir(path: str):
    os.makedirs(path, exist_ok=True)
