"""
Structured logging helpers for dictionary processing jobs.
"""

from __future__ import annotations

import json
import logging
from typing import Any


def log_job_event(
    logger: logging.Logger,
    level: int,
    event: str,
    *,
    dictionary_id: Any,
    **fields: Any,
) -> None:
    """
    Emit one job lifecycle line as compact JSON keyed by dictionary id.
    """

    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, "dictionary_id": str(dictionary_id), **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))
