"""
Utility functions for the chat API.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """
    Current server time as ISO-8601 UTC with millisecond precision.

    Returns:
        Timestamp string such as 2025-01-15T10:00:00.000Z
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def next_message_id(existing_ids: Iterable[str], now_ms: Optional[int] = None) -> str:
    """
    Generate a time-derived message id.

    The id is the epoch time in milliseconds. If the clock has not moved
    past the newest numeric id (two creates within one millisecond, or a
    clock step backwards) the id is bumped so that ids stay unique and
    increase with creation order.

    Args:
        existing_ids: Ids already present in the message list
        now_ms: Override for the current time in milliseconds

    Returns:
        New id as a decimal string
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    newest = max((int(i) for i in existing_ids if i.isdecimal()), default=-1)
    if now_ms <= newest:
        logger.debug(f"Clock at {now_ms} not past newest id {newest}, bumping")
        now_ms = newest + 1
    return str(now_ms)
