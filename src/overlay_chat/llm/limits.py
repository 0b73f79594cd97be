"""Size ceilings for content arriving from the network."""

from __future__ import annotations

import logging

from overlay_chat.errors import ResponseTooLarge

_logger = logging.getLogger(__name__)


def try_append(current: int, addition: int, limit: int, what: str) -> int:
    """Return ``current + addition`` or raise if that would exceed *limit*.

    Called before the data is concatenated anywhere, so one oversized chunk
    is rejected without ever being held.
    """
    attempted = current + addition
    if attempted > limit:
        _logger.error("%s overflow: %d > %d", what, attempted, limit)
        raise ResponseTooLarge(what, limit, attempted)
    return attempted
