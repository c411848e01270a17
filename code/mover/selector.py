# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional, Sequence

from mover.models import SelectionFilters, SourceMessage, snowflake_time
from mover.platform import MovePlatform

logger = logging.getLogger("relocord.selector")


def within_time_span(msg: SourceMessage, start: SourceMessage, max_span: float) -> bool:
    # Messages stamped before the start (clock skew) count as zero span.
    delta = msg.timestamp - start.timestamp
    if delta < timedelta(0):
        delta = timedelta(0)
    return delta.total_seconds() < max_span


def select_messages(
    messages: Sequence[SourceMessage],
    start: SourceMessage,
    filters: SelectionFilters,
) -> list[SourceMessage]:
    """
    Pick the messages to relocate out of a chronological window.

    Order of application: author filter, time window, count limit, then an
    inclusive cut at the stop message. When the stop id is not in the window
    (the message was deleted) the cut falls on the first message created at
    or after the stop id's timestamp.
    """
    stop_id: Optional[int] = None
    stop_time = None
    if filters.stop_message_id is not None:
        # Presence is checked before the author filter. A stop message by an
        # unselected author is present but never kept, so no cut happens.
        if any(m.id == filters.stop_message_id for m in messages):
            stop_id = filters.stop_message_id
        else:
            stop_time = snowflake_time(filters.stop_message_id)

    out: list[SourceMessage] = []
    for m in messages:
        if m.author_id not in filters.user_ids:
            continue
        if not within_time_span(m, start, filters.max_time_span):
            continue
        if len(out) >= filters.limit:
            break
        out.append(m)
        if stop_id is not None and m.id == stop_id:
            break
        if stop_time is not None and snowflake_time(m.id) >= stop_time:
            break
    return out


class MessageSelector:
    def __init__(self, platform: MovePlatform, *, limit: int = 100, max_time_span: float = 7200.0):
        self.platform = platform
        self.limit = limit
        self.max_time_span = max_time_span

    async def fetch_window(self, start: SourceMessage) -> list[SourceMessage]:
        """The start message plus up to ``limit`` messages after it, oldest first."""
        newer = await self.platform.fetch_messages(
            start.channel_id, after=start.id, limit=self.limit
        )
        window = [start]
        window.extend(sorted((m for m in newer if m.id != start.id), key=lambda m: m.id))
        logger.debug(
            "[📥] Fetched %d message(s) after %s",
            len(window) - 1,
            start.id,
            extra={"channel_id": start.channel_id},
        )
        return window

    def needs_refetch(self, window: Sequence[SourceMessage], start: SourceMessage) -> bool:
        # More messages may have arrived while the dialog was open, unless the
        # window already reaches past the time span.
        if not window:
            return True
        return within_time_span(window[-1], start, self.max_time_span)

    async def select(
        self,
        start: SourceMessage,
        filters: SelectionFilters,
        window: Optional[Sequence[SourceMessage]] = None,
    ) -> list[SourceMessage]:
        if window is None or self.needs_refetch(window, start):
            window = await self.fetch_window(start)
        selected = select_messages(window, start, filters)
        logger.info(
            "[📦] Selected %d of %d message(s) for relocation",
            len(selected),
            len(window),
            extra={"channel_id": start.channel_id},
        )
        return selected
