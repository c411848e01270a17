# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Optional

from mover.errors import ChannelBusy

logger = logging.getLogger("relocord.locks")


class ChannelLock:
    """Exclusive hold on one channel id. Release is idempotent."""

    def __init__(self, registry: "ChannelLockRegistry", channel_id: int):
        self._registry = registry
        self.channel_id = channel_id
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._registry._release(self.channel_id)

    def __enter__(self) -> "ChannelLock":
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"<ChannelLock channel={self.channel_id} {state}>"


class ChannelLockRegistry:
    """
    Set of channel ids currently used by a relocation.

    The set is guarded by a thread lock so holders on other threads (or a
    holder that raised mid-operation) can never leave it half updated.
    """

    def __init__(self, poll_interval: float = 0.1):
        self._guard = threading.Lock()
        self._locked: set[int] = set()
        self.poll_interval = poll_interval

    def try_lock(self, channel_id: int) -> Optional[ChannelLock]:
        cid = int(channel_id)
        with self._guard:
            if cid in self._locked:
                return None
            self._locked.add(cid)
        logger.debug("[🔒] Locked channel %s", cid)
        return ChannelLock(self, cid)

    async def wait_for_lock(
        self, channel_id: int, timeout: float = 120.0
    ) -> ChannelLock:
        start = time.monotonic()
        while True:
            lock = self.try_lock(channel_id)
            if lock is not None:
                return lock
            if time.monotonic() - start >= timeout:
                logger.warning(
                    "[⏳] Gave up waiting %.0fs for channel %s", timeout, channel_id
                )
                raise ChannelBusy(
                    int(channel_id),
                    "channel has been locked for over two minutes, giving up"
                    if timeout >= 120
                    else f"channel has been locked for over {timeout:g} seconds, giving up",
                )
            await asyncio.sleep(self.poll_interval)

    def is_locked(self, channel_id: int) -> bool:
        with self._guard:
            return int(channel_id) in self._locked

    def _release(self, channel_id: int) -> None:
        with self._guard:
            self._locked.discard(channel_id)
        logger.debug("[🔓] Released channel %s", channel_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locked)
