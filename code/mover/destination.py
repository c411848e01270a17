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

from common.constants import NEW_POST_INITIAL_CONTENT
from mover.errors import (
    DestinationResolutionError,
    MoveValidationError,
    PlatformError,
)
from mover.models import MoveDestinationKind, MoveOptions, ResolvedDestination
from mover.platform import MovePlatform

logger = logging.getLogger("relocord.destination")


class DestinationResolver:
    """Turns dialog output into a concrete place to relay into."""

    def __init__(self, platform: MovePlatform):
        self.platform = platform

    async def resolve(
        self,
        options: MoveOptions,
        source_channel_id: int,
        invoker_id: int,
    ) -> ResolvedDestination:
        kind = options.kind
        target = options.target_id
        if target is not None and int(target) == int(source_channel_id):
            raise MoveValidationError("source and destination cannot be the same")

        # Check before creating anything, so a rejection leaves nothing behind.
        await self._ensure_can_post(invoker_id, target or options.channel_id)

        if kind is MoveDestinationKind.CHANNEL:
            return ResolvedDestination(channel_id=options.channel_id)

        if kind is MoveDestinationKind.EXISTING_THREAD:
            parent = options.channel_id
            if parent is None:
                try:
                    parent = await self.platform.fetch_thread_parent(options.thread_id)
                except PlatformError as e:
                    raise DestinationResolutionError(
                        f"failed to get thread channel: {e}", e
                    ) from e
            if parent is None:
                raise MoveValidationError("thread channel has no parent")
            return ResolvedDestination(
                channel_id=parent, thread_id=options.thread_id, newly_created=False
            )

        if kind is MoveDestinationKind.NEW_THREAD:
            try:
                thread_id = await self.platform.create_thread(
                    options.channel_id, options.name
                )
            except PlatformError as e:
                raise DestinationResolutionError(f"failed to create thread: {e}", e) from e
            logger.info(
                "[🧵] Created thread %s (%r) for move",
                thread_id,
                options.name,
                extra={"channel_id": options.channel_id},
            )
            return ResolvedDestination(
                channel_id=options.channel_id, thread_id=thread_id, newly_created=True
            )

        try:
            post_id = await self.platform.create_forum_post(
                options.channel_id, options.name, NEW_POST_INITIAL_CONTENT
            )
        except PlatformError as e:
            raise DestinationResolutionError(
                f"failed to create forum post: {e}", e
            ) from e
        logger.info(
            "[🧵] Created forum post %s (%r) for move",
            post_id,
            options.name,
            extra={"channel_id": options.channel_id},
        )
        return ResolvedDestination(
            channel_id=options.channel_id, thread_id=post_id, newly_created=True
        )

    async def _ensure_can_post(self, user_id: int, channel_id) -> None:
        if channel_id is None:
            return
        try:
            allowed = await self.platform.can_post(user_id, channel_id)
        except PlatformError as e:
            raise DestinationResolutionError(
                f"failed to check permissions for <#{channel_id}>: {e}", e
            ) from e
        if not allowed:
            raise MoveValidationError(
                f"You don't have permission to post in <#{channel_id}>."
            )
