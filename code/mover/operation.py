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
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Optional

from common.config import MoveSettings
from common.constants import WEBHOOK_NAME_TEMPLATE
from common.logging_setup import move_id_var, scope_var
from mover.corrections import CorrectionListener
from mover.destination import DestinationResolver
from mover.dialog import MoveOptionsDialog, participants_by_message_count
from mover.errors import (
    ChannelBusy,
    MoveCancelled,
    MoveError,
    MoveValidationError,
    PlatformError,
)
from mover.locks import ChannelLockRegistry
from mover.models import (
    MoveOptions,
    MoveRequest,
    ResolvedDestination,
    SelectionFilters,
)
from mover.platform import MovePlatform
from mover.relay import RelayEngine
from mover.selector import MessageSelector

logger = logging.getLogger("relocord.operation")

DialogRunner = Callable[[MoveOptionsDialog], Awaitable[Optional[MoveOptions]]]
Spawner = Callable[[Coroutine[Any, Any, Any]], asyncio.Task]


class MoveOperation:
    """
    One "Move Messages" invocation, from source lock to listener hand-off.

    ``run`` returns the text of the single success reply, or raises a
    ``MoveError`` whose text is the single failure reply.
    """

    def __init__(
        self,
        platform: MovePlatform,
        locks: ChannelLockRegistry,
        settings: MoveSettings,
        request: MoveRequest,
        run_dialog: DialogRunner,
        spawn: Optional[Spawner] = None,
    ):
        self.platform = platform
        self.locks = locks
        self.settings = settings
        self.request = request
        self.run_dialog = run_dialog
        self.spawn = spawn if spawn is not None else asyncio.create_task
        self.selector = MessageSelector(
            platform,
            limit=settings.message_limit,
            max_time_span=settings.max_time_span,
        )
        self.resolver = DestinationResolver(platform)
        self.relay = RelayEngine(platform)
        self.dialog: Optional[MoveOptionsDialog] = None
        self.destination: Optional[ResolvedDestination] = None
        self.listener_task: Optional[asyncio.Task] = None

    async def run(self) -> str:
        mid_token = move_id_var.set(str(self.request.start_message.id))
        scope_token = scope_var.set("move")
        try:
            source = self.request.source_channel_id
            source_lock = self.locks.try_lock(source)
            if source_lock is None:
                logger.info(
                    "[🔒] Source channel already in use", extra={"channel_id": source}
                )
                raise ChannelBusy(source)
            with source_lock:
                return await self._run_locked()
        finally:
            scope_var.reset(scope_token)
            move_id_var.reset(mid_token)

    async def _run_locked(self) -> str:
        req = self.request
        start = req.start_message

        window = await self.selector.fetch_window(start)
        if not window:
            return "No messages found"

        self.dialog = await self._build_dialog(window)
        options = await self.run_dialog(self.dialog)
        if options is None:
            logger.info("[🚫] Move dialog abandoned", extra={"user_id": req.invoker_id})
            raise MoveCancelled()

        destination = await self.resolver.resolve(
            options, req.source_channel_id, req.invoker_id
        )
        self.destination = destination

        try:
            dest_lock = await self.locks.wait_for_lock(
                destination.id, timeout=self.settings.lock_timeout
            )
        except ChannelBusy:
            await self._discard_unused(destination)
            raise

        with dest_lock:
            filters = SelectionFilters(
                user_ids=frozenset(self.dialog.selected_users),
                stop_message_id=self.dialog.stop_message_id,
                limit=self.settings.message_limit,
                max_time_span=self.settings.max_time_span,
            )
            selected = await self.selector.select(start, filters, window)
            if not selected:
                await self._discard_unused(destination)
                raise MoveValidationError(
                    "None of the selected users have messages to move."
                )

            try:
                webhook = await self.platform.create_webhook(
                    destination.channel_id,
                    WEBHOOK_NAME_TEMPLATE.format(message_id=start.id),
                )
            except PlatformError as e:
                await self._discard_unused(destination)
                raise MoveError(f"failed to create webhook: {e}") from e

            relayed = await self.relay.relay(destination, webhook, selected)
            await self.relay.post_notice(
                destination,
                initiator_id=req.invoker_id,
                source_channel_id=req.source_channel_id,
                participants=self.dialog.selected_users,
            )

        delete_error: Optional[PlatformError] = None
        try:
            await self.platform.delete_messages(
                req.source_channel_id, [m.id for m in selected]
            )
        except PlatformError as e:
            logger.warning(
                "[⚠️] Failed to delete original messages: %s",
                e,
                extra={"channel_id": req.source_channel_id},
            )
            delete_error = e

        listener = CorrectionListener(
            self.platform,
            destination_id=destination.id,
            guild_id=req.guild_id,
            webhook=webhook,
            relayed=relayed,
            timeout=self.settings.correction_window,
            edit_timeout=self.settings.edit_prompt_timeout,
        )
        self.listener_task = self.spawn(listener.listen())

        logger.info(
            "[✨] Moved %d message(s) to %s",
            len(selected),
            destination.id,
            extra={
                "channel_id": req.source_channel_id,
                "relayed": len(relayed),
                "took_ms": self.elapsed_ms(),
            },
        )
        if delete_error is not None:
            raise MoveError(
                f"Moved the conversation to <#{destination.id}>, but failed to "
                f"delete the original messages: {delete_error}"
            )
        return (
            f"<@{req.invoker_id}> moved a conversation from here to "
            f"<#{destination.id}>."
        )

    def elapsed_ms(self) -> int:
        """Milliseconds since the context menu fired."""
        delta = datetime.now(timezone.utc) - self.request.started_at
        return int(delta.total_seconds() * 1000)

    async def _build_dialog(self, window) -> MoveOptionsDialog:
        req = self.request
        default_forum = None
        if req.guild_id is not None:
            try:
                forums = await self.platform.list_forum_channels(req.guild_id)
            except PlatformError as e:
                logger.debug("Listing forum channels failed: %s", e)
                forums = []
            # Pre-select only when the choice is unambiguous.
            if len(forums) == 1:
                default_forum = forums[0]

        return MoveOptionsDialog(
            source_channel_id=req.source_channel_id,
            participants=participants_by_message_count(m.author_id for m in window),
            default_forum=default_forum,
            default_title=self.settings.default_title,
        )

    async def _discard_unused(self, destination: ResolvedDestination) -> None:
        if not destination.newly_created:
            return
        try:
            await self.platform.delete_channel(destination.id)
            logger.info("[🗑️] Deleted unused destination %s", destination.id)
        except PlatformError as e:
            logger.warning(
                "[⚠️] Failed to delete unused destination %s: %s", destination.id, e
            )
