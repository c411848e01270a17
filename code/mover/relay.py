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
import time
from typing import Iterable, Sequence

from common.constants import EMPTY_CONTENT_PLACEHOLDER
from mover.errors import PlatformError, RelayFailure, UnconfirmedRelay
from mover.models import (
    RelayedMessage,
    ResolvedDestination,
    SourceMessage,
    UploadFile,
    WebhookHandle,
)
from mover.platform import MovePlatform
from mover.saga import Saga

logger = logging.getLogger("relocord.relay")

CONTENT_MAX = 2000
EMBEDS_PER_MESSAGE = 10


def split_content(content: str, limit: int = CONTENT_MAX) -> list[str]:
    """Split text into webhook-sized chunks, preferring line breaks."""
    if not content:
        return [EMPTY_CONTENT_PLACEHOLDER]
    if len(content) <= limit:
        return [content]
    chunks: list[str] = []
    start = 0
    while start < len(content):
        end = min(start + limit, len(content))
        if end < len(content):
            nl = content.rfind("\n", start, end)
            if nl > start + 100:
                end = nl
        chunks.append(content[start:end])
        start = end
    return chunks


class RelayEngine:
    """
    Re-posts selected messages through a webhook that impersonates each author.

    The first hard failure stops the loop and rolls back whatever was already
    done, then raises ``RelayFailure`` carrying the original cause.
    """

    def __init__(self, platform: MovePlatform):
        self.platform = platform

    async def relay(
        self,
        destination: ResolvedDestination,
        webhook: WebhookHandle,
        messages: Sequence[SourceMessage],
    ) -> list[RelayedMessage]:
        relayed: list[RelayedMessage] = []
        rollback_errors: list[BaseException] = []
        saga = Saga()

        if destination.newly_created:
            saga.record(
                "discard new destination",
                lambda: self._discard_destination(destination, relayed, rollback_errors),
            )
        else:
            saga.record(
                "delete relayed messages",
                lambda: self._delete_relayed(destination, relayed, rollback_errors),
            )
        saga.record("delete webhook", lambda: self.platform.delete_webhook(webhook))

        t0 = time.perf_counter()
        for index, message in enumerate(messages):
            try:
                await self._relay_one(destination, webhook, message, relayed)
            except PlatformError as e:
                logger.warning(
                    "[⛔] Failed to relay message %s (%d/%d): %s",
                    message.id,
                    index + 1,
                    len(messages),
                    e,
                    extra={"destination_id": destination.id},
                )
                rollback_errors.extend(await saga.unwind())
                raise RelayFailure(
                    e,
                    failed_index=index,
                    relayed_count=len(relayed),
                    rollback_errors=rollback_errors,
                ) from e

        saga.clear()
        logger.info(
            "[📤] Relayed %d message(s) as %d webhook message(s)",
            len(messages),
            len(relayed),
            extra={
                "destination_id": destination.id,
                "relayed": len(relayed),
                "took_ms": int((time.perf_counter() - t0) * 1000),
            },
        )
        return relayed

    async def _relay_one(
        self,
        destination: ResolvedDestination,
        webhook: WebhookHandle,
        message: SourceMessage,
        relayed: list[RelayedMessage],
    ) -> None:
        """Chunks are appended to ``relayed`` as soon as each send is confirmed."""
        files = await self._collect_files(message)
        chunks = split_content(message.content)
        for i, chunk in enumerate(chunks):
            last = i == len(chunks) - 1
            message_id = await self.platform.execute_webhook(
                webhook,
                username=message.author_name,
                avatar_url=message.author_avatar_url,
                content=chunk,
                embeds=list(message.embeds[:EMBEDS_PER_MESSAGE]) if last else [],
                files=files if last else [],
                thread_id=destination.thread_id,
            )
            if message_id is None:
                logger.error(
                    "[⛔] Webhook accepted message %s without returning it", message.id
                )
                raise UnconfirmedRelay()
            relayed.append(
                RelayedMessage(
                    id=message_id,
                    channel_id=destination.channel_id,
                    thread_id=destination.thread_id,
                    author_id=message.author_id,
                    content=chunk,
                    source_id=message.id,
                )
            )

    async def _collect_files(self, message: SourceMessage) -> list[UploadFile]:
        files: list[UploadFile] = []
        for attachment in message.attachments:
            try:
                files.append(await self.platform.fetch_attachment(attachment))
            except PlatformError as e:
                logger.warning(
                    "[⚠️] Failed to re-upload attachment %s of message %s: %s",
                    attachment.filename,
                    message.id,
                    e,
                )
        return files

    async def _discard_destination(
        self,
        destination: ResolvedDestination,
        relayed: list[RelayedMessage],
        errors: list[BaseException],
    ) -> None:
        try:
            await self.platform.delete_channel(destination.id)
            logger.info("[🗑️] Deleted destination %s after failed move", destination.id)
            return
        except PlatformError as e:
            logger.warning(
                "[⚠️] Failed to delete destination %s, deleting messages: %s",
                destination.id,
                e,
            )
            errors.append(e)
        await self._delete_relayed(destination, relayed, errors)

    async def _delete_relayed(
        self,
        destination: ResolvedDestination,
        relayed: Iterable[RelayedMessage],
        errors: list[BaseException],
    ) -> None:
        for msg in list(relayed):
            try:
                await self.platform.delete_message(destination.id, msg.id)
            except PlatformError as e:
                logger.warning("[⚠️] Failed to delete relayed message %s: %s", msg.id, e)
                errors.append(e)

    async def post_notice(
        self,
        destination: ResolvedDestination,
        *,
        initiator_id: int,
        source_channel_id: int,
        participants: Iterable[int],
    ) -> None:
        text = (
            f"<@{initiator_id}> moved the conversation from <#{source_channel_id}> "
            f"to here.\nParticipants: {''.join(f'<@{u}>' for u in participants)}"
        )
        try:
            await self.platform.send_message(destination.id, text)
        except PlatformError as e:
            logger.warning(
                "[⚠️] Failed to send notice to move destination: %s",
                e,
                extra={"destination_id": destination.id},
            )
