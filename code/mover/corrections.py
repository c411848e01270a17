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
from dataclasses import replace
from typing import Optional, Sequence

from common.constants import DELETE_EMOJIS, DM_MAX_CHARS, EDIT_EMOJIS
from mover.errors import PlatformError
from mover.models import ReactionEvent, RelayedMessage, WebhookHandle
from mover.platform import MovePlatform
from mover.relay import CONTENT_MAX

logger = logging.getLogger("relocord.corrections")


def build_edit_prompt(content: str) -> str:
    lines = ["**Original message:**"]
    lines.extend(f"> {line}" for line in (content or "").splitlines())
    lines.append("**\nPlease respond with your edit within the next five minutes:**")
    return "\n".join(lines)[:DM_MAX_CHARS]


class CorrectionListener:
    """
    Lets original authors fix their relayed messages for a while after a move.

    Reacting with ❌ deletes the relayed copy; 📝 or ✏ starts a DM prompt whose
    reply replaces the content. The listener is the last owner of the
    webhook and deletes it when the window closes.
    """

    def __init__(
        self,
        platform: MovePlatform,
        *,
        destination_id: int,
        guild_id: Optional[int],
        webhook: WebhookHandle,
        relayed: Sequence[RelayedMessage],
        timeout: float = 4 * 60 * 60,
        edit_timeout: float = 5 * 60,
    ):
        self.platform = platform
        self.destination_id = destination_id
        self.guild_id = guild_id
        self.webhook = webhook
        self.timeout = timeout
        self.edit_timeout = edit_timeout
        self.relayed: dict[int, RelayedMessage] = {m.id: m for m in relayed}
        self.authors: dict[int, int] = {m.id: m.author_id for m in relayed}
        # Chunks of one long source message, in posting order.
        self.groups: dict[int, list[int]] = {}
        self._group_of: dict[int, int] = {}
        for m in relayed:
            key = m.source_id if m.source_id is not None else m.id
            self.groups.setdefault(key, []).append(m.id)
            self._group_of[m.id] = key
        self._allowed_users = frozenset(self.authors.values())
        self._edits: set[asyncio.Task] = set()

    def chunks_of(self, message_id: int) -> list[RelayedMessage]:
        """Every tracked chunk relayed from the same source message."""
        key = self._group_of.get(message_id)
        if key is None:
            return []
        return [self.relayed[i] for i in self.groups.get(key, []) if i in self.relayed]

    def _forget(self, message_ids) -> None:
        for mid in message_ids:
            self.relayed.pop(mid, None)
            self.authors.pop(mid, None)
            key = self._group_of.pop(mid, None)
            group = self.groups.get(key)
            if group is None:
                continue
            if mid in group:
                group.remove(mid)
            if not group:
                del self.groups[key]

    def accepts(self, reaction: ReactionEvent) -> bool:
        # Cheap allow-list checks first, then the exact author match.
        if reaction.message_id not in self.authors:
            return False
        if reaction.user_id is None or reaction.user_id not in self._allowed_users:
            return False
        return self.authors.get(reaction.message_id) == reaction.user_id

    async def listen(self) -> None:
        logger.info(
            "[👂] Listening for corrections on %d relayed message(s) for %.0fs",
            len(self.relayed),
            self.timeout,
            extra={"destination_id": self.destination_id},
        )
        try:
            async for reaction in self.platform.reactions(
                self.destination_id, self.guild_id, self.timeout
            ):
                if not self.accepts(reaction):
                    continue
                await self.handle(reaction)
                if not self.relayed:
                    break
            if self._edits:
                await asyncio.gather(*self._edits, return_exceptions=True)
        finally:
            for t in list(self._edits):
                t.cancel()
            await self._delete_webhook()

    async def handle(self, reaction: ReactionEvent) -> None:
        message = self.relayed.get(reaction.message_id)
        if message is None:
            return

        if reaction.emoji in DELETE_EMOJIS:
            chunks = self.chunks_of(message.id)
            for chunk in chunks:
                try:
                    await self.platform.delete_message(self.destination_id, chunk.id)
                except PlatformError as e:
                    logger.warning("[⚠️] Failed to delete relayed message: %s", e)
            logger.info(
                "[🗑️] Author removed relayed message %s (%d part(s))",
                message.id,
                len(chunks),
                extra={"user_id": reaction.user_id},
            )
            self._forget([c.id for c in chunks])
        elif reaction.emoji in EDIT_EMOJIS:
            t = asyncio.create_task(
                self.prompt_for_edit(reaction.user_id, message),
                name=f"move-edit-{message.id}",
            )
            self._edits.add(t)
            t.add_done_callback(self._edits.discard)
            try:
                await self.platform.remove_reaction(reaction)
            except PlatformError as e:
                logger.warning("[⚠️] Failed to remove edit reaction: %s", e)

    async def prompt_for_edit(self, user_id: int, message: RelayedMessage) -> bool:
        """
        DM the author the full original text and apply their reply.

        A message that was split on relay is edited through its last part,
        which carries any embeds and files; the earlier parts are removed.
        """
        chunks = self.chunks_of(message.id) or [message]
        target = chunks[-1]
        try:
            dm = await self.platform.open_dm(user_id)
            prompt_id = await self.platform.send_message(
                dm, build_edit_prompt("".join(c.content for c in chunks))
            )
        except PlatformError as e:
            logger.warning("[⚠️] Failed to DM user %s: %s", user_id, e)
            return False

        reply = await self.platform.wait_for_dm_reply(dm, user_id, self.edit_timeout)
        if reply is None:
            await self._quiet_delete(dm, prompt_id, "failed to delete edit prompt")
            return False

        if len(reply.content) > CONTENT_MAX:
            await self._notify(
                dm, reply.id, f"Edits can be at most {CONTENT_MAX} characters long."
            )
            return False

        try:
            await self.platform.edit_webhook_message(
                self.webhook, target.id, reply.content, thread_id=target.thread_id
            )
        except PlatformError as e:
            logger.warning("[⚠️] Failed to edit relayed message %s: %s", target.id, e)
            await self._notify(
                dm, reply.id, f"Failed to edit message, webhook has likely been deleted: {e}"
            )
            return False

        leading = chunks[:-1]
        for chunk in leading:
            await self._quiet_delete(
                self.destination_id, chunk.id, "failed to delete replaced message part"
            )
        self._forget([c.id for c in leading])
        if target.id in self.relayed:
            self.relayed[target.id] = replace(target, content=reply.content)
        logger.info("[✏️] Author edited relayed message %s", target.id)
        await self._quiet_delete(dm, prompt_id, "failed to delete edit prompt in DM")
        return True

    async def _notify(self, dm: int, reply_id: int, text: str) -> None:
        try:
            await self.platform.reply(dm, reply_id, text)
        except PlatformError as e:
            logger.warning("[⚠️] Failed to notify user of failure to edit: %s", e)

    async def _quiet_delete(self, channel_id: int, message_id: int, what: str) -> None:
        try:
            await self.platform.delete_message(channel_id, message_id)
        except PlatformError as e:
            logger.warning("[⚠️] %s: %s", what.capitalize(), e)

    async def _delete_webhook(self) -> None:
        try:
            await self.platform.delete_webhook(self.webhook)
            logger.info(
                "[🧹] Correction window closed; deleted move webhook %s",
                self.webhook.id,
            )
        except PlatformError as e:
            logger.warning(
                "[⚠️] Failed to delete webhook used for relaying messages: %s", e
            )
