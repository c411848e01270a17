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
import contextlib
import io
import logging
from typing import AsyncIterator, Dict, Optional, Sequence

import aiohttp
import discord

from common.constants import AUDIT_LOG_REASON
from common.rate_limiter import ActionType, RateLimitManager
from mover.errors import PlatformError
from mover.models import (
    AttachmentRef,
    DirectReply,
    ReactionEvent,
    SourceMessage,
    UploadFile,
    WebhookHandle,
)

logger = logging.getLogger("relocord.platform")

BULK_DELETE_MAX = 100


@contextlib.contextmanager
def _remote(what: str):
    try:
        yield
    except discord.HTTPException as e:
        raise PlatformError(f"{what}: {e}", status=getattr(e, "status", None)) from e
    except discord.DiscordException as e:
        raise PlatformError(f"{what}: {e}") from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise PlatformError(f"{what}: {e}") from e


def snapshot_message(msg: discord.Message) -> SourceMessage:
    author = msg.author
    avatar = getattr(author, "display_avatar", None)
    return SourceMessage(
        id=msg.id,
        channel_id=msg.channel.id,
        author_id=author.id,
        author_name=getattr(author, "display_name", None) or author.name,
        author_avatar_url=str(avatar.url) if avatar else None,
        content=msg.content or "",
        timestamp=msg.created_at,
        attachments=tuple(
            AttachmentRef(url=a.url, filename=a.filename, content_type=a.content_type)
            for a in msg.attachments
        ),
        # Link previews are regenerated by Discord; only rich embeds are relayed.
        embeds=tuple(e.to_dict() for e in msg.embeds if e.type == "rich"),
    )


class DiscordPlatform:
    """py-cord implementation of ``mover.platform.MovePlatform``."""

    def __init__(
        self,
        bot: discord.Bot,
        session: Optional[aiohttp.ClientSession] = None,
        ratelimit: Optional[RateLimitManager] = None,
    ):
        self.bot = bot
        self.session = session
        self.ratelimit = ratelimit or RateLimitManager()
        self._webhooks: Dict[int, discord.Webhook] = {}
        self._dms: Dict[int, discord.DMChannel] = {}

    async def _channel(self, channel_id: int):
        ch = self.bot.get_channel(channel_id) or self._dms.get(channel_id)
        if ch is not None:
            return ch
        with _remote(f"fetch channel {channel_id}"):
            return await self.bot.fetch_channel(channel_id)

    # --- messages ---

    async def fetch_messages(
        self, channel_id: int, *, after: int, limit: int
    ) -> list[SourceMessage]:
        ch = await self._channel(channel_id)
        out: list[SourceMessage] = []
        with _remote(f"fetch messages in {channel_id}"):
            async for msg in ch.history(limit=limit, after=discord.Object(id=after)):
                out.append(snapshot_message(msg))
        out.sort(key=lambda m: m.id, reverse=True)
        return out

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        await self.ratelimit.acquire(ActionType.DELETE_MESSAGE)
        with _remote(f"delete message {message_id}"):
            await self.bot.http.delete_message(
                channel_id, message_id, reason=AUDIT_LOG_REASON
            )

    async def delete_messages(self, channel_id: int, message_ids: Sequence[int]) -> None:
        ids = list(message_ids)
        for i in range(0, len(ids), BULK_DELETE_MAX):
            chunk = ids[i : i + BULK_DELETE_MAX]
            if len(chunk) == 1:
                await self.delete_message(channel_id, chunk[0])
                continue
            await self.ratelimit.acquire(ActionType.DELETE_MESSAGE)
            try:
                await self.bot.http.delete_messages(
                    channel_id, chunk, reason=AUDIT_LOG_REASON
                )
            except discord.HTTPException as e:
                # Bulk delete refuses messages older than two weeks.
                logger.debug(
                    "Bulk delete failed (%s); deleting %d message(s) one by one",
                    e,
                    len(chunk),
                )
                for mid in chunk:
                    await self.delete_message(channel_id, mid)

    async def send_message(self, channel_id: int, content: str) -> int:
        ch = await self._channel(channel_id)
        with _remote(f"send message in {channel_id}"):
            msg = await ch.send(content, allowed_mentions=discord.AllowedMentions.none())
        return msg.id

    async def reply(self, channel_id: int, message_id: int, content: str) -> int:
        ch = await self._channel(channel_id)
        with _remote(f"reply to {message_id}"):
            msg = await ch.get_partial_message(message_id).reply(
                content, mention_author=True
            )
        return msg.id

    # --- threads / posts ---

    async def create_thread(self, parent_id: int, name: str) -> int:
        ch = await self._channel(parent_id)
        await self.ratelimit.acquire(ActionType.THREAD)
        with _remote(f"create thread in {parent_id}"):
            thread = await ch.create_thread(
                name=name,
                type=discord.ChannelType.public_thread,
                reason=AUDIT_LOG_REASON,
            )
        return thread.id

    async def create_forum_post(
        self, forum_id: int, name: str, initial_content: str
    ) -> int:
        forum = await self._channel(forum_id)
        if not isinstance(forum, discord.ForumChannel):
            raise PlatformError(f"channel {forum_id} is not a forum")
        await self.ratelimit.acquire(ActionType.THREAD)
        with _remote(f"create forum post in {forum_id}"):
            post = await forum.create_thread(
                name=name, content=initial_content, reason=AUDIT_LOG_REASON
            )
        return post.id

    async def delete_channel(self, channel_id: int) -> None:
        await self.ratelimit.acquire(ActionType.THREAD)
        with _remote(f"delete channel {channel_id}"):
            await self.bot.http.delete_channel(channel_id, reason=AUDIT_LOG_REASON)

    async def fetch_thread_parent(self, thread_id: int) -> Optional[int]:
        ch = await self._channel(thread_id)
        if isinstance(ch, discord.abc.PrivateChannel):
            logger.error("[⛔] Command is guild-only yet returned a private channel")
            raise PlatformError("failed to get thread channel")
        return getattr(ch, "parent_id", None)

    # --- webhooks ---

    async def create_webhook(self, channel_id: int, name: str) -> WebhookHandle:
        ch = await self._channel(channel_id)
        await self.ratelimit.acquire(ActionType.WEBHOOK_CREATE)
        with _remote(f"create webhook in {channel_id}"):
            wh = await ch.create_webhook(name=name, reason=AUDIT_LOG_REASON)
        self._webhooks[wh.id] = wh
        logger.debug("Created move webhook %s in #%s", wh.id, channel_id)
        return WebhookHandle(id=wh.id, token=wh.token, channel_id=channel_id, url=wh.url)

    def _webhook(self, handle: WebhookHandle) -> discord.Webhook:
        wh = self._webhooks.get(handle.id)
        if wh is None:
            if not handle.url:
                raise PlatformError(f"webhook {handle.id} is not known")
            wh = discord.Webhook.from_url(handle.url, session=self.session)
            self._webhooks[handle.id] = wh
        return wh

    async def execute_webhook(
        self,
        webhook: WebhookHandle,
        *,
        username: str,
        avatar_url: Optional[str],
        content: str,
        embeds: Sequence[dict],
        files: Sequence[UploadFile],
        thread_id: Optional[int],
    ) -> Optional[int]:
        wh = self._webhook(webhook)
        embed_objs = [discord.Embed.from_dict(e) for e in embeds]
        file_objs = [discord.File(io.BytesIO(f.data), filename=f.filename) for f in files]
        await self.ratelimit.acquire(ActionType.WEBHOOK_MESSAGE, key=str(webhook.id))
        with _remote("execute webhook"):
            sent = await wh.send(
                content=content,
                username=username[:80],
                avatar_url=avatar_url or discord.utils.MISSING,
                embeds=embed_objs or discord.utils.MISSING,
                files=file_objs or discord.utils.MISSING,
                allowed_mentions=discord.AllowedMentions.none(),
                thread=discord.Object(id=thread_id) if thread_id else discord.utils.MISSING,
                wait=True,
            )
        return sent.id if sent is not None else None

    async def edit_webhook_message(
        self,
        webhook: WebhookHandle,
        message_id: int,
        content: str,
        *,
        thread_id: Optional[int] = None,
    ) -> None:
        wh = self._webhook(webhook)
        await self.ratelimit.acquire(ActionType.WEBHOOK_MESSAGE, key=str(webhook.id))
        with _remote(f"edit relayed message {message_id}"):
            await wh.edit_message(
                message_id,
                content=content,
                allowed_mentions=discord.AllowedMentions.none(),
                thread=discord.Object(id=thread_id) if thread_id else discord.utils.MISSING,
            )

    async def delete_webhook(self, webhook: WebhookHandle) -> None:
        wh = self._webhooks.pop(webhook.id, None)
        self.ratelimit.forget(str(webhook.id))
        with _remote(f"delete webhook {webhook.id}"):
            if wh is not None:
                await wh.delete(reason=AUDIT_LOG_REASON)
            else:
                await self.bot.http.delete_webhook(webhook.id, reason=AUDIT_LOG_REASON)

    # --- users / DMs / reactions ---

    async def open_dm(self, user_id: int) -> int:
        await self.ratelimit.acquire(ActionType.DM)
        with _remote(f"open DM with {user_id}"):
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            dm = await user.create_dm()
        self._dms[dm.id] = dm
        return dm.id

    async def remove_reaction(self, reaction: ReactionEvent) -> None:
        if reaction.user_id is None:
            return
        ch = await self._channel(reaction.channel_id)
        with _remote(f"remove reaction on {reaction.message_id}"):
            await ch.get_partial_message(reaction.message_id).remove_reaction(
                reaction.emoji, discord.Object(id=reaction.user_id)
            )

    async def reactions(
        self, channel_id: int, guild_id: Optional[int], timeout: float
    ) -> AsyncIterator[ReactionEvent]:
        queue: asyncio.Queue[discord.RawReactionActionEvent] = asyncio.Queue()

        async def _on_reaction(payload: discord.RawReactionActionEvent):
            if payload.channel_id != channel_id:
                return
            if guild_id is not None and payload.guild_id != guild_id:
                return
            queue.put_nowait(payload)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        self.bot.add_listener(_on_reaction, "on_raw_reaction_add")
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return
                try:
                    payload = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    return
                yield ReactionEvent(
                    message_id=payload.message_id,
                    channel_id=payload.channel_id,
                    user_id=payload.user_id,
                    emoji=str(payload.emoji),
                    guild_id=payload.guild_id,
                )
        finally:
            self.bot.remove_listener(_on_reaction, "on_raw_reaction_add")

    async def wait_for_dm_reply(
        self, dm_channel_id: int, user_id: int, timeout: float
    ) -> Optional[DirectReply]:
        def _check(m: discord.Message) -> bool:
            return m.channel.id == dm_channel_id and m.author.id == user_id

        try:
            msg = await self.bot.wait_for("message", check=_check, timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return DirectReply(
            id=msg.id, channel_id=msg.channel.id, author_id=msg.author.id, content=msg.content
        )

    async def fetch_attachment(self, attachment: AttachmentRef) -> UploadFile:
        if self.session is None or self.session.closed:
            raise PlatformError("no HTTP session for attachment download")
        with _remote(f"download {attachment.filename}"):
            async with self.session.get(attachment.url) as resp:
                resp.raise_for_status()
                data = await resp.read()
        return UploadFile(filename=attachment.filename, data=data)

    # --- guild lookups ---

    async def list_forum_channels(self, guild_id: int) -> list[int]:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return []
        return [c.id for c in guild.channels if isinstance(c, discord.ForumChannel)]

    async def can_post(self, user_id: int, channel_id: int) -> bool:
        ch = await self._channel(channel_id)
        guild = getattr(ch, "guild", None)
        if guild is None:
            return False
        member = guild.get_member(user_id)
        if member is None:
            with _remote(f"fetch member {user_id}"):
                member = await guild.fetch_member(user_id)
        perms = ch.permissions_for(member)
        if not perms.view_channel:
            return False
        if isinstance(ch, discord.Thread):
            return perms.send_messages_in_threads
        return perms.send_messages
