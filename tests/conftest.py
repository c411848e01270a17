"""Test harness configuration.

The bot sources live under ``code/`` as namespace packages. Make sure the
in-repo sources are importable even without an editable install.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path
from typing import Optional

import pytest


CODE_DIR = str(Path(__file__).resolve().parents[1] / "code")
if CODE_DIR not in sys.path:
    sys.path.insert(0, CODE_DIR)


from common.config import MoveSettings  # noqa: E402
from mover.errors import PlatformError  # noqa: E402
from mover.models import (  # noqa: E402
    DirectReply,
    SourceMessage,
    UploadFile,
    WebhookHandle,
    time_snowflake,
)

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
SOURCE_CHANNEL = 1000
GUILD = 1
INVOKER = 7


def make_message(
    seconds: float,
    author_id: int,
    *,
    channel_id: int = SOURCE_CHANNEL,
    content: Optional[str] = None,
    seq: int = 0,
    **kw,
) -> SourceMessage:
    """A message whose snowflake id encodes ``BASE_TIME + seconds``."""
    ts = BASE_TIME + timedelta(seconds=seconds)
    return SourceMessage(
        id=time_snowflake(ts) + seq,
        channel_id=channel_id,
        author_id=author_id,
        author_name=f"user{author_id}",
        author_avatar_url=f"https://cdn.example/{author_id}.png",
        content=f"message at {seconds}s" if content is None else content,
        timestamp=ts,
        **kw,
    )


class FakePlatform:
    """
    In-memory stand-in for the chat platform.

    Every call is appended to ``calls`` as ``(name, args)``. Set an entry in
    ``failures`` to make that operation raise; ``fail_webhook_after`` makes
    the n-th webhook send (0-based) fail.
    """

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.messages: dict[int, list[SourceMessage]] = {}
        self.failures: dict[str, Exception] = {}
        self.fail_webhook_after: Optional[int] = None
        self.unconfirmed_webhook = False
        self.forums: list[int] = []
        self.thread_parents: dict[int, Optional[int]] = {}
        self.postable = True
        self.reaction_events: list = []
        self.dm_replies: dict[int, Optional[DirectReply]] = {}
        self.attachments: dict[str, bytes] = {}
        self._ids = count(900_000_000_000_000_000)

        self.executed: list[dict] = []
        self.edited: list[tuple[int, str]] = []
        self.sent: list[tuple[int, str]] = []
        self.deleted_messages: list[tuple[int, int]] = []
        self.bulk_deleted: list[tuple[int, list[int]]] = []
        self.deleted_channels: list[int] = []
        self.deleted_webhooks: list[int] = []
        self.created_threads: list[tuple[int, str]] = []
        self.created_posts: list[tuple[int, str, str]] = []

    def _record(self, name: str, *args):
        self.calls.append((name, args))
        err = self.failures.get(name)
        if err is not None:
            raise err

    def next_id(self) -> int:
        return next(self._ids)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    async def fetch_messages(self, channel_id, *, after, limit):
        self._record("fetch_messages", channel_id, after, limit)
        newer = sorted(
            (m for m in self.messages.get(channel_id, []) if m.id > after),
            key=lambda m: m.id,
        )[:limit]
        return list(reversed(newer))

    async def delete_message(self, channel_id, message_id):
        self._record("delete_message", channel_id, message_id)
        self.deleted_messages.append((channel_id, message_id))

    async def delete_messages(self, channel_id, message_ids):
        self._record("delete_messages", channel_id, list(message_ids))
        self.bulk_deleted.append((channel_id, list(message_ids)))

    async def create_thread(self, parent_id, name):
        self._record("create_thread", parent_id, name)
        tid = self.next_id()
        self.created_threads.append((parent_id, name))
        self.thread_parents[tid] = parent_id
        return tid

    async def create_forum_post(self, forum_id, name, initial_content):
        self._record("create_forum_post", forum_id, name, initial_content)
        pid = self.next_id()
        self.created_posts.append((forum_id, name, initial_content))
        self.thread_parents[pid] = forum_id
        return pid

    async def delete_channel(self, channel_id):
        self._record("delete_channel", channel_id)
        self.deleted_channels.append(channel_id)

    async def fetch_thread_parent(self, thread_id):
        self._record("fetch_thread_parent", thread_id)
        return self.thread_parents.get(thread_id)

    async def create_webhook(self, channel_id, name):
        self._record("create_webhook", channel_id, name)
        return WebhookHandle(id=self.next_id(), token="tok", channel_id=channel_id)

    async def execute_webhook(
        self, webhook, *, username, avatar_url, content, embeds, files, thread_id
    ):
        self._record("execute_webhook", webhook.id, content)
        if (
            self.fail_webhook_after is not None
            and len(self.executed) >= self.fail_webhook_after
        ):
            raise PlatformError("webhook send rejected", status=500)
        if self.unconfirmed_webhook:
            return None
        mid = self.next_id()
        self.executed.append(
            {
                "id": mid,
                "username": username,
                "avatar_url": avatar_url,
                "content": content,
                "embeds": list(embeds),
                "files": list(files),
                "thread_id": thread_id,
            }
        )
        return mid

    async def edit_webhook_message(self, webhook, message_id, content, *, thread_id=None):
        self._record("edit_webhook_message", webhook.id, message_id, content)
        self.edited.append((message_id, content))

    async def delete_webhook(self, webhook):
        self._record("delete_webhook", webhook.id)
        self.deleted_webhooks.append(webhook.id)

    async def send_message(self, channel_id, content):
        self._record("send_message", channel_id, content)
        self.sent.append((channel_id, content))
        return self.next_id()

    async def reply(self, channel_id, message_id, content):
        self._record("reply", channel_id, message_id, content)
        self.sent.append((channel_id, content))
        return self.next_id()

    async def open_dm(self, user_id):
        self._record("open_dm", user_id)
        return 50_000 + user_id

    async def remove_reaction(self, reaction):
        self._record("remove_reaction", reaction.message_id, reaction.emoji)

    async def reactions(self, channel_id, guild_id, timeout):
        self._record("reactions", channel_id, guild_id, timeout)
        for event in list(self.reaction_events):
            yield event

    async def wait_for_dm_reply(self, dm_channel_id, user_id, timeout):
        self._record("wait_for_dm_reply", dm_channel_id, user_id, timeout)
        return self.dm_replies.get(user_id)

    async def fetch_attachment(self, attachment):
        self._record("fetch_attachment", attachment.url)
        data = self.attachments.get(attachment.url)
        if data is None:
            raise PlatformError(f"download failed for {attachment.url}", status=404)
        return UploadFile(filename=attachment.filename, data=data)

    async def list_forum_channels(self, guild_id):
        self._record("list_forum_channels", guild_id)
        return list(self.forums)

    async def can_post(self, user_id, channel_id):
        self._record("can_post", user_id, channel_id)
        return self.postable


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def settings() -> MoveSettings:
    return MoveSettings(lock_timeout=0.05, lock_poll_interval=0.01)
