# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""Operations the relocation engine needs from the chat platform."""

from __future__ import annotations

from typing import AsyncIterator, Optional, Protocol, Sequence

from mover.models import (
    AttachmentRef,
    DirectReply,
    ReactionEvent,
    SourceMessage,
    UploadFile,
    WebhookHandle,
)


class MovePlatform(Protocol):
    async def fetch_messages(
        self, channel_id: int, *, after: int, limit: int
    ) -> list[SourceMessage]:
        """Messages posted after ``after``, newest first."""

    async def delete_message(self, channel_id: int, message_id: int) -> None: ...

    async def delete_messages(
        self, channel_id: int, message_ids: Sequence[int]
    ) -> None: ...

    async def create_thread(self, parent_id: int, name: str) -> int: ...

    async def create_forum_post(
        self, forum_id: int, name: str, initial_content: str
    ) -> int: ...

    async def delete_channel(self, channel_id: int) -> None: ...

    async def fetch_thread_parent(self, thread_id: int) -> Optional[int]: ...

    async def create_webhook(self, channel_id: int, name: str) -> WebhookHandle: ...

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
        """Send and wait for the created message id; ``None`` if unconfirmed."""

    async def edit_webhook_message(
        self,
        webhook: WebhookHandle,
        message_id: int,
        content: str,
        *,
        thread_id: Optional[int] = None,
    ) -> None: ...

    async def delete_webhook(self, webhook: WebhookHandle) -> None: ...

    async def send_message(self, channel_id: int, content: str) -> int: ...

    async def reply(self, channel_id: int, message_id: int, content: str) -> int: ...

    async def open_dm(self, user_id: int) -> int: ...

    async def remove_reaction(self, reaction: ReactionEvent) -> None: ...

    def reactions(
        self, channel_id: int, guild_id: Optional[int], timeout: float
    ) -> AsyncIterator[ReactionEvent]: ...

    async def wait_for_dm_reply(
        self, dm_channel_id: int, user_id: int, timeout: float
    ) -> Optional[DirectReply]: ...

    async def fetch_attachment(self, attachment: AttachmentRef) -> UploadFile: ...

    async def list_forum_channels(self, guild_id: int) -> list[int]: ...

    async def can_post(self, user_id: int, channel_id: int) -> bool: ...
