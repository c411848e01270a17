# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

DISCORD_EPOCH_MS = 1420070400000


def snowflake_time(snowflake: int) -> datetime:
    """Creation time embedded in a Discord snowflake id."""
    ms = (int(snowflake) >> 22) + DISCORD_EPOCH_MS
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def time_snowflake(dt: datetime) -> int:
    """Smallest snowflake id created at ``dt``."""
    ms = int(dt.timestamp() * 1000)
    return (ms - DISCORD_EPOCH_MS) << 22


class MoveDestinationKind(Enum):
    CHANNEL = "Channel"
    NEW_THREAD = "New Thread"
    EXISTING_THREAD = "Existing Thread"
    NEW_FORUM_POST = "New Forum Post"

    @classmethod
    def from_label(cls, label: str) -> Optional["MoveDestinationKind"]:
        for kind in cls:
            if kind.value == label:
                return kind
        return None


@dataclass(frozen=True)
class AttachmentRef:
    url: str
    filename: str
    content_type: Optional[str] = None


@dataclass(frozen=True)
class SourceMessage:
    """Immutable snapshot of a message in the source channel."""

    id: int
    channel_id: int
    author_id: int
    author_name: str
    author_avatar_url: Optional[str]
    content: str
    timestamp: datetime
    attachments: tuple[AttachmentRef, ...] = ()
    embeds: tuple[dict, ...] = ()


@dataclass(frozen=True)
class MoveOptions:
    """
    Fully resolved user intent.

    ``channel_id`` is the target channel for CHANNEL, the parent for
    NEW_THREAD, the forum for NEW_FORUM_POST and the (optionally known)
    parent for EXISTING_THREAD. ``thread_id`` is only set for
    EXISTING_THREAD and ``name`` only for the two creating kinds.
    """

    kind: MoveDestinationKind
    channel_id: Optional[int] = None
    thread_id: Optional[int] = None
    name: Optional[str] = None

    def __post_init__(self):
        if self.kind is MoveDestinationKind.EXISTING_THREAD:
            if self.thread_id is None:
                raise ValueError("existing thread destination needs a thread id")
        elif self.channel_id is None:
            raise ValueError(f"{self.kind.value} destination needs a channel id")
        if self.kind in (
            MoveDestinationKind.NEW_THREAD,
            MoveDestinationKind.NEW_FORUM_POST,
        ) and not (self.name or "").strip():
            raise ValueError(f"{self.kind.value} destination needs a name")

    @property
    def target_id(self) -> Optional[int]:
        """Id messages would land in, when known before resolution."""
        if self.kind is MoveDestinationKind.EXISTING_THREAD:
            return self.thread_id
        if self.kind is MoveDestinationKind.CHANNEL:
            return self.channel_id
        return None


@dataclass(frozen=True)
class ResolvedDestination:
    channel_id: int
    thread_id: Optional[int] = None
    newly_created: bool = False

    @property
    def id(self) -> int:
        return self.thread_id if self.thread_id is not None else self.channel_id

    @property
    def is_thread(self) -> bool:
        return self.thread_id is not None


@dataclass(frozen=True)
class WebhookHandle:
    id: int
    token: Optional[str]
    channel_id: int
    url: Optional[str] = None


@dataclass(frozen=True)
class UploadFile:
    filename: str
    data: bytes


@dataclass(frozen=True)
class RelayedMessage:
    id: int
    channel_id: int
    author_id: int
    content: str
    thread_id: Optional[int] = None
    # Id of the source message this chunk was relayed from.
    source_id: Optional[int] = None


@dataclass(frozen=True)
class ReactionEvent:
    message_id: int
    channel_id: int
    user_id: Optional[int]
    emoji: str
    guild_id: Optional[int] = None


@dataclass(frozen=True)
class DirectReply:
    id: int
    channel_id: int
    author_id: int
    content: str


@dataclass
class SelectionFilters:
    user_ids: frozenset[int]
    stop_message_id: Optional[int] = None
    limit: int = 100
    max_time_span: float = 2 * 60 * 60


@dataclass
class MoveRequest:
    """Who asked to move what, captured when the context menu fires."""

    guild_id: Optional[int]
    source_channel_id: int
    start_message: SourceMessage
    invoker_id: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
