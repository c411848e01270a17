# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""
Options dialog for a relocation.

The dialog is a plain state machine: the Discord view (``mover.views``) or a
test feeds it events through ``handle_event`` and acts on the returned
``Transition``. Nothing in here talks to the network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, Union

from common.constants import SELECT_MAX_OPTIONS, THREAD_NAME_MAX_CHARS
from mover.models import MoveDestinationKind, MoveOptions

logger = logging.getLogger("relocord.dialog")


class DialogField(Enum):
    SELECT_USERS = "SelectUsers"
    DESTINATION = "Destination"
    FORUM = "Forum"
    THREAD = "Thread"
    CHANNEL = "Channel"
    EXECUTE_BUTTON = "ExecuteButton"
    SET_LAST_MESSAGE_BUTTON = "SetLastMessageButton"
    CHANGE_NAME_BUTTON = "ChangeNameButton"

    @property
    def custom_id(self) -> str:
        return self.value

    @classmethod
    def from_custom_id(cls, custom_id: str) -> Optional["DialogField"]:
        try:
            return cls(custom_id)
        except ValueError:
            return None


_F = DialogField
_K = MoveDestinationKind

KIND_FIELDS: Mapping[MoveDestinationKind, tuple[DialogField, ...]] = {
    _K.CHANNEL: (
        _F.SELECT_USERS,
        _F.DESTINATION,
        _F.CHANNEL,
        _F.EXECUTE_BUTTON,
        _F.SET_LAST_MESSAGE_BUTTON,
    ),
    _K.NEW_THREAD: (
        _F.SELECT_USERS,
        _F.DESTINATION,
        _F.CHANNEL,
        _F.EXECUTE_BUTTON,
        _F.SET_LAST_MESSAGE_BUTTON,
        _F.CHANGE_NAME_BUTTON,
    ),
    _K.EXISTING_THREAD: (
        _F.SELECT_USERS,
        _F.DESTINATION,
        _F.THREAD,
        _F.EXECUTE_BUTTON,
        _F.SET_LAST_MESSAGE_BUTTON,
    ),
    _K.NEW_FORUM_POST: (
        _F.SELECT_USERS,
        _F.DESTINATION,
        _F.FORUM,
        _F.EXECUTE_BUTTON,
        _F.SET_LAST_MESSAGE_BUTTON,
        _F.CHANGE_NAME_BUTTON,
    ),
}

PICKER_FIELDS = frozenset({_F.FORUM, _F.THREAD, _F.CHANNEL})

_FIELD_LABELS = {
    _F.FORUM: "forum",
    _F.THREAD: "thread",
    _F.CHANNEL: "channel",
}


def fields_for(kind: MoveDestinationKind) -> tuple[DialogField, ...]:
    return KIND_FIELDS[kind]


def required_fields(kind: MoveDestinationKind) -> frozenset[DialogField]:
    return frozenset(f for f in KIND_FIELDS[kind] if f in PICKER_FIELDS)


class DialogState(Enum):
    INITIALIZING = "initializing"
    AWAITING_INPUT = "awaiting_input"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"


# --- events -----------------------------------------------------------------


@dataclass(frozen=True)
class UsersSelected:
    user_ids: tuple[int, ...]


@dataclass(frozen=True)
class DestinationKindSelected:
    label: str


@dataclass(frozen=True)
class ChannelSelected:
    field: DialogField
    channel_id: Optional[int]


@dataclass(frozen=True)
class TitleEntered:
    title: str


@dataclass(frozen=True)
class StopMessageEntered:
    raw: Optional[str]


@dataclass(frozen=True)
class SubmitPressed:
    pass


@dataclass(frozen=True)
class StreamClosed:
    pass


DialogEvent = Union[
    UsersSelected,
    DestinationKindSelected,
    ChannelSelected,
    TitleEntered,
    StopMessageEntered,
    SubmitPressed,
    StreamClosed,
]


class TransitionKind(Enum):
    UPDATED = "updated"
    RERENDER = "rerender"
    REJECTED = "rejected"
    SUBMITTED = "submitted"
    ABANDONED = "abandoned"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    options: Optional[MoveOptions] = None
    notice: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.kind in (TransitionKind.SUBMITTED, TransitionKind.ABANDONED)


# --- rendering --------------------------------------------------------------


@dataclass(frozen=True)
class SelectOptionSpec:
    label: str
    value: str
    default: bool = False


@dataclass(frozen=True)
class ComponentSpec:
    field: DialogField
    control: str  # "string_select" | "user_select" | "channel_select" | "button"
    row: int
    placeholder: Optional[str] = None
    label: Optional[str] = None
    style: Optional[str] = None
    options: tuple[SelectOptionSpec, ...] = ()
    channel_types: tuple[str, ...] = ()
    default_ids: tuple[int, ...] = ()
    min_values: int = 1
    max_values: int = 1

    @property
    def custom_id(self) -> str:
        return self.field.custom_id


@dataclass
class MoveOptionsDialog:
    source_channel_id: int
    participants: Sequence[int]
    default_forum: Optional[int] = None
    default_title: str = "Moved conversation"

    def __post_init__(self):
        self.state = DialogState.INITIALIZING
        self.kind = MoveDestinationKind.CHANNEL
        self.title = self.default_title
        self.stop_message_id: Optional[int] = None
        # A user select holds at most 25 default values.
        self.selected_users: tuple[int, ...] = tuple(self.participants)[:SELECT_MAX_OPTIONS]
        self.selected_forum: Optional[int] = self.default_forum
        self.selected_thread: Optional[int] = None
        self.selected_channel: Optional[int] = None
        self._switch_destination(self.kind)
        self.state = DialogState.AWAITING_INPUT

    # --- queries ---

    @property
    def finished(self) -> bool:
        return self.state in (DialogState.SUBMITTED, DialogState.ABANDONED)

    def missing_fields(self) -> frozenset[DialogField]:
        values = {
            _F.FORUM: self.selected_forum,
            _F.THREAD: self.selected_thread,
            _F.CHANNEL: self.selected_channel,
        }
        return frozenset(f for f in required_fields(self.kind) if values[f] is None)

    # --- transitions ---

    def handle_event(self, event: DialogEvent) -> Transition:
        if self.finished:
            return Transition(TransitionKind.IGNORED)

        if isinstance(event, StreamClosed):
            self.state = DialogState.ABANDONED
            return Transition(TransitionKind.ABANDONED)

        if isinstance(event, UsersSelected):
            self.selected_users = tuple(dict.fromkeys(int(u) for u in event.user_ids))
            return Transition(TransitionKind.UPDATED)

        if isinstance(event, DestinationKindSelected):
            kind = MoveDestinationKind.from_label(event.label)
            if kind is None:
                logger.warning("[⚠️] Unknown destination option %r", event.label)
                return Transition(TransitionKind.IGNORED)
            self._switch_destination(kind)
            return Transition(TransitionKind.RERENDER)

        if isinstance(event, ChannelSelected):
            return self._select_channel(event.field, event.channel_id)

        if isinstance(event, TitleEntered):
            title = (event.title or "").strip()
            if not title or len(title) > THREAD_NAME_MAX_CHARS:
                return Transition(
                    TransitionKind.REJECTED,
                    notice=f"Name must be 1-{THREAD_NAME_MAX_CHARS} characters.",
                )
            self.title = title
            return Transition(TransitionKind.UPDATED)

        if isinstance(event, StopMessageEntered):
            return self._set_stop_message(event.raw)

        if isinstance(event, SubmitPressed):
            return self._submit()

        logger.warning("[⚠️] Unhandled dialog event %r", event)
        return Transition(TransitionKind.IGNORED)

    def _switch_destination(self, kind: MoveDestinationKind) -> None:
        self.kind = kind
        applicable = set(fields_for(kind))
        if _F.FORUM not in applicable:
            self.selected_forum = None
        elif self.selected_forum is None:
            self.selected_forum = self.default_forum
        if _F.THREAD not in applicable:
            self.selected_thread = None
        if _F.CHANNEL not in applicable:
            self.selected_channel = None
        # A parent channel picked for a new thread may be the source itself,
        # which is not a valid plain-channel destination.
        if (
            kind is _K.CHANNEL
            and self.selected_channel == self.source_channel_id
        ):
            self.selected_channel = None

    def _is_destination_picker(self, fld: DialogField) -> bool:
        return (fld is _F.CHANNEL and self.kind is _K.CHANNEL) or (
            fld is _F.THREAD and self.kind is _K.EXISTING_THREAD
        )

    def _select_channel(self, fld: DialogField, channel_id: Optional[int]) -> Transition:
        if fld not in PICKER_FIELDS or fld not in fields_for(self.kind):
            return Transition(TransitionKind.IGNORED)

        if (
            channel_id is not None
            and int(channel_id) == self.source_channel_id
            and (self._is_destination_picker(fld) or fld is _F.FORUM)
        ):
            self._assign(fld, None)
            return Transition(
                TransitionKind.REJECTED,
                notice="Messages can't be moved to the channel they are already in.",
            )

        self._assign(fld, int(channel_id) if channel_id is not None else None)
        return Transition(TransitionKind.UPDATED)

    def _assign(self, fld: DialogField, value: Optional[int]) -> None:
        if fld is _F.FORUM:
            self.selected_forum = value
        elif fld is _F.THREAD:
            self.selected_thread = value
        elif fld is _F.CHANNEL:
            self.selected_channel = value

    def _set_stop_message(self, raw: Optional[str]) -> Transition:
        text = (raw or "").strip()
        if not text:
            self.stop_message_id = None
            return Transition(TransitionKind.UPDATED)
        if not text.isdigit() or not 18 <= len(text) <= 20:
            return Transition(
                TransitionKind.REJECTED,
                notice=f"`{text[:40]}` is not a valid message ID.",
            )
        self.stop_message_id = int(text)
        return Transition(TransitionKind.UPDATED)

    def _submit(self) -> Transition:
        missing = self.missing_fields()
        if missing:
            names = ", ".join(
                _FIELD_LABELS[f] for f in fields_for(self.kind) if f in missing
            )
            return Transition(
                TransitionKind.REJECTED, notice=f"Please choose a {names} first."
            )
        if not self.selected_users:
            return Transition(
                TransitionKind.REJECTED,
                notice="Select at least one participant whose messages should move.",
            )

        options = self.build_options()
        self.state = DialogState.SUBMITTED
        return Transition(TransitionKind.SUBMITTED, options=options)

    def build_options(self) -> MoveOptions:
        if self.kind is _K.CHANNEL:
            return MoveOptions(self.kind, channel_id=self.selected_channel)
        if self.kind is _K.NEW_THREAD:
            return MoveOptions(
                self.kind, channel_id=self.selected_channel, name=self.title
            )
        if self.kind is _K.EXISTING_THREAD:
            return MoveOptions(self.kind, thread_id=self.selected_thread)
        return MoveOptions(self.kind, channel_id=self.selected_forum, name=self.title)

    # --- rendering ---

    def render(self) -> list[ComponentSpec]:
        specs: list[ComponentSpec] = []
        row = 0
        buttons: list[DialogField] = []
        for fld in fields_for(self.kind):
            if fld in (_F.EXECUTE_BUTTON, _F.SET_LAST_MESSAGE_BUTTON, _F.CHANGE_NAME_BUTTON):
                buttons.append(fld)
                continue
            specs.append(self._render_select(fld, row))
            row += 1
        # Adjacent buttons share one action row.
        specs.extend(self._render_button(fld, row) for fld in buttons)
        return specs

    def _render_select(self, fld: DialogField, row: int) -> ComponentSpec:
        if fld is _F.SELECT_USERS:
            return ComponentSpec(
                fld,
                "user_select",
                row,
                placeholder="Which users should have their messages moved?",
                default_ids=self.selected_users[:SELECT_MAX_OPTIONS],
                min_values=1,
                max_values=SELECT_MAX_OPTIONS,
            )
        if fld is _F.DESTINATION:
            return ComponentSpec(
                fld,
                "string_select",
                row,
                placeholder="Where should messages be moved to?",
                options=tuple(
                    SelectOptionSpec(k.value, k.value, default=k is self.kind)
                    for k in MoveDestinationKind
                ),
            )
        if fld is _F.FORUM:
            return ComponentSpec(
                fld,
                "channel_select",
                row,
                placeholder="Which forum should post be created in?",
                channel_types=("forum",),
            )
        if fld is _F.THREAD:
            return ComponentSpec(
                fld,
                "channel_select",
                row,
                placeholder="Which thread should messages be moved to?",
                channel_types=("public_thread",),
            )
        return ComponentSpec(
            fld,
            "channel_select",
            row,
            placeholder="Which channel should messages be moved to?",
            channel_types=("text",),
        )

    def _render_button(self, fld: DialogField, row: int) -> ComponentSpec:
        if fld is _F.EXECUTE_BUTTON:
            return ComponentSpec(fld, "button", row, label="Move", style="danger")
        if fld is _F.CHANGE_NAME_BUTTON:
            label = (
                "Change forum post name"
                if self.kind is _K.NEW_FORUM_POST
                else "Change thread name"
            )
            return ComponentSpec(fld, "button", row, label=label, style="secondary")
        return ComponentSpec(
            fld, "button", row, label="Set last message", style="secondary"
        )


def participants_by_message_count(author_ids: Iterable[int]) -> list[int]:
    """Distinct authors ordered by ascending message count, ties by first appearance."""
    counts: dict[int, int] = {}
    for uid in author_ids:
        counts[uid] = counts.get(uid, 0) + 1
    return sorted(counts, key=lambda u: counts[u])
