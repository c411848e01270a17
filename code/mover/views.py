# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""
Discord components for the move options dialog.

The view only translates component interactions into dialog events and
renders whatever ``MoveOptionsDialog.render`` describes. All decisions are
made by the dialog itself.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord

from common.constants import THREAD_NAME_MAX_CHARS
from mover.dialog import (
    ChannelSelected,
    ComponentSpec,
    DestinationKindSelected,
    DialogEvent,
    DialogField,
    MoveOptionsDialog,
    StopMessageEntered,
    StreamClosed,
    SubmitPressed,
    TitleEntered,
    Transition,
    TransitionKind,
    UsersSelected,
)
from mover.models import MoveOptions

logger = logging.getLogger("relocord.views")

DIALOG_TIMEOUT_SECONDS = 15 * 60

_CHANNEL_TYPES = {
    "forum": discord.ChannelType.forum,
    "public_thread": discord.ChannelType.public_thread,
    "text": discord.ChannelType.text,
}

_QueueItem = tuple[DialogEvent, Optional[discord.Interaction]]


class _TextModal(discord.ui.Modal):
    def __init__(
        self,
        view: "MoveOptionsView",
        *,
        title: str,
        label: str,
        value: Optional[str],
        placeholder: Optional[str],
        required: bool,
        min_length: Optional[int],
        max_length: Optional[int],
        kind: type,
    ):
        super().__init__(title=title)
        self.options_view = view
        self._kind = kind
        self.add_item(
            discord.ui.InputText(
                label=label,
                style=discord.InputTextStyle.short,
                value=value,
                placeholder=placeholder,
                required=required,
                min_length=min_length,
                max_length=max_length,
            )
        )

    async def callback(self, interaction: discord.Interaction):
        text = self.children[0].value
        self.options_view.push(self._kind(text), interaction)


class MoveOptionsView(discord.ui.View):
    """Interactive options picker shown to the invoker as an ephemeral message."""

    def __init__(self, dialog: MoveOptionsDialog, invoker_id: int):
        super().__init__(timeout=DIALOG_TIMEOUT_SECONDS)
        self.dialog = dialog
        self.invoker_id = invoker_id
        self.queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self.rebuild()

    def push(self, event: DialogEvent, interaction: Optional[discord.Interaction]):
        self.queue.put_nowait((event, interaction))

    def rebuild(self) -> None:
        self.clear_items()
        for spec in self.dialog.render():
            self.add_item(self._component(spec))

    def _component(self, spec: ComponentSpec) -> discord.ui.Item:
        if spec.control == "button":
            button = discord.ui.Button(
                label=spec.label,
                style=getattr(discord.ButtonStyle, spec.style or "secondary"),
                custom_id=spec.custom_id,
                row=spec.row,
            )
            button.callback = self._button_callback(spec.field)
            return button

        if spec.control == "channel_select":
            select = discord.ui.Select(
                select_type=discord.ComponentType.channel_select,
                custom_id=spec.custom_id,
                placeholder=spec.placeholder,
                min_values=spec.min_values,
                max_values=spec.max_values,
                channel_types=[_CHANNEL_TYPES[t] for t in spec.channel_types],
                row=spec.row,
            )
        elif spec.control == "user_select":
            select = discord.ui.Select(
                select_type=discord.ComponentType.user_select,
                custom_id=spec.custom_id,
                placeholder=spec.placeholder,
                min_values=spec.min_values,
                max_values=spec.max_values,
                default_values=[
                    discord.SelectDefaultValue(
                        id=uid, type=discord.SelectDefaultValueType.user
                    )
                    for uid in spec.default_ids
                ],
                row=spec.row,
            )
        else:
            select = discord.ui.Select(
                select_type=discord.ComponentType.string_select,
                custom_id=spec.custom_id,
                placeholder=spec.placeholder,
                min_values=spec.min_values,
                max_values=spec.max_values,
                options=[
                    discord.SelectOption(label=o.label, value=o.value, default=o.default)
                    for o in spec.options
                ],
                row=spec.row,
            )
        select.callback = self._select_callback(spec.field, select)
        return select

    def _select_callback(self, field: DialogField, select: discord.ui.Select):
        async def callback(interaction: discord.Interaction):
            values = list(select.values)
            if field is DialogField.SELECT_USERS:
                # Resolved to Member or User objects.
                event = UsersSelected(tuple(int(getattr(v, "id", v)) for v in values))
            elif field is DialogField.DESTINATION:
                event = DestinationKindSelected(values[0] if values else "")
            else:
                picked = values[0] if values else None
                channel_id = getattr(picked, "id", picked)
                event = ChannelSelected(
                    field, int(channel_id) if channel_id is not None else None
                )
            self.push(event, interaction)

        return callback

    def _button_callback(self, field: DialogField):
        async def callback(interaction: discord.Interaction):
            if field is DialogField.EXECUTE_BUTTON:
                self.push(SubmitPressed(), interaction)
            elif field is DialogField.CHANGE_NAME_BUTTON:
                await interaction.response.send_modal(
                    _TextModal(
                        self,
                        title="Change name",
                        label="Name",
                        value=self.dialog.title,
                        placeholder=None,
                        required=True,
                        min_length=1,
                        max_length=THREAD_NAME_MAX_CHARS,
                        kind=TitleEntered,
                    )
                )
            elif field is DialogField.SET_LAST_MESSAGE_BUTTON:
                current = self.dialog.stop_message_id
                await interaction.response.send_modal(
                    _TextModal(
                        self,
                        title="Set last message",
                        label="ID of the last message to move",
                        value=str(current) if current else None,
                        placeholder="Leave empty to move up to the latest message",
                        required=False,
                        min_length=None,
                        max_length=20,
                        kind=StopMessageEntered,
                    )
                )

        return callback

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return interaction.user is not None and interaction.user.id == self.invoker_id

    async def on_timeout(self) -> None:
        logger.debug("Move dialog timed out")
        self.push(StreamClosed(), None)


async def _acknowledge(
    view: MoveOptionsView,
    transition: Transition,
    interaction: Optional[discord.Interaction],
) -> None:
    if interaction is None:
        return
    try:
        if transition.kind in (TransitionKind.RERENDER, TransitionKind.REJECTED):
            view.rebuild()
            await interaction.response.edit_message(view=view)
        elif not interaction.response.is_done():
            await interaction.response.defer()
        if transition.notice:
            await interaction.followup.send(transition.notice, ephemeral=True)
    except discord.HTTPException as e:
        logger.warning("[⚠️] Failed to acknowledge dialog interaction: %s", e)


async def run_dialog(view: MoveOptionsView) -> Optional[MoveOptions]:
    """
    Feed interactions into the dialog until it is submitted or abandoned.

    Returns the chosen options, or ``None`` when the invoker walked away.
    """
    dialog = view.dialog
    while True:
        event, interaction = await view.queue.get()
        transition = dialog.handle_event(event)
        await _acknowledge(view, transition, interaction)
        if transition.kind is TransitionKind.SUBMITTED:
            view.stop()
            return transition.options
        if transition.kind is TransitionKind.ABANDONED:
            view.stop()
            return None
