# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import discord
from discord.ext import commands
from discord import errors as discord_errors
from datetime import datetime, timezone
import logging
from typing import Optional
from common.config import Config
from common.constants import BOT_REQUIRED_PERMISSIONS, MOVE_COMMAND_NAME
from mover.discord_platform import snapshot_message
from mover.dialog import MoveOptionsDialog
from mover.errors import MoveError
from mover.models import MoveOptions, MoveRequest
from mover.operation import MoveOperation
from mover.views import MoveOptionsView, run_dialog

logger = logging.getLogger("relocord.commands")

config = Config(logger=logger)

DIALOG_PROMPT = "Choose which messages to move and where they should go."


class MoveCommands(commands.Cog):
    """
    The "Move Messages" context-menu command.
    """

    def __init__(self, bot: discord.Bot):
        self.bot = bot

    @property
    def service(self):
        return self.bot.mover

    async def cog_check(self, ctx: discord.ApplicationContext):
        """
        Gate every command in this cog on guild context and channel permissions
        for both the invoker and the bot.
        """
        cmd_name = ctx.command.name if ctx.command else "unknown"
        if ctx.guild is None:
            await ctx.respond("This command can only be used in a server.", ephemeral=True)
            return False

        invoker_perms = ctx.channel.permissions_for(ctx.author)
        if not invoker_perms.manage_messages:
            await ctx.respond(
                "You need the Manage Messages permission in this channel to move messages.",
                ephemeral=True,
            )
            logger.warning(
                f"[⚠️] Unauthorized access: user {ctx.author.id} attempted to run command '{cmd_name}'"
            )
            return False

        bot_perms = ctx.channel.permissions_for(ctx.guild.me)
        missing = [p for p in BOT_REQUIRED_PERMISSIONS if not getattr(bot_perms, p, False)]
        if missing:
            pretty = ", ".join(p.replace("_", " ").title() for p in missing)
            await ctx.respond(
                f"I'm missing the following permissions here: {pretty}.", ephemeral=True
            )
            logger.warning(
                f"[⚠️] Missing bot permissions {missing} in channel {ctx.channel.id}"
            )
            return False

        logger.info(
            f"[⚡] {ctx.author} in #{getattr(ctx.channel, 'name', ctx.channel.id)} used '{cmd_name}'"
        )
        return True

    @commands.Cog.listener()
    async def on_application_command_error(self, ctx, error):
        """
        Handle errors during command execution.

        Unwraps the original exception if it was wrapped in an ApplicationCommandInvokeError,
        ignores CheckFailure errors since the check already answered the user, and logs
        everything else with a full traceback.
        """
        orig = getattr(error, "original", None)
        err = orig or error

        if isinstance(err, (commands.CheckFailure, discord_errors.CheckFailure)):
            return

        cmd = ctx.command.name if ctx.command else "<unknown>"
        logger.exception(f"Error in command '{cmd}':", exc_info=err)

    @commands.Cog.listener()
    async def on_application_command_completion(self, ctx):
        cmd = ctx.command.name if ctx.command else "<unknown>"
        logger.info(f"[✅] {ctx.author} finished '{cmd}'")

    @commands.message_command(
        name=MOVE_COMMAND_NAME,
        guild_ids=config.guild_ids,
        default_member_permissions=discord.Permissions(manage_messages=True),
    )
    async def move_messages(self, ctx: discord.ApplicationContext, message: discord.Message):
        """Move a conversation, starting at ``message``, to another channel or thread."""
        await ctx.defer(ephemeral=True)

        svc = self.service
        request = MoveRequest(
            guild_id=ctx.guild.id if ctx.guild else None,
            source_channel_id=ctx.channel.id,
            start_message=snapshot_message(message),
            invoker_id=ctx.author.id,
            started_at=datetime.now(timezone.utc),
        )

        async def _dialog(dialog: MoveOptionsDialog) -> Optional[MoveOptions]:
            view = MoveOptionsView(dialog, invoker_id=ctx.author.id)
            prompt = await ctx.followup.send(DIALOG_PROMPT, view=view, ephemeral=True, wait=True)
            try:
                return await run_dialog(view)
            finally:
                try:
                    await prompt.delete()
                except discord.HTTPException as e:
                    logger.debug("Failed to delete move dialog message: %s", e)

        operation = MoveOperation(
            svc.platform,
            svc.locks,
            svc.settings,
            request,
            run_dialog=_dialog,
            spawn=svc.track,
        )
        try:
            text = await operation.run()
        except MoveError as e:
            logger.info("[🚫] Move did not complete: %s", e)
            text = str(e)
        except Exception:
            logger.exception("[⛔] Unexpected error while moving messages")
            text = "Something went wrong while moving messages."

        await self._reply(ctx, text)

    async def _reply(self, ctx: discord.ApplicationContext, text: str) -> None:
        try:
            await ctx.followup.send(text, ephemeral=True)
        except discord.HTTPException as e:
            logger.warning("[⚠️] Failed to send command reply: %s", e)


def setup(bot: discord.Bot):
    bot.add_cog(MoveCommands(bot))
