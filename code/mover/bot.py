# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import signal
import asyncio
import logging
import sys
from typing import Any, Coroutine, Optional

import aiohttp
import discord
from discord.errors import Forbidden

from common.config import Config, CURRENT_VERSION
from common.logging_setup import configure_app_logging
from common.rate_limiter import RateLimitManager
from mover.discord_hooks import install_discord_rl_probe
from mover.discord_platform import DiscordPlatform
from mover.locks import ChannelLockRegistry

logger = logging.getLogger("relocord.bot")


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.guild_messages = True
    intents.guild_reactions = True
    intents.dm_messages = True
    intents.message_content = True
    intents.members = True
    return intents


class MoveService:
    """
    Owns the bot process: the py-cord client, the shared channel locks and the
    background correction listeners spawned by finished moves.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config(logger=logger)
        self.settings = self.config.move_settings()
        self.bot = discord.Bot(intents=build_intents())
        self.bot.mover = self
        self.locks = ChannelLockRegistry(poll_interval=self.settings.lock_poll_interval)
        self.ratelimit = RateLimitManager()
        self.platform = DiscordPlatform(self.bot, ratelimit=self.ratelimit)
        self.session: Optional[aiohttp.ClientSession] = None
        self._tasks: set[asyncio.Task] = set()
        self._shutting_down = False

        self.bot.add_listener(self.on_ready, "on_ready")
        orig_on_connect = self.bot.on_connect

        async def _command_sync():
            try:
                await orig_on_connect()
            except Forbidden as e:
                logger.warning(
                    "[⚠️] Can't sync application commands, make sure the bot is in the server: %s",
                    e,
                )

        self.bot.on_connect = _command_sync
        self.bot.load_extension("mover.commands")

    def track(
        self, coro: Coroutine[Any, Any, Any], name: str | None = None
    ) -> asyncio.Task:
        t = asyncio.create_task(coro, name=name or "move-corrections")
        self._tasks.add(t)
        t.add_done_callback(self._tasks.discard)
        return t

    async def on_ready(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self.platform.session = self.session
        install_discord_rl_probe(self.ratelimit)
        logger.info(
            "[🤖] Logged in as %s in %d guild(s)", self.bot.user, len(self.bot.guilds)
        )

    async def _shutdown(self):
        """
        Gracefully shut down:
        1) cancel correction listeners (each deletes its webhook on the way out)
        2) close the HTTP session
        3) close the bot last
        """
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Shutting down...")

        for t in list(self._tasks):
            t.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        try:
            if self.session is not None and not self.session.closed:
                await self.session.close()
        except aiohttp.ClientError:
            logger.debug("[shutdown] aiohttp session close failed", exc_info=True)

        try:
            if not self.bot.is_closed():
                await self.bot.close()
        except discord.DiscordException:
            logger.debug("[shutdown] bot close failed", exc_info=True)

        logger.info("Shutdown complete.")

    def run(self):
        """
        Start the bot and block until it stops.

        SIGTERM and SIGINT trigger a graceful shutdown; anything still pending
        afterwards is cancelled before the loop closes.
        """
        if not self.config.DISCORD_TOKEN:
            logger.error("[⛔] DISCORD_TOKEN is not set; refusing to start.")
            sys.exit(1)

        logger.info("[✨] Starting Relocord %s", CURRENT_VERSION)
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(self._shutdown()))

        try:
            loop.run_until_complete(self.bot.start(self.config.DISCORD_TOKEN))
        finally:
            pending = asyncio.all_tasks(loop=loop)
            for task in pending:
                task.cancel()
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()


def main():
    config = Config()
    configure_app_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    MoveService(config).run()


if __name__ == "__main__":
    main()
