# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import logging, re
from typing import Optional, Tuple
from common.rate_limiter import ActionType, RateLimitManager

log = logging.getLogger("relocord.discord_hooks")

FIXED_COOLDOWN_SECONDS = 60

# More specific routes first; the first match wins.
_ROUTE_MAP: Tuple[Tuple[re.Pattern, ActionType], ...] = (
    (re.compile(r"/webhooks/\{webhook_id\}/\{webhook_token\}"), ActionType.WEBHOOK_MESSAGE),
    (re.compile(r"/channels/\{channel_id\}/webhooks"), ActionType.WEBHOOK_CREATE),
    (re.compile(r"/channels/\{channel_id\}/threads"), ActionType.THREAD),
    (
        re.compile(r"/channels/\{channel_id\}/messages/\{message_id\}$"),
        ActionType.DELETE_MESSAGE,
    ),
    (re.compile(r"/channels/\{channel_id\}/messages/bulk-delete"), ActionType.DELETE_MESSAGE),
    (re.compile(r"/users/@me/channels"), ActionType.DM),
)


def _pick_major(parts: list[str]) -> str | None:
    for p in parts:
        if p and p.isdigit():
            return p
    return None


class DiscordHTTPRLHandler(logging.Handler):
    """
    Watches py-cord's ``discord.http`` warnings and turns a reported rate
    limit into a cooldown on the matching local limiter.
    """

    _rx = re.compile(r"Retrying in ([\d.]+) seconds.*bucket \"([^\"]+)\"")

    def __init__(self, ratelimit_mgr: RateLimitManager, cooldown: float = FIXED_COOLDOWN_SECONDS):
        super().__init__(level=logging.WARNING)
        self.rlm = ratelimit_mgr
        self.cooldown = cooldown

    def _map_bucket(
        self, bucket: str
    ) -> tuple[Optional[ActionType], Optional[str], str]:
        parts = bucket.split(":")
        major = _pick_major(parts)
        route = parts[-1]

        action = None
        for pat, act in _ROUTE_MAP:
            if pat.search(route):
                action = act
                break

        key = major if action == ActionType.WEBHOOK_MESSAGE else None

        log.debug(
            "Bucket map: route=%s parts=%s -> action=%s key=%s",
            route,
            parts,
            getattr(action, "name", None),
            key,
        )
        return action, key, route

    def emit(self, record: logging.LogRecord):
        try:
            m = self._rx.search(record.getMessage())
            if not m:
                return

            bucket = m.group(2)
            action, key, route = self._map_bucket(bucket)
            if not action:
                log.debug(
                    "No ActionType mapping for route=%s (bucket=%s); no penalty applied",
                    route,
                    bucket,
                )
                return

            # py-cord already retries webhook sends inside the bucket.
            if action == ActionType.WEBHOOK_MESSAGE and key is None:
                return

            self.rlm.penalize(action, self.cooldown, key=key)
            log.warning(
                "[❗] Discord rate limit detected; next %s action held for %.0fs",
                action.name,
                self.rlm.remaining(action, key=key),
            )
        except Exception as e:
            log.exception("[⛔] Error in DiscordHTTPRLHandler.emit: %s", e)


def install_discord_rl_probe(ratelimit_mgr: RateLimitManager) -> DiscordHTTPRLHandler:
    http_log = logging.getLogger("discord.http")
    for h in http_log.handlers:
        if isinstance(h, DiscordHTTPRLHandler):
            log.debug("DiscordHTTPRLHandler already installed on 'discord.http'")
            return h
    handler = DiscordHTTPRLHandler(ratelimit_mgr)
    http_log.addHandler(handler)
    log.debug("Installed DiscordHTTPRLHandler on 'discord.http' logger")
    return handler
