# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

import os
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger("relocord.config")
CURRENT_VERSION = "v1.4.0"


@dataclass(frozen=True)
class MoveSettings:
    """Tunables for one relocation, handed to the engine by value."""

    message_limit: int = 100
    max_time_span: float = 2 * 60 * 60
    lock_timeout: float = 120.0
    lock_poll_interval: float = 0.1
    correction_window: float = 4 * 60 * 60
    edit_prompt_timeout: float = 5 * 60
    default_title: str = "Moved conversation"


class Config:
    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.logger = (logger or logging.getLogger("relocord")).getChild(
            self.__class__.__name__
        )
        source = os.environ if env is None else env

        def _str(key: str, default: Optional[str] = None) -> Optional[str]:
            v = source.get(key)
            if v is None or v.strip() == "":
                return default
            return v.strip()

        def _int(key: str, default: int) -> int:
            raw = _str(key)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                self.logger.warning(
                    "[⚠️] %s=%r is not an integer; using %s", key, raw, default
                )
                return default

        def _float(key: str, default: float) -> float:
            raw = _str(key)
            if raw is None:
                return default
            try:
                v = float(raw)
            except ValueError:
                self.logger.warning(
                    "[⚠️] %s=%r is not a number; using %s", key, raw, default
                )
                return default
            return v if v > 0 else default

        # --- Tokens / IDs ---
        self.DISCORD_TOKEN = _str("DISCORD_TOKEN")
        self.DISCORD_GUILD = _int("DISCORD_GUILD", 0)

        # --- Relocation limits ---
        self.MOVE_MESSAGE_LIMIT = max(1, min(100, _int("MOVE_MESSAGE_LIMIT", 100)))
        self.MOVE_MAX_TIME_SPAN_SECONDS = _float("MOVE_MAX_TIME_SPAN_SECONDS", 7200.0)
        self.MOVE_LOCK_TIMEOUT_SECONDS = _float("MOVE_LOCK_TIMEOUT_SECONDS", 120.0)
        self.MOVE_LOCK_POLL_SECONDS = _float("MOVE_LOCK_POLL_SECONDS", 0.1)
        self.MOVE_CORRECTION_WINDOW_SECONDS = _float(
            "MOVE_CORRECTION_WINDOW_SECONDS", 14400.0
        )
        self.MOVE_EDIT_PROMPT_TIMEOUT_SECONDS = _float(
            "MOVE_EDIT_PROMPT_TIMEOUT_SECONDS", 300.0
        )
        self.MOVE_DEFAULT_TITLE = (
            _str("MOVE_DEFAULT_TITLE", "Moved conversation") or "Moved conversation"
        )[:100]

        # --- Logging ---
        self.LOG_LEVEL = (_str("LOG_LEVEL", "INFO") or "INFO").upper()
        self.LOG_FORMAT = (_str("LOG_FORMAT", "HUMAN") or "HUMAN").upper()

    @property
    def guild_ids(self) -> Optional[list[int]]:
        """Guilds to register commands in; ``None`` registers globally."""
        return [self.DISCORD_GUILD] if self.DISCORD_GUILD else None

    def move_settings(self) -> MoveSettings:
        return MoveSettings(
            message_limit=self.MOVE_MESSAGE_LIMIT,
            max_time_span=self.MOVE_MAX_TIME_SPAN_SECONDS,
            lock_timeout=self.MOVE_LOCK_TIMEOUT_SECONDS,
            lock_poll_interval=self.MOVE_LOCK_POLL_SECONDS,
            correction_window=self.MOVE_CORRECTION_WINDOW_SECONDS,
            edit_prompt_timeout=self.MOVE_EDIT_PROMPT_TIMEOUT_SECONDS,
            default_title=self.MOVE_DEFAULT_TITLE,
        )
