# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations
import logging
import os
import sys as _sys
import json as _json
import contextvars
from datetime import datetime, timezone

from common.constants import REDACT_KEYS


move_id_var = contextvars.ContextVar("move_id", default="-")
scope_var = contextvars.ContextVar("scope", default="-")

_EXTRA_KEYS = (
    "channel_id",
    "guild_id",
    "destination_id",
    "user_id",
    "relayed",
    "took_ms",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _redact_value(val):
    try:
        s = str(val)
        for k in REDACT_KEYS:
            envv = os.getenv(k)
            if envv and envv in s:
                s = s.replace(envv, "***REDACTED***")
        return s
    except Exception:
        return "<unprintable>"


class RedactFilter(logging.Filter):
    """Injects context + redacts secrets appearing in args/msg."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.move_id = move_id_var.get()
        record.scope = scope_var.get()
        try:
            if isinstance(record.args, tuple):
                record.args = tuple(
                    _redact_value(a) if isinstance(a, str) else a for a in record.args
                )
            if isinstance(record.msg, str):
                record.msg = _redact_value(record.msg)
        except Exception:
            pass
        return True


LEVEL_MARK = {
    logging.DEBUG: "🧩",
    logging.INFO: "✅",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


class HumanFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        mark = LEVEL_MARK.get(record.levelno, "•")
        ts = _now_iso()
        scope = getattr(record, "scope", "-")
        mid = getattr(record, "move_id", "-")
        msg = super().format(record)
        extras = []
        for k in _EXTRA_KEYS:
            v = getattr(record, k, None)
            if v not in (None, "", []):
                extras.append(f"{k}={v}")
        extras_s = f" | {' '.join(extras)}" if extras else ""
        return f"{ts} {mark} {record.levelname:<8} [{scope}] (move={mid}) {msg}{extras_s}"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "time": _now_iso(),
            "lvl": record.levelname,
            "msg": super().format(record),
            "scope": getattr(record, "scope", "-"),
            "move_id": getattr(record, "move_id", "-"),
            "logger": record.name,
        }
        for k in _EXTRA_KEYS:
            v = getattr(record, k, None)
            if v not in (None, "", []):
                base[k] = v
        return _json.dumps(base, separators=(",", ":"))


def configure_app_logging(level: str | None = None, fmt: str | None = None):
    """
    Unified logging config with:
    - LOG_FORMAT: HUMAN (default) or JSON
    - LOG_LEVEL: DEBUG/INFO/etc.
    - redaction + per-move context
    """
    fmt = (fmt or os.getenv("LOG_FORMAT", "HUMAN")).strip().upper()
    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).strip().upper()

    root = logging.getLogger("relocord")
    root.handlers.clear()
    h = logging.StreamHandler(stream=_sys.stdout)
    if fmt == "JSON":
        h.setFormatter(JSONFormatter("%(message)s"))
    else:
        h.setFormatter(HumanFormatter("%(message)s"))
    h.addFilter(RedactFilter())
    root.addHandler(h)

    root.propagate = False
    root.setLevel(getattr(logging, lvl, logging.INFO))

    for lib in (
        "discord",
        "discord.client",
        "discord.gateway",
        "discord.state",
        "discord.http",
    ):
        logging.getLogger(lib).setLevel(logging.WARNING)
    logging.getLogger("discord.client").setLevel(logging.ERROR)
    return root
