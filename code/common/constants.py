# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

"""Shared constants used across Relocord modules."""

MOVE_COMMAND_NAME = "Move Messages"

# Discord rejects webhook messages with empty content.
EMPTY_CONTENT_PLACEHOLDER = "_ _"

DELETE_EMOJIS = frozenset({"❌"})
EDIT_EMOJIS = frozenset({"📝", "✏", "✏️"})

WEBHOOK_NAME_TEMPLATE = "move conversation {message_id}"
NEW_POST_INITIAL_CONTENT = "Moved conversation"
AUDIT_LOG_REASON = "moved conversation"

DM_MAX_CHARS = 2000
THREAD_NAME_MAX_CHARS = 100
SELECT_MAX_OPTIONS = 25

BOT_REQUIRED_PERMISSIONS = [
    "manage_messages",
    "manage_webhooks",
    "manage_threads",
    "send_messages_in_threads",
]

REDACT_KEYS = {"DISCORD_TOKEN"}
