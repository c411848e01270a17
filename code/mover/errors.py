# =============================================================================
#  Relocord
#  Copyright (C) 2025 github.com/Relocord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

from typing import Optional, Sequence


class PlatformError(Exception):
    """A remote call made through the platform adapter failed."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class MoveError(Exception):
    """Base for failures that end a relocation; ``str()`` is shown to the user."""


class ChannelBusy(MoveError):
    def __init__(self, channel_id: int, message: Optional[str] = None) -> None:
        super().__init__(
            message or "channel is already used by another move operation"
        )
        self.channel_id = channel_id


class MoveValidationError(MoveError):
    pass


class MoveCancelled(MoveError):
    def __init__(self) -> None:
        super().__init__("Move cancelled.")


class DestinationResolutionError(MoveError):
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class RelayFailure(MoveError):
    def __init__(
        self,
        cause: BaseException,
        *,
        failed_index: int,
        relayed_count: int,
        rollback_errors: Sequence[BaseException] = (),
    ) -> None:
        super().__init__(f"failed to move messages: {cause}")
        self.cause = cause
        self.failed_index = failed_index
        self.relayed_count = relayed_count
        self.rollback_errors = list(rollback_errors)


class UnconfirmedRelay(PlatformError):
    def __init__(self) -> None:
        super().__init__("failed to wait for webhook message")
