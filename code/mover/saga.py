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
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger("relocord.saga")

Undo = Callable[[], Awaitable[object]]


@dataclass
class _Step:
    name: str
    undo: Undo


class Saga:
    """
    Undo log for a chain of remote side effects.

    ``unwind`` runs the recorded compensations newest first. A failing
    compensation is logged and collected; the remaining ones still run.
    """

    def __init__(self) -> None:
        self._steps: list[_Step] = []

    def record(self, name: str, undo: Undo) -> None:
        self._steps.append(_Step(name, undo))

    def __len__(self) -> int:
        return len(self._steps)

    async def unwind(self) -> list[BaseException]:
        errors: list[BaseException] = []
        while self._steps:
            step = self._steps.pop()
            try:
                await step.undo()
                logger.debug("[↩️] Rolled back: %s", step.name)
            except Exception as e:
                logger.warning("[⚠️] Rollback step %r failed: %s", step.name, e)
                errors.append(e)
        return errors

    def clear(self) -> None:
        self._steps.clear()
