import asyncio, logging, time
from enum import Enum
from typing import Tuple, Dict, Optional

log = logging.getLogger("relocord.rate_limiter")

class ActionType(Enum):
    WEBHOOK_MESSAGE = "webhook_message"
    WEBHOOK_CREATE = "webhook_create"
    THREAD = "thread"
    DELETE_MESSAGE = "delete_message"
    DM = "dm"

class RateLimiter:
    """Token bucket holding ``capacity`` tokens refilled over ``period`` seconds."""

    def __init__(self, capacity: int, period: float):
        self._capacity = float(capacity)
        self._per_second = capacity / period
        self._tokens = float(capacity)
        self._stamp = time.monotonic()
        self._blocked_until = 0.0
        self._lock = asyncio.Lock()

    def _refill(self, now: float) -> None:
        gained = (now - self._stamp) * self._per_second
        self._tokens = min(self._capacity, self._tokens + gained)
        self._stamp = now

    async def acquire(self):
        async with self._lock:
            pause = self.remaining_cooldown()
            if pause:
                await asyncio.sleep(pause)

            self._refill(time.monotonic())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return

            await asyncio.sleep((1.0 - self._tokens) / self._per_second)
            self._stamp = time.monotonic()
            self._tokens = 0.0

    def backoff(self, seconds: float):
        self._blocked_until = max(self._blocked_until, time.monotonic() + max(0.0, seconds))

    def remaining_cooldown(self) -> float:
        return max(0.0, self._blocked_until - time.monotonic())


class RateLimitManager:
    def __init__(self, config: Dict[ActionType, Tuple[int, float]] = None):
        cfg = config or {
            ActionType.WEBHOOK_MESSAGE: (5, 2.5),
            ActionType.WEBHOOK_CREATE: (1, 10.0),
            ActionType.THREAD: (2, 5.0),
            ActionType.DELETE_MESSAGE: (5, 5.0),
            ActionType.DM: (2, 5.0),
        }
        self._limiters: Dict[ActionType, RateLimiter] = {
            a: RateLimiter(*cfg[a]) for a in cfg if a is not ActionType.WEBHOOK_MESSAGE
        }
        self._webhook_config = cfg.get(ActionType.WEBHOOK_MESSAGE, (5, 2.5))
        self._webhook_limiters: Dict[str, RateLimiter] = {}

    def _get(self, action: ActionType, key: str | None = None) -> Optional[RateLimiter]:
        if action is not ActionType.WEBHOOK_MESSAGE:
            return self._limiters.get(action)
        # one bucket per webhook, never shared
        if key is None:
            return None
        if key not in self._webhook_limiters:
            self._webhook_limiters[key] = RateLimiter(*self._webhook_config)
        return self._webhook_limiters[key]

    async def acquire(self, action: ActionType, key: str = None):
        lim = self._get(action, key)
        if not lim:
            return
        pause = lim.remaining_cooldown()
        if pause:
            log.info("[⏳] Holding %s for %.1fs (rate limit cooldown)", action.name, pause)
        await lim.acquire()

    def penalize(self, action: ActionType, seconds: float, key: str | None = None):
        lim = self._get(action, key)
        if lim:
            lim.backoff(seconds)

    def forget(self, key: str) -> None:
        """Drop the per-webhook limiter once its webhook is gone."""
        self._webhook_limiters.pop(key, None)

    def remaining(self, action: ActionType, key: str | None = None) -> float:
        lim = self._get(action, key)
        return lim.remaining_cooldown() if lim else 0.0
