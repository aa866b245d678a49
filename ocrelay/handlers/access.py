import logging
import time
from typing import Callable, Dict, Iterable

logger = logging.getLogger(__name__)

RATE_LIMIT_INTERVAL = 2.0
STALE_AFTER = 60.0


class AccessGuard:
    """白名单 + 每个 chat 的最小发送间隔"""

    def __init__(
        self,
        allowed_users: Iterable[int] = (),
        admin_users: Iterable[int] = (),
        interval: float = RATE_LIMIT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.allowed = set(allowed_users)
        self.admins = set(admin_users)
        self.interval = interval
        self.clock = clock
        self._last: Dict[int, float] = {}

    def is_allowed(self, chat_id: int) -> bool:
        # 空白名单表示不限制
        if not self.allowed or chat_id in self.allowed:
            return True
        logger.warning(f"[AUTH BLOCKED] Unauthorized user attempt from chat {chat_id}")
        return False

    def is_admin(self, chat_id: int) -> bool:
        return not self.admins or chat_id in self.admins

    def check_rate(self, chat_id: int) -> bool:
        now = self.clock()
        last = self._last.get(chat_id)
        if last is not None and now - last < self.interval:
            return False
        self._last[chat_id] = now
        return True

    def prune(self) -> int:
        threshold = self.clock() - STALE_AFTER
        stale = [cid for cid, t in self._last.items() if t < threshold]
        for cid in stale:
            del self._last[cid]
        return len(stale)
