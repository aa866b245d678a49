"""
节流输出：把会话的累积文本和状态行组合成展示文本，写入目标消息
"""
import logging
import time
from typing import Callable, Optional

from ocrelay.core.exceptions import SinkError
from ocrelay.core.registry import EntrySnapshot, SessionRegistry
from ocrelay.render.sink import MessageSink

logger = logging.getLogger(__name__)

MAX_DISPLAY_LEN = 4000
TRUNCATION_MARKER = "\n\n... (truncated)"
COMPLETED_FALLBACK = "Completed"
STATUS_SEPARATOR = "\n\n"
DEFAULT_THROTTLE = 1.0


def compose_display(text: str, status: str) -> str:
    if not status:
        return text
    if not text:
        return status
    return text + STATUS_SEPARATOR + status


def truncate(display: str, limit: int = MAX_DISPLAY_LEN) -> str:
    if len(display) <= limit:
        return display
    return display[:limit] + TRUNCATION_MARKER


def is_content_unchanged(exc: Exception) -> bool:
    if isinstance(exc, SinkError) and exc.content_unchanged:
        return True
    return "message is not modified" in str(exc)


class ThrottledDispatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        sink: MessageSink,
        throttle: float = DEFAULT_THROTTLE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.sink = sink
        self.throttle = throttle
        self.clock = clock

    async def emit(self, session_id: str) -> bool:
        """节流窗口内直接跳过，被跳过的状态不排队"""
        snap = await self.registry.snapshot(session_id)
        if snap is None:
            return False
        if snap.last_emission is not None and self.clock() - snap.last_emission < self.throttle:
            return False
        display = compose_display(snap.text, snap.status)
        if not display:
            return False
        return await self._deliver(snap, truncate(display))

    async def emit_final(self, session_id: str) -> bool:
        """完成时的强制输出，不受节流限制，不带状态行"""
        snap = await self.registry.snapshot(session_id)
        if snap is None:
            return False
        return await self._deliver(snap, truncate(snap.text or COMPLETED_FALLBACK))

    async def _deliver(self, snap: EntrySnapshot, display: str) -> bool:
        # 调用 sink 时不持有注册表的锁
        new_message_id: Optional[int] = None
        try:
            if snap.message_id is None:
                new_message_id = await self.sink.create(snap.chat_id, display)
            else:
                await self.sink.update(snap.chat_id, snap.message_id, display)
        except Exception as e:
            if is_content_unchanged(e):
                logger.debug(f"Message unchanged for chat {snap.chat_id}")
            else:
                logger.warning(f"Failed to deliver update to chat {snap.chat_id}: {e}")
                return False
        await self.registry.mark_emitted(snap.entry, self.clock(), new_message_id)
        return True
