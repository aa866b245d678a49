import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, NamedTuple, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    """一个进行中的 OpenCode 会话与其 Telegram 目标消息的绑定"""
    session_id: str
    chat_id: int
    message_id: Optional[int] = None
    text: str = ""
    status: str = ""
    active_part_id: str = ""
    aux_part_ids: Set[str] = field(default_factory=set)
    last_emission: Optional[float] = None


class EntrySnapshot(NamedTuple):
    entry: RegistryEntry
    chat_id: int
    message_id: Optional[int]
    text: str
    status: str
    last_emission: Optional[float]


class SessionRegistry:
    """session_id -> RegistryEntry，所有读写都经过同一把锁。

    锁只在内存操作期间持有，不会跨越任何网络调用。
    """

    def __init__(self) -> None:
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = asyncio.Lock()

    async def register(self, session_id: str, chat_id: int, message_id: Optional[int] = None) -> RegistryEntry:
        entry = RegistryEntry(session_id=session_id, chat_id=chat_id, message_id=message_id)
        async with self._lock:
            # 重新注册即整体重置
            self._entries[session_id] = entry
        logger.info(f"Registered session {session_id} -> chat {chat_id}, message {message_id}")
        return entry

    async def unregister(self, session_id: str) -> bool:
        async with self._lock:
            entry = self._entries.pop(session_id, None)
        if entry is not None:
            logger.info(f"Unregistered session {session_id} (chat {entry.chat_id})")
        return entry is not None

    async def remove(self, entry: RegistryEntry) -> bool:
        """仅当 entry 仍是当前注册项时才删除，避免误删期间重新注册的新项"""
        async with self._lock:
            if self._entries.get(entry.session_id) is not entry:
                return False
            del self._entries[entry.session_id]
            entry.aux_part_ids.clear()
        return True

    async def update(self, session_id: str, fn: Callable[[RegistryEntry], bool]) -> Optional[bool]:
        """在锁内对条目执行 fn，返回 fn 的结果；条目不存在时返回 None"""
        async with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            return fn(entry)

    async def snapshot(self, session_id: str) -> Optional[EntrySnapshot]:
        async with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            return EntrySnapshot(entry, entry.chat_id, entry.message_id, entry.text, entry.status, entry.last_emission)

    async def mark_emitted(self, entry: RegistryEntry, when: float, message_id: Optional[int] = None) -> None:
        async with self._lock:
            if self._entries.get(entry.session_id) is not entry:
                return
            if message_id is not None:
                entry.message_id = message_id
            entry.last_emission = when

    def get(self, session_id: str) -> Optional[RegistryEntry]:
        return self._entries.get(session_id)

    def chat_of(self, session_id: str) -> Optional[int]:
        entry = self._entries.get(session_id)
        return entry.chat_id if entry else None

    def active_count(self) -> int:
        return len(self._entries)
