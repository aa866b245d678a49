"""
chat_id -> OpenCode 会话 的持久化映射，保存在一个 JSON 文件里
"""
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    chat_id: int
    session_id: str
    title: str = ""
    agent: str = ""
    model_provider: str = ""
    model_id: str = ""
    message_count: int = 0
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)


class SessionStore:
    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._sessions: Dict[int, ChatSession] = self._load()

    def _load(self) -> Dict[int, ChatSession]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
            return {int(k): ChatSession(**v) for k, v in data.items()}
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Session store {self.path} unreadable, starting empty: {e}")
            return {}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {str(k): asdict(v) for k, v in self._sessions.items()}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2))
        tmp.replace(self.path)

    def get(self, chat_id: int) -> Optional[ChatSession]:
        return self._sessions.get(chat_id)

    def set(self, session: ChatSession) -> None:
        self._sessions[session.chat_id] = session
        self._save()

    def delete(self, chat_id: int) -> bool:
        if self._sessions.pop(chat_id, None) is None:
            return False
        self._save()
        return True

    def increment(self, chat_id: int) -> None:
        s = self._sessions.get(chat_id)
        if s is None:
            return
        s.message_count += 1
        s.last_used = time.time()
        self._save()

    def list_all(self) -> List[ChatSession]:
        return sorted(self._sessions.values(), key=lambda s: s.last_used, reverse=True)

    def delete_all(self) -> None:
        self._sessions.clear()
        self._save()
