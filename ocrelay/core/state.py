import time
from dataclasses import dataclass, field

from ocrelay.api.client import OpenCodeClient
from ocrelay.api.telegram import TelegramBotAPI
from ocrelay.core.config import RelayConfig
from ocrelay.core.store import SessionStore
from ocrelay.core.stream import StreamManager
from ocrelay.handlers.access import AccessGuard


@dataclass
class BotContext:
    """请求处理层共享的依赖"""
    cfg: RelayConfig
    api: TelegramBotAPI
    client: OpenCodeClient
    store: SessionStore
    stream: StreamManager
    guard: AccessGuard
    started_at: float = field(default_factory=time.time)

    def current_session_id(self, chat_id: int) -> str:
        s = self.store.get(chat_id)
        return s.session_id if s else ""

    def current_agent(self, chat_id: int) -> str:
        s = self.store.get(chat_id)
        return (s.agent if s else "") or self.cfg.default_agent
