import logging
from typing import Any, Dict, List, Optional

import httpx

from ocrelay.core.exceptions import TelegramError

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"


class TelegramBotAPI:
    """Telegram Bot API 的最小封装，只包含中继需要的几个方法"""

    def __init__(self, token: str, base_url: str = API_BASE, timeout: float = 10,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base = f"{base_url.rstrip('/')}/bot{token}"
        self.timeout = timeout
        self._http = httpx.AsyncClient(timeout=timeout, trust_env=False, transport=transport)

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        r = await self._http.post(f"{self.base}/{method}", json=params or {}, timeout=timeout or self.timeout)
        try:
            data = r.json()
        except ValueError:
            r.raise_for_status()
            raise TelegramError(f"{method}: non-JSON response", r.status_code)
        if not data.get("ok"):
            raise TelegramError(data.get("description") or f"{method} failed", data.get("error_code") or r.status_code)
        return data.get("result")

    async def send_message(self, chat_id: int, text: str) -> Dict[str, Any]:
        return await self.call("sendMessage", {"chat_id": chat_id, "text": text})

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> Any:
        return await self.call("editMessageText", {"chat_id": chat_id, "message_id": message_id, "text": text})

    async def send_chat_action(self, chat_id: int, action: str = "typing") -> None:
        await self.call("sendChatAction", {"chat_id": chat_id, "action": action})

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 30) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            params["offset"] = offset
        # 长轮询，HTTP 超时要比 Telegram 侧的 timeout 更长
        return await self.call("getUpdates", params, timeout=timeout + 10) or []

    async def set_my_commands(self, commands: List[Dict[str, str]]) -> None:
        await self.call("setMyCommands", {"commands": commands})

    async def aclose(self) -> None:
        await self._http.aclose()
