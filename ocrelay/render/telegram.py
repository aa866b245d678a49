import httpx

from ocrelay.api.telegram import TelegramBotAPI
from ocrelay.core.exceptions import SinkError, TelegramError
from ocrelay.render.sink import MessageSink


class TelegramSink(MessageSink):
    def __init__(self, api: TelegramBotAPI) -> None:
        self.api = api

    async def create(self, chat_id: int, text: str) -> int:
        try:
            msg = await self.api.send_message(chat_id, text)
        except (TelegramError, httpx.HTTPError) as e:
            raise SinkError(f"send failed: {e}") from e
        return msg["message_id"]

    async def update(self, chat_id: int, message_id: int, text: str) -> None:
        try:
            await self.api.edit_message_text(chat_id, message_id, text)
        except TelegramError as e:
            raise SinkError(f"edit failed: {e}", content_unchanged=e.not_modified) from e
        except httpx.HTTPError as e:
            raise SinkError(f"edit failed: {e}") from e
