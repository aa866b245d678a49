"""
SSE 长连接管理
单个后台任务读取 OpenCode /event，解码后按会话 ID 分发；断线按固定间隔重连
"""
import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from ocrelay.api.client import OpenCodeClient
from ocrelay.core.exceptions import EventDecodeError, OpenCodeError
from ocrelay.core.registry import SessionRegistry
from ocrelay.handlers.parts_stream import PartStreamHandler
from ocrelay.render.dispatcher import DEFAULT_THROTTLE, ThrottledDispatcher
from ocrelay.render.sink import MessageSink
from ocrelay.sse.events import decode_event
from ocrelay.sse.reader import aiter_sse_data

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 2.0


class StreamClosed(Exception):
    """服务端正常关闭了事件流"""


class StreamManager:
    def __init__(
        self,
        client: OpenCodeClient,
        sink: MessageSink,
        throttle: float = DEFAULT_THROTTLE,
        reconnect_delay: float = RECONNECT_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.reconnect_delay = reconnect_delay
        self.registry = SessionRegistry()
        self.dispatcher = ThrottledDispatcher(self.registry, sink, throttle=throttle, clock=clock)
        self.handler = PartStreamHandler(self.registry, self.dispatcher)
        self.connected = False

    async def register(self, session_id: str, chat_id: int, message_id: Optional[int] = None) -> None:
        await self.registry.register(session_id, chat_id, message_id)

    async def unregister(self, session_id: str) -> None:
        await self.registry.unregister(session_id)

    def active_count(self) -> int:
        return self.registry.active_count()

    async def run(self) -> None:
        """一直运行直到所在任务被取消；取消时 CancelledError 原样抛出"""
        logger.info(f"Starting SSE connection to {self.client.base}/event")
        while True:
            try:
                await self._connect_and_read()
            except (httpx.HTTPError, OpenCodeError, StreamClosed) as e:
                logger.warning(f"Connection error: {e}, retrying in {self.reconnect_delay:g}s...")
            except Exception as e:
                logger.exception(f"Unexpected stream error: {e}, retrying in {self.reconnect_delay:g}s...")
            finally:
                if self.connected:
                    self.connected = False
                    logger.info("Disconnected from SSE stream")
            await asyncio.sleep(self.reconnect_delay)

    async def _connect_and_read(self) -> None:
        async with self.client.open_event_stream() as resp:
            self.connected = True
            logger.info("Connected to SSE stream")
            async for data in aiter_sse_data(resp):
                await self.process(data)
        raise StreamClosed("SSE stream closed unexpectedly")

    async def process(self, data: str) -> None:
        try:
            event = decode_event(data)
        except EventDecodeError as e:
            logger.warning(f"Failed to parse event: {e.message}")
            return
        await self.handler.handle(event)
