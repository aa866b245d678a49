"""
测试公共夹具：内存 sink、可控时钟、事件构造函数
"""
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest

from ocrelay.core.exceptions import SinkError
from ocrelay.core.registry import SessionRegistry
from ocrelay.handlers.parts_stream import PartStreamHandler
from ocrelay.render.dispatcher import ThrottledDispatcher
from ocrelay.render.sink import MessageSink


class MemorySink(MessageSink):
    """记录所有调用；与 Telegram 一样，相同内容的编辑会报 not modified"""

    def __init__(self) -> None:
        self.messages: Dict[Tuple[int, int], str] = {}
        self.calls: List[Tuple[str, int, int, str]] = []
        self.fail_with: Optional[Exception] = None
        self._next_id = 100

    async def create(self, chat_id: int, text: str) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        self._next_id += 1
        self.messages[(chat_id, self._next_id)] = text
        self.calls.append(("create", chat_id, self._next_id, text))
        return self._next_id

    async def update(self, chat_id: int, message_id: int, text: str) -> None:
        self.calls.append(("update", chat_id, message_id, text))
        if self.fail_with is not None:
            raise self.fail_with
        if self.messages.get((chat_id, message_id)) == text:
            raise SinkError("Bad Request: message is not modified", content_unchanged=True)
        self.messages[(chat_id, message_id)] = text

    def texts(self) -> List[str]:
        return [c[3] for c in self.calls]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def part_updated(session_id: str, part_id: str, kind: str, text: str = "", **extra: Any) -> Dict[str, Any]:
    part = {"id": part_id, "sessionID": session_id, "messageID": "msg_1", "type": kind, "text": text}
    part.update(extra)
    return {"type": "message.part.updated", "properties": {"part": part}}


def part_delta(session_id: str, part_id: str, delta: str, field: str = "text") -> Dict[str, Any]:
    return {
        "type": "message.part.delta",
        "properties": {"sessionID": session_id, "messageID": "msg_1", "partID": part_id, "field": field, "delta": delta},
    }


def message_updated(session_id: str, finish: str = "stop", role: str = "assistant") -> Dict[str, Any]:
    return {
        "type": "message.updated",
        "properties": {"info": {"id": "msg_1", "sessionID": session_id, "role": role, "finish": finish}},
    }


def sse(*events: Dict[str, Any]) -> bytes:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def dispatcher(registry, sink, clock) -> ThrottledDispatcher:
    return ThrottledDispatcher(registry, sink, throttle=1.0, clock=clock)


@pytest.fixture
def handler(registry, dispatcher) -> PartStreamHandler:
    return PartStreamHandler(registry, dispatcher)
