import json

import httpx
import pytest

from ocrelay.api.telegram import TelegramBotAPI
from ocrelay.core.exceptions import SinkError, TelegramError
from ocrelay.render.telegram import TelegramSink


def make_api(handler):
    return TelegramBotAPI("123:abc", transport=httpx.MockTransport(handler))


async def test_send_message():
    def handler(request):
        assert request.url.path == "/bot123:abc/sendMessage"
        assert json.loads(request.content) == {"chat_id": 42, "text": "hi"}
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 9}})

    sink = TelegramSink(make_api(handler))
    assert await sink.create(42, "hi") == 9


async def test_not_modified_is_classified():
    body = {"ok": False, "error_code": 400, "description": "Bad Request: message is not modified"}
    sink = TelegramSink(make_api(lambda r: httpx.Response(400, json=body)))
    with pytest.raises(SinkError) as exc:
        await sink.update(42, 9, "same")
    assert exc.value.content_unchanged is True


async def test_other_errors_are_not_benign():
    body = {"ok": False, "error_code": 403, "description": "Forbidden: bot was blocked by the user"}
    sink = TelegramSink(make_api(lambda r: httpx.Response(403, json=body)))
    with pytest.raises(SinkError) as exc:
        await sink.update(42, 9, "text")
    assert exc.value.content_unchanged is False
    with pytest.raises(SinkError):
        await sink.create(42, "text")


async def test_api_error_carries_code():
    api = make_api(lambda r: httpx.Response(429, json={"ok": False, "error_code": 429, "description": "Too Many Requests"}))
    with pytest.raises(TelegramError) as exc:
        await api.send_chat_action(42)
    assert exc.value.error_code == 429


async def test_get_updates_passes_offset():
    def handler(request):
        params = json.loads(request.content)
        assert params["offset"] == 11
        assert params["timeout"] == 5
        return httpx.Response(200, json={"ok": True, "result": [{"update_id": 11}]})

    api = make_api(handler)
    assert await api.get_updates(11, timeout=5) == [{"update_id": 11}]
    await api.aclose()
