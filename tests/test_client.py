import json

import httpx
import pytest

from ocrelay.api.client import OpenCodeClient
from ocrelay.core.exceptions import OpenCodeError


def make_client(handler):
    return OpenCodeClient("http://opencode.test/", transport=httpx.MockTransport(handler))


async def test_create_session_posts_title():
    def handler(request):
        assert request.method == "POST"
        assert request.url.path == "/session"
        assert json.loads(request.content) == {"title": "Telegram Chat 42"}
        return httpx.Response(201, json={"id": "ses_1", "title": "Telegram Chat 42"})

    client = make_client(handler)
    assert client.base == "http://opencode.test"
    assert (await client.create_session("Telegram Chat 42"))["id"] == "ses_1"


async def test_prompt_async_payload():
    bodies = []

    def handler(request):
        assert request.url.path == "/session/ses_1/prompt_async"
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    client = make_client(handler)
    await client.prompt_async("ses_1", "hi")
    await client.prompt_async("ses_1", "hi", agent="build", provider_id="anthropic", model_id="sonnet")
    assert bodies[0] == {"parts": [{"type": "text", "text": "hi"}]}
    assert bodies[1]["agent"] == "build"
    assert bodies[1]["model"] == {"providerID": "anthropic", "modelID": "sonnet"}


async def test_prompt_async_unsuccessful_body():
    client = make_client(lambda r: httpx.Response(200, json={"success": False}))
    with pytest.raises(OpenCodeError):
        await client.prompt_async("ses_1", "hi")


async def test_error_status_carries_detail():
    client = make_client(lambda r: httpx.Response(404, json={"detail": "session not found"}))
    with pytest.raises(OpenCodeError) as exc:
        await client.get_session("nope")
    assert exc.value.status_code == 404
    assert "session not found" in str(exc.value)


async def test_get_messages_flattens_text_parts():
    payload = [
        {"info": {"id": "m1", "role": "user"}, "parts": [{"type": "text", "text": "question"}]},
        {
            "info": {"id": "m2", "role": "assistant", "tokens": {"total": 12}, "cost": 0.01},
            "parts": [
                {"type": "reasoning", "text": "hidden"},
                {"type": "text", "text": "line one"},
                {"type": "tool", "tool": "bash"},
                {"type": "text", "text": "line two"},
            ],
        },
    ]
    client = make_client(lambda r: httpx.Response(200, json=payload))
    messages = await client.get_messages("ses_1")
    assert messages[0]["content"] == "question"
    assert messages[1] == {"id": "m2", "role": "assistant", "content": "line one\nline two", "tokens": 12, "cost": 0.01}


async def test_health_and_providers():
    def handler(request):
        if request.url.path == "/global/health":
            return httpx.Response(200, json={"healthy": True, "version": "1.0"})
        return httpx.Response(200, json={"all": [{"id": "a"}, {"id": "b"}], "connected": ["b"]})

    client = make_client(handler)
    assert (await client.health())["version"] == "1.0"
    assert await client.list_providers() == [{"id": "b"}]


async def test_unhealthy_server_raises():
    client = make_client(lambda r: httpx.Response(200, json={"healthy": False}))
    with pytest.raises(OpenCodeError):
        await client.health()


async def test_session_management_calls():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "DELETE":
            return httpx.Response(204)
        if request.url.path.endswith("/diff"):
            return httpx.Response(200, text="--- a\n+++ b\n")
        if request.method == "PATCH":
            return httpx.Response(200, json={"id": "ses_1", "title": json.loads(request.content)["title"]})
        return httpx.Response(200, json=[{"id": "ses_1"}] if request.url.path == "/session" else True)

    client = make_client(handler)
    assert await client.list_sessions() == [{"id": "ses_1"}]
    assert (await client.rename_session("ses_1", "new"))["title"] == "new"
    await client.delete_session("ses_1")
    await client.abort("ses_1")
    assert "+++ b" in await client.get_diff("ses_1")
    assert calls == [
        ("GET", "/session"),
        ("PATCH", "/session/ses_1"),
        ("DELETE", "/session/ses_1"),
        ("POST", "/session/ses_1/abort"),
        ("GET", "/session/ses_1/diff"),
    ]
