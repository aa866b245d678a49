import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ocrelay.core.exceptions import OpenCodeError

logger = logging.getLogger(__name__)


def _error_detail(text: str) -> Any:
    try:
        j = json.loads(text)
    except ValueError:
        return text
    if isinstance(j, dict):
        return j.get("detail") or j.get("message") or j.get("error") or j
    return j


def _check(r: httpx.Response, *ok: int) -> None:
    # 显式检查状态码，把服务端的错误说明带出来
    if r.status_code in (ok or (200,)):
        return
    detail = _error_detail(r.text)
    raise OpenCodeError(f"{r.request.method} {r.request.url.path} {r.reason_phrase}: {detail}", r.status_code)


class OpenCodeClient:
    def __init__(self, base_url: str, timeout: float = 30, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: Optional[float]) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base, timeout=timeout, trust_env=False, transport=self.transport)

    async def _request(self, method: str, path: str, *ok: int, **kwargs) -> httpx.Response:
        async with self._client(self.timeout) as s:
            r = await s.request(method, path, **kwargs)
            _check(r, *ok)
            return r

    async def health(self) -> Dict[str, Any]:
        r = await self._request("GET", "/global/health")
        data = r.json()
        if not data.get("healthy"):
            raise OpenCodeError("server is not healthy", r.status_code)
        return data

    async def list_providers(self) -> List[Dict[str, Any]]:
        """只返回已连接的 provider"""
        r = await self._request("GET", "/provider")
        data = r.json()
        connected = set(data.get("connected") or [])
        return [p for p in data.get("all") or [] if p.get("id") in connected]

    async def create_session(self, title: str) -> Dict[str, Any]:
        r = await self._request("POST", "/session", 200, 201, json={"title": title})
        return r.json()

    async def list_sessions(self) -> List[Dict[str, Any]]:
        r = await self._request("GET", "/session")
        return r.json() or []

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        r = await self._request("GET", f"/session/{session_id}")
        return r.json()

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/session/{session_id}", 200, 204)

    async def rename_session(self, session_id: str, title: str) -> Dict[str, Any]:
        r = await self._request("PATCH", f"/session/{session_id}", json={"title": title})
        return r.json()

    async def get_messages(self, session_id: str) -> List[Dict[str, Any]]:
        """拉取历史消息，只保留 text 类型的 part 并按行拼接"""
        r = await self._request("GET", f"/session/{session_id}/message")
        messages = []
        for m in r.json() or []:
            info = m.get("info") or {}
            texts = [p.get("text") for p in m.get("parts") or [] if p.get("type") == "text" and p.get("text")]
            messages.append({
                "id": info.get("id", ""),
                "role": info.get("role", ""),
                "content": "\n".join(texts),
                "tokens": (info.get("tokens") or {}).get("total", 0),
                "cost": info.get("cost", 0),
            })
        return messages

    async def prompt_async(
        self,
        session_id: str,
        text: str,
        agent: Optional[str] = None,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> None:
        body: Dict[str, Any] = {"parts": [{"type": "text", "text": text}]}
        if agent:
            body["agent"] = agent
        if provider_id and model_id:
            body["model"] = {"providerID": provider_id, "modelID": model_id}
        r = await self._request("POST", f"/session/{session_id}/prompt_async", 200, 202, 204, json=body)
        if r.status_code == 204 or not r.content:
            return
        try:
            ok = r.json().get("success", True)
        except (ValueError, AttributeError):
            ok = True
        if not ok:
            raise OpenCodeError("prompt was not successful", r.status_code)

    async def abort(self, session_id: str) -> None:
        await self._request("POST", f"/session/{session_id}/abort", 200, 202)

    async def get_diff(self, session_id: str) -> str:
        r = await self._request("GET", f"/session/{session_id}/diff")
        return r.text

    @asynccontextmanager
    async def open_event_stream(self) -> AsyncIterator[httpx.Response]:
        """打开 GET /event 长连接，不设读超时"""
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        async with self._client(None) as s:
            async with s.stream("GET", "/event", headers=headers) as r:
                if r.status_code != 200:
                    raw = await r.aread()
                    detail = _error_detail(raw.decode("utf-8", errors="ignore"))
                    raise OpenCodeError(f"event stream {r.reason_phrase}: {detail}", r.status_code)
                yield r
