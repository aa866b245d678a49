"""
OpenCode /event 流的事件解码
把 SSE data 载荷解析成有限的几种事件类型，其他类型统一归为 IgnoredEvent / UnknownEvent
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from ocrelay.core.exceptions import EventDecodeError

PART_UPDATED = "message.part.updated"
PART_DELTA = "message.part.delta"
MESSAGE_UPDATED = "message.updated"

# 已知但与中继无关的事件，静默丢弃
IGNORED_TYPES = {
    "server.connected",
    "server.heartbeat",
    "session.idle",
    "session.created",
    "session.updated",
    "session.deleted",
    "session.status",
    "session.diff",
    "session.error",
    "session.compacted",
    "message.removed",
    "message.part.removed",
    "file.edited",
    "file.watcher.updated",
    "lsp.client.diagnostics",
    "lsp.updated",
    "installation.updated",
    "permission.updated",
    "permission.replied",
    "todo.updated",
}


@dataclass
class PartUpdated:
    """message.part.updated：某个 part 的完整快照"""
    session_id: str
    part_id: str
    kind: str
    text: str = ""
    message_id: str = ""
    tool: str = ""
    tool_status: str = ""


@dataclass
class PartDelta:
    """message.part.delta：某个 part 字段的增量"""
    session_id: str
    part_id: str
    field: str
    delta: str
    message_id: str = ""


@dataclass
class MessageUpdated:
    """message.updated：finish 非空即表示一轮生成结束"""
    session_id: str
    role: str
    finish: str = ""
    message_id: str = ""


@dataclass
class IgnoredEvent:
    type: str


@dataclass
class UnknownEvent:
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)


StreamEvent = Union[PartUpdated, PartDelta, MessageUpdated, IgnoredEvent, UnknownEvent]


def _str(obj: Dict[str, Any], key: str) -> str:
    v = obj.get(key)
    return v if isinstance(v, str) else ""


def _required(obj: Dict[str, Any], key: str, event_type: str, raw: str) -> str:
    v = _str(obj, key)
    if not v:
        raise EventDecodeError(f"{event_type}: missing '{key}'", raw=raw)
    return v


def _object(obj: Dict[str, Any], key: str, event_type: str, raw: str) -> Dict[str, Any]:
    v = obj.get(key)
    if not isinstance(v, dict):
        raise EventDecodeError(f"{event_type}: missing '{key}' object", raw=raw)
    return v


def decode_event(raw: str) -> StreamEvent:
    """解析一帧 data 载荷。

    JSON 不合法、缺少 type、必需的嵌套对象或会话/part ID 时抛出 EventDecodeError，
    由调用方记录并丢弃该帧。
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as e:
        raise EventDecodeError(f"invalid JSON: {e}", raw=raw) from e
    if not isinstance(payload, dict):
        raise EventDecodeError("event payload is not an object", raw=raw)

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventDecodeError("event has no type", raw=raw)

    props = payload.get("properties")
    if props is None:
        props = {}
    if not isinstance(props, dict):
        raise EventDecodeError(f"{event_type}: properties is not an object", raw=raw)

    if event_type == PART_UPDATED:
        part = _object(props, "part", event_type, raw)
        state = part.get("state") if isinstance(part.get("state"), dict) else {}
        return PartUpdated(
            session_id=_required(part, "sessionID", event_type, raw),
            part_id=_required(part, "id", event_type, raw),
            kind=_str(part, "type"),
            text=_str(part, "text"),
            message_id=_str(part, "messageID"),
            tool=_str(part, "tool"),
            tool_status=_str(state, "status"),
        )
    if event_type == PART_DELTA:
        return PartDelta(
            session_id=_required(props, "sessionID", event_type, raw),
            part_id=_required(props, "partID", event_type, raw),
            field=_str(props, "field"),
            delta=_str(props, "delta"),
            message_id=_str(props, "messageID"),
        )
    if event_type == MESSAGE_UPDATED:
        info = _object(props, "info", event_type, raw)
        return MessageUpdated(
            session_id=_required(info, "sessionID", event_type, raw),
            role=_str(info, "role"),
            finish=_str(info, "finish"),
            message_id=_str(info, "id"),
        )
    if event_type in IGNORED_TYPES:
        return IgnoredEvent(type=event_type)
    return UnknownEvent(type=event_type, properties=props)


def session_of(event: StreamEvent) -> Optional[str]:
    """返回事件所属的会话 ID，无法路由的事件返回 None"""
    if isinstance(event, (PartUpdated, PartDelta, MessageUpdated)):
        return event.session_id or None
    return None
