import logging
from typing import Optional

from ocrelay.core.registry import RegistryEntry, SessionRegistry
from ocrelay.render.dispatcher import ThrottledDispatcher
from ocrelay.sse.events import (
    IgnoredEvent,
    MessageUpdated,
    PartDelta,
    PartUpdated,
    StreamEvent,
    UnknownEvent,
)

logger = logging.getLogger(__name__)

GENERATOR_ROLE = "assistant"

STATUS_THINKING = "Thinking..."
STATUS_PROCESSING = "Processing..."
STATUS_TOOL = "Running tool..."

# part 类型 -> 快照到达时设置的状态行，空串表示清除
STEP_STATUS = {
    "step-start": STATUS_PROCESSING,
    "step-finish": "",
    "tool-invocation": STATUS_TOOL,
    "tool-call": STATUS_TOOL,
    "tool-result": "",
}


def _set_status(entry: RegistryEntry, status: str) -> bool:
    if entry.status == status:
        return False
    entry.status = status
    return True


def _tool_status(event: PartUpdated) -> str:
    if event.tool_status in ("completed", "error"):
        return ""
    if event.tool:
        return f"Running tool: {event.tool}..."
    return STATUS_TOOL


class PartStreamHandler:
    """把 part 级事件应用到注册表条目上，状态有变化时触发一次节流输出"""

    def __init__(self, registry: SessionRegistry, dispatcher: ThrottledDispatcher) -> None:
        self.registry = registry
        self.dispatcher = dispatcher

    async def handle(self, event: StreamEvent) -> None:
        if isinstance(event, PartUpdated):
            await self.on_part_updated(event)
        elif isinstance(event, PartDelta):
            await self.on_part_delta(event)
        elif isinstance(event, MessageUpdated):
            await self.on_message_updated(event)
        elif isinstance(event, IgnoredEvent):
            pass
        elif isinstance(event, UnknownEvent):
            logger.debug(f"Unhandled event: {event.type}")

    async def on_part_updated(self, event: PartUpdated) -> None:
        if not event.session_id:
            return

        def apply(entry: RegistryEntry) -> bool:
            kind = event.kind
            if kind == "text":
                if event.part_id in entry.aux_part_ids:
                    return False
                entry.active_part_id = event.part_id
                changed = False
                if event.text and event.text != entry.text:
                    entry.text = event.text
                    changed = True
                return _set_status(entry, "") or changed
            if kind == "reasoning":
                entry.aux_part_ids.add(event.part_id)
                if entry.active_part_id == event.part_id:
                    entry.active_part_id = ""
                return _set_status(entry, "" if event.text else STATUS_THINKING)
            if kind == "tool":
                return _set_status(entry, _tool_status(event))
            if kind in STEP_STATUS:
                return _set_status(entry, STEP_STATUS[kind])
            return False

        await self._apply(event.session_id, apply)

    async def on_part_delta(self, event: PartDelta) -> None:
        if not event.session_id or event.field != "text":
            return

        def apply(entry: RegistryEntry) -> bool:
            # 推理内容的增量不进入可见文本
            if event.part_id in entry.aux_part_ids:
                return False
            if event.part_id:
                entry.active_part_id = event.part_id
            changed = _set_status(entry, "")
            if event.delta:
                entry.text += event.delta
                changed = True
            return changed

        await self._apply(event.session_id, apply)

    async def on_message_updated(self, event: MessageUpdated) -> None:
        if not event.session_id or event.role != GENERATOR_ROLE or not event.finish:
            return
        entry: Optional[RegistryEntry] = self.registry.get(event.session_id)
        if entry is None:
            return
        await self.dispatcher.emit_final(event.session_id)
        if await self.registry.remove(entry):
            logger.info(f"Complete for session {event.session_id} (chat {entry.chat_id}, finish={event.finish})")

    async def _apply(self, session_id: str, fn) -> None:
        changed = await self.registry.update(session_id, fn)
        # None: 会话未注册或已完成，属于正常情况
        if changed:
            await self.dispatcher.emit(session_id)
