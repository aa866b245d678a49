import logging
import time
from typing import Any, Dict, List

import httpx

from ocrelay.core.exceptions import OpenCodeError
from ocrelay.core.state import BotContext
from ocrelay.core.store import ChatSession
from ocrelay.render.dispatcher import truncate

logger = logging.getLogger(__name__)

HELP = """
/start              重新开始
/help               显示帮助
/new                开启新对话
/stop               中止当前生成
/sessions           列出所有会话
/switch <id>        切换到指定会话
/rename <title>     重命名当前会话
/delete <id>        删除会话（管理员）
/purge              删除全部会话（管理员）
/agent [name]       查看/设置 agent
/model [p/m]        查看/设置模型
/clear              清除当前会话
/stats              使用统计
/diff               查看文件改动
/history            查看最近消息
/status             运行状态
""".strip()

BOT_COMMANDS = [
    {"command": "start", "description": "Start fresh"},
    {"command": "help", "description": "Show commands"},
    {"command": "new", "description": "New conversation"},
    {"command": "stop", "description": "Stop current operation"},
    {"command": "sessions", "description": "List all sessions"},
    {"command": "switch", "description": "Switch to session"},
    {"command": "rename", "description": "Rename session"},
    {"command": "delete", "description": "Delete session"},
    {"command": "purge", "description": "Delete all sessions"},
    {"command": "agent", "description": "Switch agent"},
    {"command": "model", "description": "Switch model"},
    {"command": "clear", "description": "Clear current session"},
    {"command": "stats", "description": "Usage statistics"},
    {"command": "diff", "description": "Show file changes"},
    {"command": "history", "description": "Show message history"},
    {"command": "status", "description": "Bot status"},
]

HISTORY_LIMIT = 10


def short_id(session_id: str) -> str:
    if len(session_id) <= 8:
        return session_id
    return session_id[:8] + "..."


async def handle_command(line: str, chat_id: int, ctx: BotContext) -> bool:
    """处理以 / 开头的命令，返回 False 表示不是已知命令"""
    parts = line.strip().split(maxsplit=1)
    # 群聊里的命令形如 /help@botname
    cmd = parts[0].split("@", 1)[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""

    async def reply(text: str) -> None:
        await ctx.api.send_message(chat_id, truncate(text))

    if not ctx.guard.is_allowed(chat_id):
        await reply("Unauthorized. You are not allowed to use this bot.")
        return True

    try:
        return await _dispatch(cmd, arg, chat_id, ctx, reply)
    except (OpenCodeError, httpx.HTTPError) as e:
        logger.warning(f"Command {cmd} failed for chat {chat_id}: {e}")
        await reply(f"命令执行出错: {e}")
        return True


async def _dispatch(cmd: str, arg: str, chat_id: int, ctx: BotContext, reply) -> bool:
    session_id = ctx.current_session_id(chat_id)

    if cmd in ("/start", "/new"):
        if session_id:
            await ctx.stream.unregister(session_id)
        ctx.store.delete(chat_id)
        await reply("已开启新对话，直接发送消息即可。" if cmd == "/new" else "你好！直接发送消息即可开始对话，/help 查看命令。")
        return True

    if cmd in ("/help", "/h"):
        await reply(HELP)
        return True

    if cmd == "/stop":
        if session_id:
            await ctx.client.abort(session_id)
        await reply("已中止。")
        return True

    if cmd == "/sessions":
        sessions = await ctx.client.list_sessions()
        if not sessions:
            await reply("暂无会话。")
            return True
        lines = []
        for s in sessions:
            mark = "* " if s.get("id") == session_id else "  "
            lines.append(f"{mark}{short_id(s.get('id', ''))}  {s.get('title', '')}")
        await reply("会话列表:\n" + "\n".join(lines))
        return True

    if cmd == "/switch":
        if not arg:
            await reply("用法: /switch <id>")
            return True
        target = await _resolve_session(ctx, arg)
        if target is None:
            await reply("未找到会话: " + arg)
            return True
        if session_id:
            await ctx.stream.unregister(session_id)
        s = _preferences(ctx, chat_id)
        s.session_id, s.title, s.message_count = target["id"], target.get("title", ""), 0
        ctx.store.set(s)
        await reply("已切换到会话: " + short_id(target["id"]))
        return True

    if cmd == "/rename":
        if not session_id or not arg:
            await reply("用法: /rename <title>（需要当前有会话）")
            return True
        await ctx.client.rename_session(session_id, arg)
        s = ctx.store.get(chat_id)
        s.title = arg
        ctx.store.set(s)
        await reply("已重命名为: " + arg)
        return True

    if cmd == "/delete":
        if not ctx.guard.is_admin(chat_id):
            await reply("只有管理员可以删除会话。")
            return True
        if not arg:
            await reply("用法: /delete <id>")
            return True
        target = await _resolve_session(ctx, arg)
        if target is None:
            await reply("未找到会话: " + arg)
            return True
        await ctx.client.delete_session(target["id"])
        await ctx.stream.unregister(target["id"])
        for s in ctx.store.list_all():
            if s.session_id == target["id"]:
                ctx.store.delete(s.chat_id)
        await reply("已删除会话: " + short_id(target["id"]))
        return True

    if cmd == "/purge":
        if not ctx.guard.is_admin(chat_id):
            await reply("只有管理员可以删除会话。")
            return True
        sessions = await ctx.client.list_sessions()
        failed = 0
        for s in sessions:
            try:
                await ctx.client.delete_session(s["id"])
            except OpenCodeError as e:
                failed += 1
                logger.warning(f"Failed to delete session {s.get('id')}: {e}")
            await ctx.stream.unregister(s["id"])
        ctx.store.delete_all()
        await reply(f"已删除 {len(sessions) - failed} 个会话" + (f"，{failed} 个失败。" if failed else "。"))
        return True

    if cmd == "/agent":
        agents = ctx.cfg.agents
        current = ctx.current_agent(chat_id)
        if not arg:
            lines = [f"{'* ' if name == current else '  '}{name} - {desc}" for name, desc in agents.items()]
            await reply("可用 agent:\n" + "\n".join(lines) + "\n用法: /agent <name>")
            return True
        if arg not in agents:
            await reply(f"Unknown agent: {arg}\n可用: {', '.join(agents)}")
            return True
        s = _preferences(ctx, chat_id)
        s.agent = arg
        ctx.store.set(s)
        await reply(f"已切换 agent: {arg} ({agents[arg]})")
        return True

    if cmd == "/model":
        if not arg:
            providers = await ctx.client.list_providers()
            if not providers:
                await reply("没有可用的 provider，请检查 OpenCode 连接。")
                return True
            s = ctx.store.get(chat_id)
            current = f"{s.model_provider}/{s.model_id}" if s and s.model_id else "默认"
            lines = [f"当前模型: {current}", "可用模型:"]
            for p in providers:
                for m in _models_of(p):
                    lines.append(f"  {p['id']}/{m.get('id', '')}  {m.get('name', '')}")
            lines.append("用法: /model <provider>/<model>")
            await reply("\n".join(lines))
            return True
        provider_id, _, model_id = arg.partition("/")
        if not provider_id or not model_id:
            await reply("格式错误，用法: /model provider/model（例如 /model openai/gpt-4）")
            return True
        s = _preferences(ctx, chat_id)
        s.model_provider, s.model_id = provider_id, model_id
        ctx.store.set(s)
        await reply(f"已切换模型: {provider_id}/{model_id}")
        return True

    if cmd == "/clear":
        ctx.store.delete(chat_id)
        if session_id:
            await ctx.stream.unregister(session_id)
            try:
                await ctx.client.delete_session(session_id)
            except (OpenCodeError, httpx.HTTPError) as e:
                logger.warning(f"Failed to delete session {session_id}: {e}")
        await reply("已清除当前会话。")
        return True

    if cmd == "/stats":
        rows = [s for s in ctx.store.list_all() if s.session_id]
        total = sum(s.message_count for s in rows)
        await reply(f"统计\n\n消息总数: {total}\n已保存会话: {len(rows)}")
        return True

    if cmd == "/diff":
        if not session_id:
            await reply("当前没有会话。")
            return True
        diff = await ctx.client.get_diff(session_id)
        await reply(diff.strip() or "没有文件改动。")
        return True

    if cmd == "/history":
        if not session_id:
            await reply("当前没有会话。")
            return True
        messages = await ctx.client.get_messages(session_id)
        recent = [m for m in messages if m["content"]][-HISTORY_LIMIT:]
        if not recent:
            await reply("暂无消息。")
            return True
        await reply("\n\n".join(f"[{m['role']}] {m['content']}" for m in recent))
        return True

    if cmd == "/status":
        uptime = int(time.time() - ctx.started_at)
        s = ctx.store.get(chat_id)
        await reply(
            f"OpenCode: {ctx.client.base}\n"
            f"事件流: {'已连接' if ctx.stream.connected else '未连接'}\n"
            f"进行中的会话: {ctx.stream.active_count()}\n"
            f"当前会话: {short_id(session_id) if session_id else '-'}"
            f"{f'（{s.message_count} 条消息）' if s and session_id else ''}\n"
            f"Agent: {ctx.current_agent(chat_id)}\n"
            f"模型: {f'{s.model_provider}/{s.model_id}' if s and s.model_id else '默认'}\n"
            f"运行时间: {uptime // 3600}h{uptime % 3600 // 60}m"
        )
        return True

    await reply("未知命令，输入 /help 查看帮助。")
    return False


async def _resolve_session(ctx: BotContext, prefix: str):
    """按 ID 或 ID 前缀查找会话"""
    prefix = prefix.rstrip(".")
    for s in await ctx.client.list_sessions():
        if s.get("id", "").startswith(prefix):
            return s
    return None


def _preferences(ctx: BotContext, chat_id: int) -> ChatSession:
    """返回 chat 的存储记录；还没有会话时建一条只带偏好的空记录"""
    s = ctx.store.get(chat_id)
    if s is None:
        s = ChatSession(chat_id=chat_id, session_id="")
    return s


def _models_of(provider: Dict[str, Any]) -> List[Dict[str, Any]]:
    # /provider 返回的 models 是 {modelID: model} 映射
    models = provider.get("models") or {}
    if isinstance(models, dict):
        return [dict(m, id=m.get("id", k)) for k, m in models.items()]
    return list(models)
