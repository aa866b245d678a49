import asyncio
import logging
from typing import Any, Dict, Set

import httpx

from ocrelay.api.client import OpenCodeClient
from ocrelay.api.telegram import TelegramBotAPI
from ocrelay.commands import BOT_COMMANDS, handle_command
from ocrelay.core.config import RelayConfig, load_config, validate_config
from ocrelay.core.exceptions import ConfigError, OpenCodeError, RelayError, TelegramError
from ocrelay.core.state import BotContext
from ocrelay.core.store import SessionStore
from ocrelay.core.stream import StreamManager
from ocrelay.handlers.access import AccessGuard
from ocrelay.handlers.chat import handle_text
from ocrelay.render.telegram import TelegramSink

logger = logging.getLogger(__name__)

POLL_TIMEOUT = 30
POLL_RETRY_DELAY = 3.0
PRUNE_INTERVAL = 300.0


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx 每个请求都会打 INFO，长轮询下太吵
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_context(cfg: RelayConfig) -> BotContext:
    api = TelegramBotAPI(cfg.telegram_token)
    client = OpenCodeClient(cfg.opencode_url)
    stream = StreamManager(client, TelegramSink(api), throttle=cfg.edit_throttle,
                           reconnect_delay=cfg.reconnect_delay)
    return BotContext(
        cfg=cfg,
        api=api,
        client=client,
        store=SessionStore(cfg.store_path),
        stream=stream,
        guard=AccessGuard(cfg.allowed_users, cfg.admin_users),
    )


async def handle_update(ctx: BotContext, update: Dict[str, Any]) -> None:
    msg = update.get("message") or {}
    text = (msg.get("text") or "").strip()
    chat_id = (msg.get("chat") or {}).get("id")
    if not text or chat_id is None:
        return
    try:
        if text.startswith("/"):
            await handle_command(text, chat_id, ctx)
        else:
            await handle_text(ctx, chat_id, text)
    except (RelayError, httpx.HTTPError) as e:
        logger.warning(f"Failed to handle update {update.get('update_id')} from chat {chat_id}: {e}")
    except Exception:
        # 独立任务，没有调用方接收异常
        logger.exception(f"Unexpected error handling update {update.get('update_id')} from chat {chat_id}")


async def prune_loop(guard: AccessGuard) -> None:
    while True:
        await asyncio.sleep(PRUNE_INTERVAL)
        removed = guard.prune()
        logger.debug(f"[RATE LIMIT] Cleanup removed {removed} entries")


async def poll_updates(ctx: BotContext) -> None:
    offset = None
    pending: Set[asyncio.Task] = set()
    while True:
        try:
            updates = await ctx.api.get_updates(offset, timeout=POLL_TIMEOUT)
        except (TelegramError, httpx.HTTPError) as e:
            logger.warning(f"getUpdates failed: {e}, retrying in {POLL_RETRY_DELAY:g}s...")
            await asyncio.sleep(POLL_RETRY_DELAY)
            continue
        for update in updates:
            offset = update["update_id"] + 1
            # 每条消息一个任务，慢请求不阻塞后续消息
            task = asyncio.create_task(handle_update(ctx, update))
            pending.add(task)
            task.add_done_callback(pending.discard)


async def run_bot() -> None:
    cfg = load_config()
    setup_logging(cfg.log_level)
    validate_config(cfg)
    logger.info(f"Loaded config: OpenCode URL={cfg.opencode_url}, allowed users={len(cfg.allowed_users)}, store={cfg.store_path}")

    ctx = build_context(cfg)
    try:
        await ctx.client.health()
    except (OpenCodeError, httpx.HTTPError) as e:
        logger.warning(f"OpenCode health check failed: {e}")
    try:
        await ctx.api.set_my_commands(BOT_COMMANDS)
        logger.info(f"Registered {len(BOT_COMMANDS)} bot commands")
    except (TelegramError, httpx.HTTPError) as e:
        logger.warning(f"Failed to register bot commands: {e}")

    stream_task = asyncio.create_task(ctx.stream.run())
    prune_task = asyncio.create_task(prune_loop(ctx.guard))
    try:
        await poll_updates(ctx)
    finally:
        stream_task.cancel()
        prune_task.cancel()
        await asyncio.gather(stream_task, prune_task, return_exceptions=True)
        await ctx.api.aclose()
        logger.info("Bot stopped")


def main() -> None:
    try:
        asyncio.run(run_bot())
    except ConfigError as e:
        raise SystemExit(f"配置错误: {e}")
    except KeyboardInterrupt:
        print("Bye.")


if __name__ == "__main__":
    main()
