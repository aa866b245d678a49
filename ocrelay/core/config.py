import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ocrelay.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(os.path.expanduser("~/.ocrelay/config.json"))

DEFAULT_AGENTS = {
    "sisyphus": "General coding",
    "oracle": "Deep analysis",
}


@dataclass
class RelayConfig:
    telegram_token: str = ""
    opencode_url: str = "http://localhost:4096"
    allowed_users: List[int] = field(default_factory=list)
    admin_users: List[int] = field(default_factory=list)
    store_path: str = ""
    agents: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_AGENTS))
    default_agent: str = "sisyphus"
    log_level: str = "INFO"
    edit_throttle: float = 1.0
    reconnect_delay: float = 2.0


def parse_user_list(value: str) -> List[int]:
    users: List[int] = []
    for part in (value or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            users.append(int(part))
        except ValueError:
            logger.warning(f"Invalid user ID {part!r}, skipped")
    return users


def parse_agents(value: str) -> Dict[str, str]:
    """"name:描述,name2" -> {name: 描述}，没有描述时用名字本身"""
    agents: Dict[str, str] = {}
    for pair in (value or "").split(","):
        name, _, desc = pair.partition(":")
        name = name.strip()
        if name:
            agents[name] = desc.strip() or name
    return agents


def resolve_store_path(env: Mapping[str, str]) -> str:
    """STORE_PATH > $DATA_DIR/sessions.json > $XDG_DATA_HOME/ocrelay/sessions.json"""
    if env.get("STORE_PATH"):
        return env["STORE_PATH"]
    if env.get("DATA_DIR"):
        return str(Path(env["DATA_DIR"]) / "sessions.json")
    data_home = env.get("XDG_DATA_HOME") or os.path.expanduser("~/.local/share")
    return str(Path(data_home) / "ocrelay" / "sessions.json")


def _coerce(current: Any, value: Any) -> Any:
    """把配置文件里的值转换成字段已有的类型，无法转换时抛 ValueError/TypeError"""
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        if isinstance(value, str):
            return parse_user_list(value)
        return [int(v) for v in value]
    if isinstance(current, dict):
        if isinstance(value, str):
            return parse_agents(value)
        if not isinstance(value, dict):
            raise TypeError(f"expected an object, got {type(value).__name__}")
        return {str(k): str(v) for k, v in value.items()}
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> RelayConfig:
    env = os.environ if env is None else env
    path = CONFIG_PATH if path is None else path
    cfg = RelayConfig(
        telegram_token=env.get("TELEGRAM_BOT_TOKEN", ""),
        opencode_url=env.get("OPENCODE_URL") or RelayConfig.opencode_url,
        allowed_users=parse_user_list(env.get("ALLOWED_USERS", "")),
        admin_users=parse_user_list(env.get("ADMIN_USERS", "")),
        store_path=resolve_store_path(env),
        default_agent=env.get("DEFAULT_AGENT") or RelayConfig.default_agent,
        log_level=env.get("LOG_LEVEL") or RelayConfig.log_level,
    )
    agents = parse_agents(env.get("AGENTS", ""))
    if agents:
        cfg.agents = agents
    for key, attr in (("EDIT_THROTTLE", "edit_throttle"), ("RECONNECT_DELAY", "reconnect_delay")):
        if env.get(key):
            try:
                setattr(cfg, attr, float(env[key]))
            except ValueError:
                logger.warning(f"Invalid {key}={env[key]!r}, using {getattr(cfg, attr)}")

    # 配置文件里的值覆盖环境变量
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")
            data = {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {path}: top level is not an object")
            data = {}
        for k, v in data.items():
            if not hasattr(cfg, k) or v is None:
                continue
            try:
                setattr(cfg, k, _coerce(getattr(cfg, k), v))
            except (TypeError, ValueError) as e:
                logger.warning(f"Invalid {k}={v!r} in {path}, using {getattr(cfg, k)!r}: {e}")
    return cfg


def validate_config(cfg: RelayConfig) -> None:
    if not cfg.telegram_token:
        raise ConfigError("TELEGRAM_BOT_TOKEN environment variable is required")
    if not cfg.opencode_url:
        raise ConfigError("OPENCODE_URL must not be empty")
    if not cfg.agents:
        raise ConfigError("at least one agent must be configured")
