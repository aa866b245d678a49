import json

import pytest

from ocrelay.core.config import load_config, parse_agents, parse_user_list, resolve_store_path, validate_config
from ocrelay.core.exceptions import ConfigError


def test_defaults(tmp_path):
    cfg = load_config(path=tmp_path / "missing.json", env={"HOME": str(tmp_path)})
    assert cfg.opencode_url == "http://localhost:4096"
    assert cfg.edit_throttle == 1.0
    assert cfg.reconnect_delay == 2.0
    assert cfg.allowed_users == []
    with pytest.raises(ConfigError):
        validate_config(cfg)


def test_environment(tmp_path):
    env = {
        "TELEGRAM_BOT_TOKEN": "t0k",
        "OPENCODE_URL": "http://oc:4096",
        "ALLOWED_USERS": "1, 2,abc,,3",
        "ADMIN_USERS": "1",
        "DATA_DIR": str(tmp_path),
        "EDIT_THROTTLE": "1.5",
        "RECONNECT_DELAY": "nope",
    }
    cfg = load_config(path=tmp_path / "missing.json", env=env)
    validate_config(cfg)
    assert cfg.allowed_users == [1, 2, 3]
    assert cfg.admin_users == [1]
    assert cfg.store_path == str(tmp_path / "sessions.json")
    assert cfg.edit_throttle == 1.5
    assert cfg.reconnect_delay == 2.0


def test_file_overrides_environment(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"opencode_url": "http://file:1", "default_agent": "plan", "unknown": 1}))
    cfg = load_config(path=path, env={"OPENCODE_URL": "http://env:1"})
    assert cfg.opencode_url == "http://file:1"
    assert cfg.default_agent == "plan"


def test_parse_user_list_skips_invalid(caplog):
    assert parse_user_list("5,x,6") == [5, 6]
    assert "Invalid user ID" in caplog.text


def test_store_path_resolution():
    assert resolve_store_path({"STORE_PATH": "/a/b.json", "DATA_DIR": "/x"}) == "/a/b.json"
    assert resolve_store_path({"XDG_DATA_HOME": "/xdg"}) == "/xdg/ocrelay/sessions.json"


def test_file_values_are_coerced_to_field_types(tmp_path, caplog):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "edit_throttle": "1",
        "reconnect_delay": "soon",
        "allowed_users": "7,8",
        "admin_users": ["9"],
        "log_level": 5,
    }))
    cfg = load_config(path=path, env={})
    assert cfg.edit_throttle == 1.0
    assert isinstance(cfg.edit_throttle, float)
    assert cfg.reconnect_delay == 2.0
    assert cfg.allowed_users == [7, 8]
    assert cfg.admin_users == [9]
    assert cfg.log_level == "INFO"
    assert "Invalid reconnect_delay" in caplog.text
    assert "Invalid log_level" in caplog.text


def test_agents_from_environment_and_defaults(tmp_path):
    cfg = load_config(path=tmp_path / "missing.json", env={})
    assert cfg.agents == {"sisyphus": "General coding", "oracle": "Deep analysis"}
    assert cfg.default_agent in cfg.agents

    cfg = load_config(path=tmp_path / "missing.json", env={"AGENTS": "build:Write code, plan ,:nameless,"})
    assert cfg.agents == {"build": "Write code", "plan": "plan"}


def test_parse_agents():
    assert parse_agents("") == {}
    assert parse_agents("a:one:two") == {"a": "one:two"}
