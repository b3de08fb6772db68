import pytest

from core import metrics
from core.config import (
    ConfigError,
    as_dict,
    clear_config_cache,
    get_config,
    load_config,
    require_api_key,
)


def _write(config_dir, name, text):
    (config_dir / name).write_text(text, encoding="utf-8")


def test_defaults_without_files():
    cfg = get_config()
    assert cfg.schema_version == 1
    assert cfg.llm.model == "gpt-4o-mini"
    assert cfg.llm.context_window == 10
    assert cfg.server.port == 3000
    assert cfg.server.api_prefix == "/api"
    assert cfg.chat.max_message_length == 4000
    assert cfg.session.ttl_seconds == 3600
    assert cfg.rate_limits.chat.max_requests == 10
    assert cfg.rate_limits.general.window_s == 900


def test_base_then_local_overrides(config_dir):
    _write(
        config_dir,
        "base.yaml",
        "llm:\n  model: gpt-4o\n  temperature: 0.2\nserver:\n  port: 4000\n",
    )
    _write(config_dir, "overrides.local.yaml", "server:\n  port: 5000\n")
    cfg = load_config()
    assert cfg.llm.model == "gpt-4o"
    assert cfg.llm.temperature == 0.2
    assert cfg.server.port == 5000


def test_invalid_key_rejected(config_dir):
    _write(config_dir, "base.yaml", "llm:\n  unknown_field: 123\n")
    with pytest.raises(ConfigError):
        load_config()


def test_unknown_section_rejected(config_dir):
    _write(config_dir, "base.yaml", "embeddings:\n  main: x\n")
    with pytest.raises(ConfigError):
        load_config()


def test_top_level_must_be_mapping(config_dir):
    _write(config_dir, "base.yaml", "- a\n- b\n")
    with pytest.raises(ConfigError):
        load_config()


def test_legacy_env_applied(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("OPENAI_TEMPERATURE", "0")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("LOG_LEVEL", "WARN")
    monkeypatch.setenv("MAX_MESSAGE_LENGTH", "500")
    cfg = load_config()
    assert cfg.llm.api_key == "sk-test"
    assert cfg.llm.model == "gpt-4o"
    assert cfg.llm.temperature == 0.0
    assert cfg.server.port == 8080
    assert cfg.logging.level == "warn"
    assert cfg.chat.max_message_length == 500
    assert metrics.counter_value("env_override_total", {"path": "server.port"}) == 1


def test_legacy_env_bad_value(monkeypatch):
    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(ConfigError):
        load_config()


def test_prefixed_env_wins_over_legacy(monkeypatch, config_dir):
    _write(config_dir, "base.yaml", "server:\n  port: 4000\n")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("CHATBOT__SERVER__PORT", "9090")
    monkeypatch.setenv("CHATBOT__CHAT__SERIALIZE_PER_SESSION", "false")
    monkeypatch.setenv("CHATBOT__RATE_LIMITS__CHAT__MAX_REQUESTS", "3")
    cfg = load_config()
    assert cfg.server.port == 9090
    assert cfg.chat.serialize_per_session is False
    assert cfg.rate_limits.chat.max_requests == 3


def test_prefixed_env_keeps_secret_as_string(monkeypatch):
    monkeypatch.setenv("CHATBOT__LLM__API_KEY", "12345")
    cfg = load_config()
    assert cfg.llm.api_key == "12345"


@pytest.mark.parametrize(
    "yaml_text",
    [
        "llm:\n  temperature: 3\n",
        "llm:\n  max_output_tokens: 5000\n",
        "llm:\n  max_output_tokens: 0\n",
        "server:\n  port: 70000\n",
        "chat:\n  history_default_limit: 500\n",
        "session:\n  ttl_seconds: -1\n",
        "rate_limits:\n  chat: {window_s: 0, max_requests: 1}\n",
        "logging:\n  level: verbose\n",
    ],
)
def test_bounds_rejected(config_dir, yaml_text):
    _write(config_dir, "base.yaml", yaml_text)
    with pytest.raises(ConfigError):
        load_config()


def test_api_prefix_trailing_slash_stripped(config_dir):
    _write(config_dir, "base.yaml", "server:\n  api_prefix: /v1/\n")
    assert load_config().server.api_prefix == "/v1"


def test_explicit_config_dir_argument(tmp_path):
    other = tmp_path / "other"
    other.mkdir()
    (other / "base.yaml").write_text("server:\n  port: 1234\n", encoding="utf-8")
    assert load_config(other).server.port == 1234


def test_get_config_cached_until_cleared(monkeypatch):
    first = get_config()
    monkeypatch.setenv("PORT", "8081")
    assert get_config() is first
    clear_config_cache()
    assert get_config().server.port == 8081


def test_require_api_key():
    with pytest.raises(ConfigError):
        require_api_key(load_config())


def test_require_api_key_present(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-live")
    assert require_api_key(load_config()) == "sk-live"


def test_as_dict_masks_api_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
    data = as_dict()
    assert data["llm"]["api_key"] == "***"
    assert data["server"]["port"] == 3000
