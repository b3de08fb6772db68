"""Configuration loading & validation.

Precedence (last wins):
    base.yaml → overrides.local.yaml → legacy env (OPENAI_API_KEY, PORT, ...)
    → ENV (CHATBOT__SECTION__KEY)

A ``.env`` file in the working directory is loaded first (python-dotenv);
values already present in the real environment are never overridden.

Unknown sub-schema keys are rejected.
"""
from __future__ import annotations

import logging
import os
import pathlib
import threading
from functools import lru_cache
from typing import Any, Callable, Dict, Type

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from core import metrics
from core.errors import validate_error_type

from .schemas.llm import LLMConfig
from .schemas.server import ServerConfig
from .schemas.chat import ChatConfig, SessionConfig
from .schemas.rate_limits import RateLimitsConfig
from .schemas.observability import LoggingConfig

logger = logging.getLogger(__name__)


class AggregatedConfig(BaseModel):
    schema_version: int = 1
    llm: LLMConfig = Field(default_factory=LLMConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid")


DEFAULT_CONFIG_DIR = "configs"
ENV_PREFIX = "CHATBOT__"

SUB_SCHEMA_CLASSES: Dict[str, Type[BaseModel]] = {
    "llm": LLMConfig,
    "server": ServerConfig,
    "chat": ChatConfig,
    "session": SessionConfig,
    "rate_limits": RateLimitsConfig,
    "logging": LoggingConfig,
}

# Flat variables understood for compatibility with plain .env deployments.
LEGACY_ENV: Dict[str, tuple[tuple[str, str], Callable[[str], Any]]] = {
    "OPENAI_API_KEY": (("llm", "api_key"), str),
    "OPENAI_BASE_URL": (("llm", "base_url"), str),
    "OPENAI_MODEL": (("llm", "model"), str),
    "OPENAI_MAX_TOKENS": (("llm", "max_output_tokens"), int),
    "OPENAI_TEMPERATURE": (("llm", "temperature"), float),
    "OPENAI_TIMEOUT": (("llm", "timeout_s"), float),
    "SYSTEM_PROMPT": (("llm", "system_prompt"), str),
    "HOST": (("server", "host"), str),
    "PORT": (("server", "port"), int),
    "CORS_ORIGIN": (("server", "cors_origin"), str),
    "APP_ENV": (("server", "environment"), str),
    "LOG_LEVEL": (("logging", "level"), str.lower),
    "MAX_MESSAGE_LENGTH": (("chat", "max_message_length"), int),
    "SESSION_TTL_SECONDS": (("session", "ttl_seconds"), int),
}


class ConfigError(Exception):
    pass


def _load_yaml_if_exists(path: pathlib.Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _merge_dict(
    base: Dict[str, Any], override: Dict[str, Any]
) -> Dict[str, Any]:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k] = _merge_dict(base[k], v)
        else:
            base[k] = v
    return base


def _set_path(cfg: Dict[str, Any], parts: list[str], value: Any) -> None:
    target = cfg
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value


def _record_override(dotted_path: str, source: str) -> None:
    metrics.inc("env_override_total", {"path": dotted_path})
    logger.info(
        "config override path=%s value=*** source=%s", dotted_path, source
    )


def _apply_legacy_env(cfg: Dict[str, Any]) -> None:
    for env_key, (path, cast) in LEGACY_ENV.items():
        raw = os.environ.get(env_key)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError as e:
            raise ConfigError(
                f"Environment variable {env_key} has invalid value"
            ) from e
        _set_path(cfg, list(path), value)
        _record_override(".".join(path), "env")


def _cast_env_value(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def _apply_env(cfg: Dict[str, Any]) -> None:
    prefix_len = len(ENV_PREFIX)
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        path_parts = env_key[prefix_len:].lower().split("__")
        leaf = path_parts[-1]
        # Secrets and free text stay strings
        if leaf in {"api_key", "system_prompt", "error_reply", "base_url"}:
            cast_val: Any = value
        else:
            cast_val = _cast_env_value(value)
        _set_path(cfg, path_parts, cast_val)
        _record_override(".".join(path_parts), "env-prefixed")


_lock = threading.Lock()


def _resolve_config_dir() -> pathlib.Path:
    """Resolve config directory each call honoring env var changes."""
    return pathlib.Path(os.getenv("CHATBOT_CONFIG_DIR", DEFAULT_CONFIG_DIR))


def _migrate_legacy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Configs without ``schema_version`` are treated as version 1."""
    if "schema_version" not in data:
        logger.debug("config schema_version missing, assuming 1")
        data["schema_version"] = 1
    return data


def _validate_sub_schemas(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Validate each known section via its schema class."""
    validated: Dict[str, Any] = {}
    for name, cls in SUB_SCHEMA_CLASSES.items():
        if name in raw:
            try:
                validated[name] = cls.model_validate(raw[name] or {})
            except Exception as e:  # noqa: BLE001
                metrics.inc(
                    "config_validation_errors_total",
                    {"path": name, "code": "config-invalid"},
                )
                raise ConfigError(
                    f"Validation failed for section '{name}': {e}"
                ) from e
    return validated


def _normalize_and_validate(raw: Dict[str, Any]) -> None:
    """Apply cross-field normalizations and bounds validation.

    Normalizations:
      - server.api_prefix: trailing slash stripped.
    Validations (error → raise):
      - llm.max_output_tokens in (0, llm.max_tokens_limit]
      - server.port in 1..65535
      - chat.history_default_limit in 1..chat.history_max_limit
    """
    errors: list[tuple[str, str, str]] = []  # (path, code, msg)
    server = raw.get("server")
    if isinstance(server, dict):
        prefix = server.get("api_prefix")
        if isinstance(prefix, str) and prefix.endswith("/"):
            server["api_prefix"] = prefix.rstrip("/")
        port = server.get("port")
        if isinstance(port, int) and not (1 <= port <= 65535):
            errors.append(
                ("server.port", "config-out-of-range", "1..65535 required")
            )

    llm = raw.get("llm")
    if isinstance(llm, dict):
        mot = llm.get("max_output_tokens")
        limit = llm.get("max_tokens_limit", 4000)
        if isinstance(mot, int) and not (0 < mot <= limit):
            errors.append(
                (
                    "llm.max_output_tokens",
                    "config-out-of-range",
                    f"0<..<={limit} required",
                )
            )

    chat = raw.get("chat")
    if isinstance(chat, dict):
        default_limit = chat.get("history_default_limit")
        max_limit = chat.get("history_max_limit", 100)
        if isinstance(default_limit, int) and not (
            1 <= default_limit <= max_limit
        ):
            errors.append(
                (
                    "chat.history_default_limit",
                    "config-out-of-range",
                    "1..history_max_limit required",
                )
            )

    if errors:
        for path, code, _ in errors:
            metrics.inc(
                "config_validation_errors_total",
                {"path": path, "code": code},
            )
            validate_error_type(code)
        details = ", ".join(f"{p}:{c}:{m}" for p, c, m in errors)
        raise ConfigError(f"config validation failed: {details}")


def load_config(config_dir: str | os.PathLike[str] | None = None) -> AggregatedConfig:
    """Build a fresh config (no caching)."""
    load_dotenv(override=False)
    cfg_dir = (
        pathlib.Path(config_dir) if config_dir else _resolve_config_dir()
    )
    base_cfg = _load_yaml_if_exists(cfg_dir / "base.yaml")
    overrides_cfg = _load_yaml_if_exists(cfg_dir / "overrides.local.yaml")
    merged = _merge_dict(base_cfg, overrides_cfg)
    _apply_legacy_env(merged)
    _apply_env(merged)
    migrated = _migrate_legacy(merged)
    _normalize_and_validate(migrated)
    validated_sub = _validate_sub_schemas(migrated)
    try:
        agg = AggregatedConfig.model_validate(
            {"schema_version": migrated["schema_version"], **validated_sub}
        )
    except Exception as e:  # noqa: BLE001
        raise ConfigError(str(e)) from e
    unknown = set(migrated) - set(SUB_SCHEMA_CLASSES) - {"schema_version"}
    if unknown:
        raise ConfigError(
            f"Unknown config sections: {', '.join(sorted(unknown))}"
        )
    return agg


@lru_cache(maxsize=1)
def get_config() -> AggregatedConfig:  # noqa: D401
    with _lock:
        return load_config()


def clear_config_cache() -> None:
    """Clear cached config (primarily for tests)."""
    get_config.cache_clear()


def as_dict() -> Dict[str, Any]:
    data = get_config().model_dump()
    if data["llm"].get("api_key"):
        data["llm"]["api_key"] = "***"
    return data


def require_api_key(cfg: AggregatedConfig) -> str:
    """Return the upstream API key or raise ConfigError (fail fast)."""
    key = cfg.llm.api_key
    if not key:
        validate_error_type("config-missing")
        raise ConfigError(
            "llm.api_key is not configured (set OPENAI_API_KEY)"
        )
    return key
