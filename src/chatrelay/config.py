from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from .chunker import FRAGMENT_SIZE
from .completion import OPENAI_BASE_URL
from .dispatcher import DEFAULT_MODEL, DEFAULT_VARIANTS, SYSTEM_PROMPT

# Environment variable names; these take precedence over the config file.
ENV_BOT_TOKEN = "TGBOT_API_TOKEN"
ENV_OPENAI_API_KEY = "OPENAI_API_KEY"
ENV_OPENAI_MODEL = "OPENAI_MODEL"
ENV_OPENAI_BASE_URL = "OPENAI_BASE_URL"
ENV_REDIS_ADDR = "REDIS_ADDR"
ENV_WHITELIST = "WHITELIST_CHAT_IDS"

LOCAL_CONFIG_NAME = Path(".chatrelay") / "chatrelay.toml"
HOME_CONFIG_PATH = Path.home() / ".chatrelay" / "chatrelay.toml"

_ENV_KEYS = {
    ENV_BOT_TOKEN: "bot_token",
    ENV_OPENAI_API_KEY: "openai_api_key",
    ENV_OPENAI_MODEL: "model",
    ENV_OPENAI_BASE_URL: "openai_base_url",
    ENV_REDIS_ADDR: "redis_url",
}


class ConfigError(RuntimeError):
    pass


class RelaySettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    bot_token: SecretStr
    openai_api_key: SecretStr
    allowed_chat_ids: list[int] = Field(min_length=1)
    model: str = DEFAULT_MODEL
    model_variants: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_VARIANTS))
    openai_base_url: str = OPENAI_BASE_URL
    redis_url: str = "redis://localhost:6379"
    system_prompt: str = SYSTEM_PROMPT
    fragment_size: int = Field(default=FRAGMENT_SIZE, gt=0, le=4096)

    @field_validator("bot_token", "openai_api_key")
    @classmethod
    def _non_empty_secret(cls, value: SecretStr) -> SecretStr:
        stripped = value.get_secret_value().strip()
        if not stripped:
            raise ValueError("must be a non-empty string")
        return SecretStr(stripped)


def _config_candidates() -> list[Path]:
    candidates = [Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH]
    if candidates[0] == candidates[1]:
        return [candidates[0]]
    return candidates


def _read_config(cfg_path: Path) -> dict[str, Any]:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_config(path: str | Path | None = None) -> tuple[dict[str, Any], Path | None]:
    """Read the TOML config, or return an empty table if none exists.

    An explicit ``path`` must exist; otherwise the local and home locations
    are tried in order and a missing file is not an error, since every
    required key can come from the environment.
    """
    if path:
        cfg_path = Path(path).expanduser()
        return _read_config(cfg_path), cfg_path
    for candidate in _config_candidates():
        if candidate.is_file():
            return _read_config(candidate), candidate
    return {}, None


def parse_chat_ids(raw: str) -> list[int]:
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            raise ConfigError(
                f"Invalid {ENV_WHITELIST}; expected comma-separated integers, got {part!r}."
            ) from None
    return ids


def apply_env_overrides(
    config: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    merged = dict(config)
    for env_name, key in _ENV_KEYS.items():
        value = env.get(env_name)
        if value and value.strip():
            merged[key] = value.strip()
    whitelist = env.get(ENV_WHITELIST)
    if whitelist and whitelist.strip():
        merged["allowed_chat_ids"] = parse_chat_ids(whitelist)
    return merged


def load_settings(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> RelaySettings:
    config, cfg_path = load_config(path)
    merged = apply_env_overrides(config, environ)
    source = str(cfg_path) if cfg_path is not None else "environment"
    try:
        return RelaySettings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings from {source}: {exc}") from exc
