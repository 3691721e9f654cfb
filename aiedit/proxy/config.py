"""Configuration management for the AIEdit proxy."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .agent.loop import LoopSettings
from .llm.gateway import Provider, ProviderSettings

logger = logging.getLogger("aiedit.config")

APP_DIR_NAME = ".aiedit"
CONFIG_FILENAME = "config.json"
ENV_PREFIX = "AIEDIT_"

DEFAULT_CONFIG: dict[str, Any] = {
    "llm_provider": "anthropic",
    "llm_api_key": "",
    "llm_model": "",
    "llm_base_url": "",
    "llm_max_tokens": 8192,
    "llm_timeout": 120.0,
    "llm_connect_timeout": 30.0,
    "backend_url": "http://127.0.0.1:8000",
    "backend_timeout": 60.0,
    "backend_token": "",
    "proxy_host": "127.0.0.1",
    "proxy_port": 3000,
    "agent_max_rounds": 20,
    "agent_max_input_tokens": 100000,
    "agent_max_turns": 40,
    "agent_tool_result_max_len": 2000,
    "agent_error_result_max_len": 500,
    "approval_required": True,
    "research_enabled": True,
    "research_max_rounds": 10,
    "research_max_input_tokens": 20000,
}


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from ~/.aiedit/config.json."""

    # LLM
    llm_provider: str
    llm_api_key: str
    llm_model: str
    llm_base_url: str
    llm_max_tokens: int
    llm_timeout: float
    llm_connect_timeout: float

    # Backend resource
    backend_url: str
    backend_timeout: float
    backend_token: str

    # Proxy server
    proxy_host: str
    proxy_port: int

    # Agent loop controls
    agent_max_rounds: int
    agent_max_input_tokens: int
    agent_max_turns: int
    agent_tool_result_max_len: int
    agent_error_result_max_len: int

    # Safety
    approval_required: bool

    # Research sub-agent
    research_enabled: bool
    research_max_rounds: int
    research_max_input_tokens: int

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> Config:
        """Load config from the given path or the default ~/.aiedit/config.json."""
        if config_path:
            config_file = Path(config_path)
        else:
            config_dir = Path.home() / APP_DIR_NAME
            config_file = config_dir / CONFIG_FILENAME
            config_dir.mkdir(parents=True, exist_ok=True)

        current_config = DEFAULT_CONFIG.copy()

        if config_file.exists():
            try:
                with open(config_file, "r", encoding="utf-8") as f:
                    user_config = json.load(f)
                current_config.update({k: v for k, v in user_config.items() if k in DEFAULT_CONFIG})
                unknown = sorted(set(user_config) - set(DEFAULT_CONFIG))
                if unknown:
                    logger.warning(f"Ignoring unknown config keys in {config_file}: {', '.join(unknown)}")
            except (OSError, ValueError, AttributeError) as e:
                logger.error(f"Failed to load config from {config_file}: {e}. Using default configuration.")
        elif config_path is None:
            logger.info(f"No config found. Generating default config at {config_file}")
            try:
                with open(config_file, "w", encoding="utf-8") as f:
                    json.dump(DEFAULT_CONFIG, f, indent=4)
            except OSError as e:
                logger.error(f"Failed to write default config: {e}")
        else:
            logger.warning(f"Configuration file not found at {config_file}. Using default configuration settings.")

        apply_env_overrides(current_config)
        return cls(**current_config)

    def provider(self) -> Provider:
        try:
            return Provider(self.llm_provider.lower())
        except ValueError:
            valid = ", ".join(p.value for p in Provider)
            raise ValueError(f"Unknown llm_provider '{self.llm_provider}' (expected one of: {valid})") from None

    def to_provider_settings(self) -> ProviderSettings:
        return ProviderSettings(
            provider=self.provider(),
            api_key=self.llm_api_key,
            model=self.llm_model,
            base_url=self.llm_base_url,
            max_tokens=self.llm_max_tokens,
            timeout=self.llm_timeout,
            connect_timeout=self.llm_connect_timeout,
        )

    def to_loop_settings(self) -> LoopSettings:
        return LoopSettings(
            max_rounds=self.agent_max_rounds,
            max_input_tokens=self.agent_max_input_tokens,
            max_turns=self.agent_max_turns,
            tool_result_max_len=self.agent_tool_result_max_len,
            error_result_max_len=self.agent_error_result_max_len,
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Config as a dict with secrets masked, for status output."""
        data = asdict(self)
        for key in ("llm_api_key", "backend_token"):
            if data[key]:
                data[key] = "***"
        return data


def apply_env_overrides(values: dict[str, Any]) -> None:
    """Override ``values`` in place from AIEDIT_<KEY> environment variables."""
    for key in values:
        env_key = f"{ENV_PREFIX}{key.upper()}"
        if env_key not in os.environ:
            continue
        raw = os.environ[env_key]
        default_val = DEFAULT_CONFIG.get(key)
        if isinstance(default_val, bool):
            values[key] = raw.lower() in ("true", "1", "yes")
        elif isinstance(default_val, (int, float)):
            try:
                values[key] = type(default_val)(raw)
            except ValueError:
                logger.warning(f"Ignoring {env_key}={raw!r}: not a valid {type(default_val).__name__}")
        else:
            values[key] = raw


# Singleton
_config: Config | None = None


def get_config(config_path: str | None = None) -> Config:
    """Get or create the global config instance, optionally loading from a path."""
    global _config
    if _config is None:
        _config = Config.load(config_path)
    return _config


def reset_config() -> None:
    global _config
    _config = None
