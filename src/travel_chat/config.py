"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from travel_chat.core.types import Backend
from travel_chat.log import get_logger

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful travel assistant."


class AIConfig(BaseModel):
    backend: Backend = Backend.OPENAI
    model: str = "gpt-4o"
    title_model: Optional[str] = None  # Defaults to `model`
    max_tokens: int = 4096
    temperature: float = 0.7
    system_prompt: str = ""
    system_prompt_file: Optional[str] = None
    max_tool_rounds: int = Field(default=10, ge=1)
    stream_idle_timeout: float = Field(default=60.0, gt=0)  # Seconds between stream fragments
    tool_timeout: float = Field(default=30.0, gt=0)

    def load_system_prompt(self) -> str:
        """Return the initial instructions seeded into every new conversation.

        An inline ``system_prompt`` wins over ``system_prompt_file``. An unreadable
        file falls back to the built-in default prompt.
        """
        if self.system_prompt:
            return self.system_prompt.strip()
        if self.system_prompt_file:
            try:
                return Path(self.system_prompt_file).read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.error(
                    "system_prompt_read_failed", path=self.system_prompt_file, error=str(e)
                )
        return DEFAULT_SYSTEM_PROMPT


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class OpenAIConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    organization: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class StorageConfig(BaseModel):
    db_path: str = "./data/travel_chat.db"


class ToolsConfig(BaseModel):
    enabled: list[str] = Field(default_factory=list)  # Empty = every tool with a provider
    providers: dict[str, str] = Field(default_factory=dict)  # tool name -> "module:attr"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    ai: AIConfig = Field(default_factory=AIConfig)
    anthropic: Optional[AnthropicConfig] = None
    openai: Optional[OpenAIConfig] = None
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
