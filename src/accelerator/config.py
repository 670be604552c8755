from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    github_token: str = ""
    github_webhook_secret: str = ""
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "o4-mini"

    # Issues carrying this label are tracked
    managed_label: str = "accelerator-managed"

    # Agent loop
    agent_max_tool_calls: int = 20

    # Tracking workflow
    tracking_max_checks: int = 20
    default_check_delay_ms: int = 86_400_000
    step_retries: int = 3
    event_poll_interval: float = 5.0

    # Workflow journals
    state_dir: str = "~/.accelerator"


settings = Settings()


@dataclass
class ModelConfig:
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    base_url: str = ""


_models_config_cache: dict | None = None


def _load_models_yaml() -> dict:
    global _models_config_cache
    if _models_config_cache is not None:
        return _models_config_cache

    config_path = os.environ.get("MODELS_CONFIG_PATH", "models.yaml")
    path = Path(config_path)
    if not path.is_file():
        _models_config_cache = {}
        return _models_config_cache

    import yaml

    with open(path) as f:
        _models_config_cache = yaml.safe_load(f) or {}
    return _models_config_cache


def get_model_config(agent_name: str = "") -> ModelConfig:
    """Get model config for an agent ("initialize", "check"), merging default + agent override.

    Falls back to Settings env variables if models.yaml doesn't exist.
    """
    data = _load_models_yaml()

    if not data:
        return ModelConfig(
            model=settings.llm_model,
            base_url=settings.llm_base_url,
        )

    default = data.get("default", {})
    merged = {
        "model": default.get("model", settings.llm_model),
        "temperature": default.get("temperature"),
        "max_tokens": default.get("max_tokens"),
        "base_url": default.get("base_url", settings.llm_base_url),
    }

    if agent_name:
        agents = data.get("agents", {})
        agent_override = agents.get(agent_name, {})
        for key, value in agent_override.items():
            if key in merged:
                merged[key] = value

    return ModelConfig(
        model=merged["model"],
        temperature=merged["temperature"],
        max_tokens=merged["max_tokens"],
        base_url=merged["base_url"],
    )


def state_path() -> Path:
    """Directory holding workflow instance journals."""
    return Path(settings.state_dir).expanduser()
