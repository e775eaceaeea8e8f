"""Global settings stored as a JSON file under the data directory.

get_config() returns defaults merged with stored values. update_config()
applies a partial update and persists the full result. load_settings()
validates the merged config into a GlobalSettings model.

When no API key is stored, the LORECHAT_API_KEY environment variable (read
from .env by the app and the dev launcher) is used instead.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from lorechat.models import GlobalSettings

_data_dir: Path | None = None

DEFAULT_SUMMARY_PROMPT = """\
Act as a professional conversation analyst. Read the conversation below and \
update the existing long-term memory.

Rules:
1. Keep important information: facts, promises, revealed secrets, character \
preferences, relationship progress.
2. Drop trivial talk: greetings, repetition, irrelevant small talk.
3. Use a Markdown bullet list.
4. Describe things objectively in the third person (e.g. User says... Char \
feels...).

Output format:
### Core facts
- ...
### Key events
- ...
### Open promises
- ...

Conversation to summarise:
{{conversation}}"""

_CONFIG_DEFAULTS: dict[str, Any] = {
    "context_size": 30000,
    "api_provider": "openai",
    "api_model": "",
    "api_key": "",
    "temperature": 1.0,
    "top_p": 1.0,
    "max_tokens": 3000,
    "repetition_penalty": 0.0,
    "summarization_max_tokens": 1000,
    "summarization_prompt": DEFAULT_SUMMARY_PROMPT,
}


class ConfigError(ValueError):
    """Raised when a required setting is missing or unusable."""


def init_config(data_dir: Path) -> None:
    global _data_dir
    _data_dir = data_dir
    _data_dir.mkdir(parents=True, exist_ok=True)


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_config() before using config"
    return _data_dir


def _config_path() -> Path:
    return data_dir() / "config.json"


def _merged() -> dict[str, Any]:
    config = dict(_CONFIG_DEFAULTS)
    path = _config_path()
    if path.is_file():
        stored = json.loads(path.read_text())
        for key, value in stored.items():
            if key in config:
                config[key] = value
    return config


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config = _merged()
    if not config["api_key"]:
        config["api_key"] = os.getenv("LORECHAT_API_KEY", "")
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config.

    Unknown keys are ignored. The merged result is validated before it is
    written, so a bad value never reaches the file.
    """
    config = _merged()
    for key, value in fields.items():
        if key in config:
            config[key] = value
    GlobalSettings.model_validate(config)
    _config_path().write_text(json.dumps(config, indent=2))
    return get_config()


def load_settings() -> GlobalSettings:
    return GlobalSettings.model_validate(get_config())
