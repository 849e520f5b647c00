"""
User configuration persistence.

Stores settings like the content provider, model and streaming mode in
a JSON file in the data directory. Environment variables override the
saved values for a single run without being written back.
"""

import json
import os
from pathlib import Path
from typing import TypedDict
from uuid import uuid4


CONFIG_FILENAME = "config.json"
DEFAULT_DATA_DIR = "saves"


class Config(TypedDict, total=False):
    """User configuration."""
    provider: str  # openai, deepseek, volcengine, local, claude, mock
    model: str | None
    base_url: str | None
    api_key: str | None
    streaming: bool
    temperature: float
    timeout: int
    ledger_url: str | None  # credits API root
    events_url: str | None  # analytics API root
    anon_id: str | None  # stable anonymous player id
    email: str | None
    style: str


DEFAULT_CONFIG: Config = {
    "provider": "openai",
    "model": None,
    "base_url": None,
    "api_key": None,
    "streaming": True,
    "temperature": 0.8,
    "timeout": 120,
    "ledger_url": None,
    "events_url": None,
    "anon_id": None,
    "email": None,
    "style": "realistic",
}

# env var -> (config key, parser)
ENV_OVERRIDES = {
    "CHILDSIM_PROVIDER": ("provider", str),
    "CHILDSIM_MODEL": ("model", str),
    "CHILDSIM_BASE_URL": ("base_url", str),
    "CHILDSIM_API_KEY": ("api_key", str),
    "CHILDSIM_STREAMING": ("streaming", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
    "CHILDSIM_LEDGER_URL": ("ledger_url", str),
    "CHILDSIM_EVENTS_URL": ("events_url", str),
}


def get_config_path(data_dir: Path | str = DEFAULT_DATA_DIR) -> Path:
    """Get path to config file."""
    return Path(data_dir) / CONFIG_FILENAME


def load_config(data_dir: Path | str = DEFAULT_DATA_DIR) -> Config:
    """Load config from file, or return defaults if not found."""
    path = get_config_path(data_dir)

    if not path.exists():
        return DEFAULT_CONFIG.copy()

    try:
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
        # Merge with defaults to handle missing keys
        config = DEFAULT_CONFIG.copy()
        if isinstance(saved, dict):
            config.update({k: v for k, v in saved.items() if k in DEFAULT_CONFIG})
        return config
    except (json.JSONDecodeError, IOError):
        return DEFAULT_CONFIG.copy()


def save_config(config: Config, data_dir: Path | str = DEFAULT_DATA_DIR) -> bool:
    """Save config to file. Returns True on success."""
    path = get_config_path(data_dir)

    path.parent.mkdir(parents=True, exist_ok=True)

    # Keys are never written to disk
    to_save = {k: v for k, v in config.items() if k != "api_key"}
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(to_save, f, indent=2)
        return True
    except IOError:
        return False


def apply_env_overrides(config: Config, environ: dict[str, str] | None = None) -> Config:
    """Return a copy of config with CHILDSIM_* environment variables applied."""
    environ = os.environ if environ is None else environ
    result = dict(config)
    for var, (key, parse) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            result[key] = parse(value)
    return result


def ensure_anon_id(data_dir: Path | str = DEFAULT_DATA_DIR) -> str:
    """The stable anonymous player id, created and saved on first use."""
    config = load_config(data_dir)
    if not config.get("anon_id"):
        config["anon_id"] = uuid4().hex
        save_config(config, data_dir)
    return config["anon_id"]


def set_provider(provider: str, data_dir: Path | str = DEFAULT_DATA_DIR) -> None:
    """Save provider preference."""
    config = load_config(data_dir)
    config["provider"] = provider
    save_config(config, data_dir)


def set_model(model: str | None, data_dir: Path | str = DEFAULT_DATA_DIR) -> None:
    """Save model preference."""
    config = load_config(data_dir)
    config["model"] = model
    save_config(config, data_dir)


def set_streaming(streaming: bool, data_dir: Path | str = DEFAULT_DATA_DIR) -> None:
    """Save streaming preference."""
    config = load_config(data_dir)
    config["streaming"] = streaming
    save_config(config, data_dir)
