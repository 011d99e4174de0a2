"""Configuration loading for the prayer companion."""
from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).parent
CONFIG_ENV_VAR = "PRAYER_COMPANION_CONFIG"
DEFAULT_CONFIG_PATH = APP_ROOT / "config.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "auto_location": True,
    "location": {
        "city": "",
        "country": "",
        "latitude": None,
        "longitude": None,
        "timezone": None,
        "timeout_seconds": 15,
    },
    "calculation": {"method": "NorthAmerica", "madhab": "Hanafi"},
    "storage_path": "state.json",
    "notifications": {"adhan_sound": "adhan.mp3", "recurring": False},
    "sync": {"endpoint": None, "timeout": 10},
    "log_level": "INFO",
}


def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override) if override else DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Return the configuration at *path* layered over :data:`DEFAULT_CONFIG`."""
    path = path or config_path()
    config = copy.deepcopy(DEFAULT_CONFIG)
    if not path.exists():
        LOGGER.debug("No config file at %s; using defaults", path)
        return config
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = json.load(handle)
    except (OSError, ValueError):
        LOGGER.warning("Could not read config %s; using defaults", path, exc_info=True)
        return config
    if not isinstance(loaded, dict):
        LOGGER.warning("Config %s is not a JSON object; using defaults", path)
        return config
    _merge(config, loaded)
    LOGGER.debug("Loaded config keys: %s", list(loaded.keys()))
    return config


def save_config(config: Dict[str, Any], path: Optional[Path] = None) -> None:
    path = path or config_path()
    with path.open("w", encoding="utf-8") as handle:
        json.dump(config, handle, indent=2)


def resolve_storage_path(config: Dict[str, Any], base: Optional[Path] = None) -> Path:
    """Storage paths in config are relative to the config file's directory."""
    raw = Path(str(config.get("storage_path") or DEFAULT_CONFIG["storage_path"])).expanduser()
    if raw.is_absolute():
        return raw
    return (base or config_path().parent) / raw


def _merge(target: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value
