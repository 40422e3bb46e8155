"""Persisted configuration management."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigError
from .models import Settings

APP_DIR = Path(os.getenv("VOXTRAY_HOME", Path.home() / ".voxtray")).expanduser()
CONFIG_PATH = APP_DIR / "settings.json"
MODES_DIR = APP_DIR / "modes"
DB_PATH = APP_DIR / "history.db"
AUDIO_DIR = APP_DIR / "audio"

LOG = logging.getLogger(__name__)

_FIELDS = {f.name for f in dataclasses.fields(Settings)}


def load_settings(path: Optional[Path] = None) -> Settings:
    path = path or CONFIG_PATH
    if not path.exists():
        return Settings()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Configuration file {path} must contain a JSON object")
    unknown = set(payload) - _FIELDS
    if unknown:
        LOG.warning("Ignoring unknown configuration keys: %s", ", ".join(sorted(unknown)))
    return Settings(**{k: v for k, v in payload.items() if k in _FIELDS})


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")
    tmp_path.replace(path)


def update_settings(path: Optional[Path] = None, **kwargs: Any) -> Settings:
    settings = load_settings(path)
    for key, value in kwargs.items():
        if key in _FIELDS:
            setattr(settings, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    save_settings(settings, path)
    return settings


class SettingsStore:
    """Process-wide settings held in memory and persisted on update.

    ``get()`` hands out copies so an in-flight cycle keeps the snapshot it
    took at cycle start while ``update()`` swaps in a new value.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or CONFIG_PATH
        self._lock = threading.Lock()
        self._settings = load_settings(self.path)

    def get(self) -> Settings:
        with self._lock:
            return dataclasses.replace(self._settings)

    def update(self, **changes: Any) -> Settings:
        unknown = set(changes) - _FIELDS
        if unknown:
            raise ConfigError(f"Unknown configuration key: {', '.join(sorted(unknown))}")
        with self._lock:
            updated = dataclasses.replace(self._settings, **changes)
            save_settings(updated, self.path)
            self._settings = updated
            return dataclasses.replace(updated)

    def replace(self, settings: Settings) -> Settings:
        return self.update(**asdict(settings))

    def reload(self) -> Settings:
        fresh = load_settings(self.path)
        with self._lock:
            self._settings = fresh
        return self.get()
