"""Command surface wiring the voxtray components together."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from . import config as config_mod
from .config import SettingsStore
from .credentials import CredentialVault
from .devices import DeviceManager
from .events import EventBus
from .modes import ModeRegistry
from .models import AudioDevice, ExportFormat, HistoryItem, Mode, RecordingStatus, Settings
from .orchestrator import RecordingOrchestrator
from .postprocess import PostProcessingEngine
from .storage import HistoryStore
from .transcriber import TranscriptionEngine

LOG = logging.getLogger(__name__)


class VoxTray:
    """One object per process exposing every command the UI layer can issue."""

    def __init__(
        self,
        app_dir: Optional[Path] = None,
        credentials: Optional[CredentialVault] = None,
        devices: Optional[DeviceManager] = None,
        events: Optional[EventBus] = None,
        transcriber: Optional[TranscriptionEngine] = None,
        postprocessor: Optional[PostProcessingEngine] = None,
        **orchestrator_options: Any,
    ) -> None:
        app_dir = Path(app_dir) if app_dir else config_mod.APP_DIR
        self.app_dir = app_dir
        self.settings = SettingsStore(app_dir / config_mod.CONFIG_PATH.name)
        current = self.settings.get()
        self.credentials = credentials or CredentialVault()
        self.devices = devices or DeviceManager()
        self.events = events or EventBus()
        self.modes = ModeRegistry(self.settings, app_dir / config_mod.MODES_DIR.name)
        self.history = HistoryStore(app_dir / config_mod.DB_PATH.name)
        self.transcriber = transcriber or TranscriptionEngine(self.credentials, current.provider_timeout)
        self.postprocessor = postprocessor or PostProcessingEngine(
            self.credentials, current.ollama_url, current.provider_timeout
        )
        self.orchestrator = RecordingOrchestrator(
            self.settings,
            self.modes,
            self.history,
            self.transcriber,
            self.postprocessor,
            devices=self.devices,
            events=self.events,
            audio_dir=app_dir / config_mod.AUDIO_DIR.name,
            **orchestrator_options,
        )

    def warm_up_in_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.orchestrator.warm_up, name="voxtray-warmup", daemon=True)
        thread.start()
        return thread

    # Recording

    def start_recording(self) -> None:
        self.orchestrator.start()

    def stop_recording(self) -> str:
        return self.orchestrator.stop().output_final

    def get_recording_status(self) -> Dict[str, Any]:
        return {
            "status": self.orchestrator.status.value,
            "error": self.orchestrator.last_error,
        }

    def acknowledge_error(self) -> RecordingStatus:
        return self.orchestrator.acknowledge_error()

    def transcribe_file(self, path: Union[str, Path]) -> str:
        return self.orchestrator.transcribe_file(path).output_final

    # Modes

    def list_modes(self) -> List[Mode]:
        return self.modes.list()

    def get_active_mode(self) -> Mode:
        return self.modes.get_active()

    def set_active_mode(self, key: str) -> Mode:
        return self.modes.set_active(key)

    def save_mode(self, mode: Mode) -> Mode:
        return self.modes.save(mode)

    def delete_mode(self, key: str) -> None:
        self.modes.delete(key)

    # Devices

    def list_input_devices(self) -> List[AudioDevice]:
        return self.devices.list_devices()

    def set_input_device(self, name: str) -> Settings:
        return self.settings.update(input_device=name)

    # History

    def list_history(self, query: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[HistoryItem]:
        return self.history.list(query=query, limit=limit, offset=offset)

    def get_history_item(self, item_id: str) -> HistoryItem:
        return self.history.get(item_id)

    def delete_history_item(self, item_id: str) -> None:
        self.history.delete(item_id)

    def export_history_item(self, item_id: str, fmt: Union[ExportFormat, str]) -> str:
        return self.history.export(item_id, fmt)

    def reprocess_history_item(self, item_id: str, mode_key: str, retranscribe: bool = False) -> str:
        return self.orchestrator.reprocess(item_id, mode_key, retranscribe=retranscribe).output_final

    # Settings

    def get_settings(self) -> Settings:
        return self.settings.get()

    def update_settings(self, **changes: Any) -> Settings:
        if "active_mode_key" in changes:
            self.modes.get(changes["active_mode_key"])
        updated = self.settings.update(**changes)
        if "ollama_url" in changes:
            self.postprocessor.set_ollama_url(updated.ollama_url)
        return updated

    # API keys

    def save_api_key(self, provider: str, key: str) -> None:
        self.credentials.save(provider, key)

    def delete_api_key(self, provider: str) -> None:
        self.credentials.delete(provider)

    def has_api_key(self, provider: str) -> bool:
        return self.credentials.has(provider)

    # Navigation

    def navigate(self, route: str) -> None:
        self.events.navigate(route)
