"""Audio input device enumeration."""

from __future__ import annotations

import logging
from typing import List, Optional

from .models import AudioDevice

LOG = logging.getLogger(__name__)


class DeviceManager:
    """Read-only view over the host's audio input devices."""

    def _query(self):
        import sounddevice as sd  # type: ignore

        devices = sd.query_devices()
        default_index = sd.default.device[0] if sd.default.device is not None else None
        return devices, default_index

    def list_devices(self) -> List[AudioDevice]:
        try:
            devices, default_index = self._query()
            return [
                AudioDevice(name=device["name"], is_default=index == default_index)
                for index, device in enumerate(devices)
                if int(device.get("max_input_channels", 0)) > 0
            ]
        except Exception as exc:
            LOG.warning("Failed to enumerate audio devices: %s", exc)
            return []

    def resolve(self, name: Optional[str]) -> Optional[int]:
        """Map a device name to a stream index; ``None`` selects the default."""

        if not name or name == "default":
            return None
        try:
            devices, _ = self._query()
            for index, device in enumerate(devices):
                if device.get("name") == name and int(device.get("max_input_channels", 0)) > 0:
                    return index
        except Exception as exc:
            LOG.warning("Failed to enumerate audio devices: %s", exc)
            return None
        LOG.warning("Input device %r not found; using the system default", name)
        return None
