"""Built-in and user-defined processing modes."""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import MODES_DIR, SettingsStore
from .errors import ImmutableMode, ModeNotFound
from .models import Mode, OutputFormat

LOG = logging.getLogger(__name__)

DEFAULT_MODE_KEY = "voice_to_text"

_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")

BUILTIN_MODES: Dict[str, Mode] = {
    mode.key: mode
    for mode in (
        Mode(
            key=DEFAULT_MODE_KEY,
            name="Voice to Text",
            description="Plain transcription without AI processing.",
            builtin=True,
        ),
        Mode(
            key="clean_transcript",
            name="Clean Transcript",
            description="Remove filler words and fix punctuation.",
            ai_processing=True,
            prompt_template=(
                "Clean up the following dictated text. Remove filler words, fix punctuation and "
                "capitalisation, and keep the original meaning and language ({{language}}). "
                "Reply with the cleaned text only.\n\n{{transcript}}"
            ),
            builtin=True,
        ),
        Mode(
            key="email",
            name="Email",
            description="Turn a dictation into a short, polite email.",
            ai_processing=True,
            prompt_template=(
                "Rewrite the following dictation as a concise, friendly email in {{language}}. "
                "Reply with the email body only.\n\nContext:\n{{context}}\n\nDictation:\n{{transcript}}"
            ),
            builtin=True,
        ),
        Mode(
            key="meeting_notes",
            name="Meeting Notes",
            description="Summarise spoken notes as markdown bullet points.",
            ai_processing=True,
            prompt_template=(
                "Summarise the following spoken notes as markdown bullet points with a short "
                "list of action items at the end. Write in {{language}}.\n\n{{transcript}}"
            ),
            output_format=OutputFormat.MARKDOWN.value,
            builtin=True,
        ),
    )
}


class ModeDocument(BaseModel):
    """On-disk representation of a custom mode."""

    model_config = ConfigDict(extra="ignore")

    key: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    stt_provider: str = ""
    stt_model: str = ""
    ai_processing: bool = False
    llm_provider: str = ""
    llm_model: str = ""
    prompt_template: str = ""
    output_format: OutputFormat = OutputFormat.PLAIN

    def to_mode(self) -> Mode:
        return Mode(
            key=self.key,
            name=self.name,
            description=self.description,
            stt_provider=self.stt_provider,
            stt_model=self.stt_model,
            ai_processing=self.ai_processing,
            llm_provider=self.llm_provider,
            llm_model=self.llm_model,
            prompt_template=self.prompt_template,
            output_format=self.output_format.value,
            builtin=False,
        )

    @classmethod
    def from_mode(cls, mode: Mode) -> "ModeDocument":
        return cls.model_validate({k: v for k, v in mode.to_dict().items() if k != "builtin"})


class ModeRegistry:
    """Merge built-in modes with JSON documents from the modes directory."""

    def __init__(self, settings: SettingsStore, modes_dir: Optional[Path] = None) -> None:
        self.settings = settings
        self.modes_dir = modes_dir or MODES_DIR
        self._lock = threading.Lock()
        self._custom: Dict[str, Mode] = {}
        self._paths: Dict[str, Path] = {}
        self.refresh()

    def refresh(self) -> None:
        """Reload custom modes from disk, skipping unusable documents."""

        custom: Dict[str, Mode] = {}
        paths: Dict[str, Path] = {}
        if self.modes_dir.is_dir():
            for path in sorted(self.modes_dir.glob("*.json")):
                try:
                    document = ModeDocument.model_validate(json.loads(path.read_text(encoding="utf-8")))
                except (OSError, ValueError, ValidationError) as exc:
                    LOG.warning("Skipping malformed mode file %s: %s", path, exc)
                    continue
                if document.key in BUILTIN_MODES:
                    LOG.warning("Skipping mode file %s: key %r is reserved by a built-in mode", path, document.key)
                    continue
                if document.key in custom:
                    LOG.warning("Skipping mode file %s: duplicate key %r", path, document.key)
                    continue
                custom[document.key] = document.to_mode()
                paths[document.key] = path
        with self._lock:
            self._custom = custom
            self._paths = paths
        LOG.debug("Loaded %d custom modes from %s", len(custom), self.modes_dir)

    def list(self) -> List[Mode]:
        with self._lock:
            return list(BUILTIN_MODES.values()) + sorted(self._custom.values(), key=lambda m: m.name.lower())

    def get(self, key: str) -> Mode:
        if key in BUILTIN_MODES:
            return BUILTIN_MODES[key]
        with self._lock:
            try:
                return self._custom[key]
            except KeyError:
                raise ModeNotFound(key) from None

    def exists(self, key: str) -> bool:
        try:
            self.get(key)
        except ModeNotFound:
            return False
        return True

    def get_active(self) -> Mode:
        key = self.settings.get().active_mode_key
        try:
            return self.get(key)
        except ModeNotFound:
            LOG.warning("Active mode %r no longer exists; falling back to %s", key, DEFAULT_MODE_KEY)
            return BUILTIN_MODES[DEFAULT_MODE_KEY]

    def set_active(self, key: str) -> Mode:
        mode = self.get(key)
        self.settings.update(active_mode_key=key)
        return mode

    def save(self, mode: Mode) -> Mode:
        """Create or replace a custom mode."""

        if mode.key in BUILTIN_MODES:
            raise ImmutableMode(mode.key)
        if not _KEY_RE.match(mode.key):
            raise ValueError(f"Invalid mode key {mode.key!r}: use letters, digits, '_' or '-'")
        document = ModeDocument.from_mode(mode)
        self.modes_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            path = self._paths.get(mode.key, self.modes_dir / f"{mode.key}.json")
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(document.model_dump(mode="json"), indent=2), encoding="utf-8")
            tmp_path.replace(path)
            saved = document.to_mode()
            self._custom[mode.key] = saved
            self._paths[mode.key] = path
        LOG.info("Saved custom mode %s", mode.key)
        return saved

    def delete(self, key: str) -> None:
        if key in BUILTIN_MODES:
            raise ImmutableMode(key)
        with self._lock:
            if key not in self._custom:
                raise ModeNotFound(key)
            path = self._paths.pop(key)
            del self._custom[key]
        path.unlink(missing_ok=True)
        LOG.info("Deleted custom mode %s", key)
