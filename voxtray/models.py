"""Dataclasses describing persistent and in-flight objects for voxtray."""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class RecordingStatus(str, Enum):
    """User-visible pipeline states."""

    LOADING = "loading"
    RECORDING = "recording"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class SttProvider(str, Enum):
    WHISPER = "whisper"
    OPENAI = "openai"
    DEEPGRAM = "deepgram"


class LlmProvider(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class OutputFormat(str, Enum):
    PLAIN = "plain"
    MARKDOWN = "markdown"


class ExportFormat(str, Enum):
    TXT = "txt"
    MD = "md"
    SRT = "srt"
    VTT = "vtt"


@dataclass(slots=True, frozen=True)
class Mode:
    """A named processing configuration.

    Empty provider or model fields inherit the matching ``default_*`` value
    from :class:`Settings` when the mode is resolved for a cycle.
    """

    key: str
    name: str
    description: str = ""
    stt_provider: str = ""
    stt_model: str = ""
    ai_processing: bool = False
    llm_provider: str = ""
    llm_model: str = ""
    prompt_template: str = ""
    output_format: str = OutputFormat.PLAIN.value
    builtin: bool = False

    def resolve(self, settings: "Settings") -> "Mode":
        """Return a copy with inherited provider and model fields filled in."""

        return dataclasses.replace(
            self,
            stt_provider=self.stt_provider or settings.default_stt_provider,
            stt_model=self.stt_model or settings.default_stt_model,
            llm_provider=self.llm_provider or settings.default_llm_provider,
            llm_model=self.llm_model or settings.default_llm_model,
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(slots=True, frozen=True)
class HistoryItem:
    """Immutable record of one transcription cycle."""

    id: str
    created_at: datetime
    mode_key: str
    audio_path: Optional[str]
    transcript_raw: str
    output_final: str
    stt_provider: str
    stt_model: str
    llm_provider: Optional[str]
    llm_model: Optional[str]
    duration_ms: int
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(slots=True)
class Settings:
    """User configuration stored on disk."""

    default_stt_provider: str = SttProvider.WHISPER.value
    default_stt_model: str = "base.en"
    default_llm_provider: str = LlmProvider.OLLAMA.value
    default_llm_model: str = "llama3.2"
    active_mode_key: str = "voice_to_text"
    input_device: str = ""
    auto_paste: bool = True
    context_awareness: bool = False
    language: str = "en"
    provider_timeout: float = 120.0
    retain_audio: bool = True
    ollama_url: str = field(default_factory=lambda: os.getenv("OLLAMA_HOST", "http://localhost:11434"))


@dataclass(slots=True, frozen=True)
class AudioDevice:
    name: str
    is_default: bool = False
