"""Speech-to-text providers."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Protocol, Tuple

import httpx
import numpy as np

from .audio import SAMPLE_RATE, encode_wav
from .credentials import CredentialVault
from .errors import (
    AuthenticationFailed,
    ProviderTimeout,
    ProviderUnavailable,
    TranscriptionFailed,
)
from .models import SttProvider

LOG = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0
DEEPGRAM_URL = "https://api.deepgram.com/v1/listen"


class TranscriptionBackend(Protocol):
    """Common interface for transcription backends."""

    def transcribe(self, samples: np.ndarray, model: str, language: Optional[str]) -> str:
        """Return the transcript for 16 kHz mono float32 samples."""


class WhisperBackend:
    """Local transcription using the `openai-whisper` package.

    Models are loaded on first use and kept warm; each loaded model has its
    own lock so overlapping requests run one after another.
    """

    def __init__(self, download_root: Optional[str] = None) -> None:
        self.download_root = download_root
        self._models: Dict[str, Tuple[object, threading.Lock]] = {}
        self._models_lock = threading.Lock()
        self.device = "cpu"

    def _import(self):
        try:
            import whisper  # type: ignore
            import torch
        except Exception as exc:  # pragma: no cover - optional dependency
            raise ProviderUnavailable(
                "The `openai-whisper` package is required for local transcription. "
                "Install it with `pip install 'voxtray[local]'`."
            ) from exc
        return whisper, torch

    def load(self, model: str) -> Tuple[object, threading.Lock]:
        with self._models_lock:
            if model in self._models:
                return self._models[model]
            whisper, torch = self._import()
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
            LOG.info("Loading whisper model %s on %s", model, self.device)
            try:
                loaded = whisper.load_model(model, device=self.device, download_root=self.download_root)
            except Exception as exc:
                raise ProviderUnavailable(f"Whisper model {model!r} is not available: {exc}") from exc
            entry = (loaded, threading.Lock())
            self._models[model] = entry
            return entry

    def is_loaded(self, model: str) -> bool:
        with self._models_lock:
            return model in self._models

    def transcribe(self, samples: np.ndarray, model: str, language: Optional[str]) -> str:
        loaded, lock = self.load(model)
        with lock:
            try:
                result = loaded.transcribe(  # type: ignore[attr-defined]
                    np.asarray(samples, dtype=np.float32),
                    language=language or None,
                    task="transcribe",
                    temperature=0.0,
                    fp16=self.device == "cuda",
                )
            except Exception as exc:
                raise TranscriptionFailed(f"Whisper transcription failed: {exc}") from exc
        return str(result.get("text", "")).strip()


class OpenAIBackend:
    """Cloud transcription using the OpenAI audio API."""

    def __init__(self, credentials: CredentialVault, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._credentials = credentials
        self._timeout = timeout

    def transcribe(self, samples: np.ndarray, model: str, language: Optional[str]) -> str:
        try:
            import openai
        except Exception as exc:  # pragma: no cover - optional dependency
            raise ProviderUnavailable("The `openai` package is required for this backend.") from exc

        api_key = self._credentials.get(SttProvider.OPENAI.value)
        if not api_key:
            raise AuthenticationFailed("An OpenAI API key is required for this backend.")

        client = openai.OpenAI(api_key=api_key, timeout=self._timeout, max_retries=0)
        kwargs = {"model": model, "file": ("audio.wav", encode_wav(samples, SAMPLE_RATE), "audio/wav")}
        if language:
            kwargs["language"] = language
        try:
            response = client.audio.transcriptions.create(**kwargs)
        except openai.AuthenticationError as exc:
            raise AuthenticationFailed(f"OpenAI rejected the API key: {exc}") from exc
        except openai.APITimeoutError as exc:
            raise ProviderTimeout(f"OpenAI request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise ProviderUnavailable(f"OpenAI is unreachable: {exc}") from exc
        except openai.APIError as exc:
            raise TranscriptionFailed(f"OpenAI error: {exc}") from exc
        return str(response.text).strip()


class DeepgramBackend:
    """Cloud transcription using Deepgram's pre-recorded audio endpoint."""

    def __init__(
        self,
        credentials: CredentialVault,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._credentials = credentials
        self._timeout = timeout
        self._transport = transport

    def transcribe(self, samples: np.ndarray, model: str, language: Optional[str]) -> str:
        api_key = self._credentials.get(SttProvider.DEEPGRAM.value)
        if not api_key:
            raise AuthenticationFailed("A Deepgram API key is required for this backend.")

        params = {"model": model, "smart_format": "true"}
        if language:
            params["language"] = language
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(
                    DEEPGRAM_URL,
                    params=params,
                    headers={"Authorization": f"Token {api_key}", "Content-Type": "audio/wav"},
                    content=encode_wav(samples, SAMPLE_RATE),
                )
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(f"Deepgram request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailable(f"Deepgram is unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationFailed(f"Deepgram rejected the API key ({response.status_code})")
        if response.is_error:
            raise TranscriptionFailed(f"Deepgram error ({response.status_code}): {response.text}")
        try:
            payload = response.json()
            return payload["results"]["channels"][0]["alternatives"][0]["transcript"].strip()
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TranscriptionFailed(f"Malformed Deepgram response: {exc}") from exc


class TranscriptionEngine:
    """Dispatch transcription to the backend named by a provider id."""

    def __init__(
        self,
        credentials: CredentialVault,
        timeout: float = DEFAULT_TIMEOUT,
        backends: Optional[Dict[SttProvider, TranscriptionBackend]] = None,
    ) -> None:
        self._backends: Dict[SttProvider, TranscriptionBackend] = backends or {
            SttProvider.WHISPER: WhisperBackend(),
            SttProvider.OPENAI: OpenAIBackend(credentials, timeout),
            SttProvider.DEEPGRAM: DeepgramBackend(credentials, timeout),
        }

    def backend(self, provider: str) -> TranscriptionBackend:
        try:
            return self._backends[SttProvider(provider)]
        except (ValueError, KeyError):
            raise ProviderUnavailable(f"Unknown transcription provider: {provider}") from None

    def preload(self, provider: str, model: str) -> None:
        backend = self.backend(provider)
        if isinstance(backend, WhisperBackend):
            backend.load(model)

    def transcribe(self, samples: np.ndarray, provider: str, model: str, language: Optional[str] = None) -> str:
        if samples is None or len(samples) == 0:
            raise TranscriptionFailed("No audio was captured.")
        backend = self.backend(provider)
        LOG.info("Transcribing %.1fs of audio with %s/%s", len(samples) / SAMPLE_RATE, provider, model)
        return backend.transcribe(samples, model, language)
