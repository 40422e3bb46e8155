"""Microphone capture and WAV helpers."""

from __future__ import annotations

import io
import logging
import threading
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

from .errors import AudioCaptureError, TranscriptionFailed

SAMPLE_RATE = 16000

LOG = logging.getLogger(__name__)


def resample(samples: np.ndarray, from_rate: int, to_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Linear interpolation resampling."""

    samples = np.asarray(samples, dtype=np.float32)
    if from_rate == to_rate or samples.size == 0:
        return samples
    new_len = int(samples.size * to_rate / from_rate)
    if new_len == 0:
        return np.zeros(0, dtype=np.float32)
    positions = np.arange(new_len, dtype=np.float64) * (from_rate / to_rate)
    return np.interp(positions, np.arange(samples.size), samples).astype(np.float32)


def to_mono(samples: np.ndarray) -> np.ndarray:
    samples = np.asarray(samples, dtype=np.float32)
    if samples.ndim > 1:
        samples = samples.mean(axis=1)
    return samples


def compute_levels(chunk: np.ndarray) -> Tuple[float, float]:
    """Return ``(level, peak)`` in [0, 1] for a chunk of float samples.

    Typical speech sits around 0.1-0.3 RMS, so the level is scaled by three.
    """

    chunk = np.asarray(chunk, dtype=np.float32).ravel()
    if chunk.size == 0:
        return 0.0, 0.0
    rms = float(np.sqrt(np.mean(chunk**2)))
    peak = float(np.max(np.abs(chunk)))
    return min(rms * 3.0, 1.0), min(peak, 1.0)


def duration_ms(sample_count: int, sample_rate: int = SAMPLE_RATE) -> int:
    return sample_count * 1000 // sample_rate


def _soundfile():
    try:
        import soundfile as sf  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("The `soundfile` package is required to read and write audio files.") from exc
    return sf


def encode_wav(samples: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Serialise mono float samples as 16-bit PCM WAV bytes."""

    sf = _soundfile()
    buffer = io.BytesIO()
    sf.write(buffer, np.clip(samples, -1.0, 1.0), sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def save_wav(samples: np.ndarray, path: Path, sample_rate: int = SAMPLE_RATE) -> Path:
    sf = _soundfile()
    path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(path, np.clip(samples, -1.0, 1.0), sample_rate, subtype="PCM_16")
    LOG.info("Saved WAV file: %s", path)
    return path


def load_audio(path: Union[str, Path]) -> np.ndarray:
    """Read an audio file as mono float32 samples at :data:`SAMPLE_RATE`."""

    sf = _soundfile()
    try:
        data, rate = sf.read(str(path), dtype="float32", always_2d=False)
    except Exception as exc:
        raise TranscriptionFailed(f"Unable to decode audio file {path}: {exc}") from exc
    return resample(to_mono(data), int(rate), SAMPLE_RATE)


class AudioRecorder:
    """Stream audio from an input device into memory.

    Samples are captured at the device's native rate and converted to 16 kHz
    mono when the recording stops.
    """

    def __init__(self, device: Optional[int] = None) -> None:
        try:
            import sounddevice as sd  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise AudioCaptureError("The `sounddevice` package is required for recording.") from exc

        self._sd = sd
        self._device = device
        self._stream = None
        self._samplerate = SAMPLE_RATE
        self._frames: list[np.ndarray] = []
        self._frames_lock = threading.Lock()
        self._level = 0.0
        self._peak = 0.0

    @property
    def active(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return

        try:
            info = self._sd.query_devices(self._device, "input")
            self._samplerate = int(info["default_samplerate"]) or SAMPLE_RATE
            self._frames = []
            self._stream = self._sd.InputStream(
                samplerate=self._samplerate,
                channels=1,
                dtype="float32",
                device=self._device,
                callback=self._callback,
            )
            self._stream.start()
        except Exception as exc:
            self._stream = None
            raise AudioCaptureError(f"Failed to open audio input: {exc}") from exc
        LOG.info("Recording started on %s at %s Hz", info.get("name", "default"), self._samplerate)

    def stop(self) -> np.ndarray:
        """Close the stream and return everything buffered, resampled to 16 kHz."""

        if self._stream is None:
            raise AudioCaptureError("Recording is not active.")

        stream, self._stream = self._stream, None
        try:
            stream.stop()
            stream.close()
        except Exception as exc:  # noqa: BLE001 - buffered audio is still returned
            LOG.warning("Failed to close audio input cleanly: %s", exc)

        with self._frames_lock:
            frames, self._frames = self._frames, []
        if not frames:
            return np.zeros(0, dtype=np.float32)
        audio = to_mono(np.concatenate(frames, axis=0))
        LOG.info("Recording stopped. %d samples captured", audio.size)
        return resample(audio, self._samplerate, SAMPLE_RATE)

    def levels(self) -> Tuple[float, float]:
        return self._level, self._peak

    def _callback(self, indata, frames, time, status) -> None:  # type: ignore[override]
        if status:
            LOG.debug("Recorder status: %s", status)
        chunk = indata.copy()
        with self._frames_lock:
            self._frames.append(chunk)
        self._level, self._peak = compute_levels(chunk)
