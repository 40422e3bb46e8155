"""Recording state machine driving capture, transcription and post-processing."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import numpy as np

from .audio import AudioRecorder, load_audio, save_wav
from .config import AUDIO_DIR, SettingsStore
from .devices import DeviceManager
from .errors import (
    AlreadyRecording,
    AudioCaptureError,
    NotRecording,
    ProviderTimeout,
    VoxTrayError,
)
from .events import EventBus
from .modes import ModeRegistry
from .models import HistoryItem, Mode, RecordingStatus, Settings
from .postprocess import PostProcessingEngine
from .storage import HistoryStore
from .transcriber import TranscriptionEngine

LOG = logging.getLogger(__name__)

LEVEL_INTERVAL = 0.05

_BUSY = (RecordingStatus.RECORDING, RecordingStatus.PROCESSING)


def call_with_timeout(func: Callable[..., Any], timeout: float, *args: Any) -> Any:
    """Run ``func`` on a worker thread and give up after ``timeout`` seconds.

    The worker is a daemon thread: a provider that never answers is abandoned
    rather than joined.
    """

    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["value"] = func(*args)
        except BaseException as exc:  # noqa: BLE001 - re-raised in the calling thread
            outcome["error"] = exc

    worker = threading.Thread(target=target, name="voxtray-provider", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise ProviderTimeout(f"Provider did not respond within {timeout:g}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def read_clipboard() -> str:
    try:
        import pyperclip

        return pyperclip.paste() or ""
    except Exception as exc:  # noqa: BLE001 - context is optional
        LOG.debug("Clipboard unavailable: %s", exc)
        return ""


@dataclass
class _Cycle:
    settings: Settings
    mode: Mode
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class RecordingOrchestrator:
    """Own the recording status and run one cycle at a time."""

    def __init__(
        self,
        settings: SettingsStore,
        modes: ModeRegistry,
        history: HistoryStore,
        transcriber: TranscriptionEngine,
        postprocessor: PostProcessingEngine,
        devices: Optional[DeviceManager] = None,
        events: Optional[EventBus] = None,
        recorder_factory: Callable[[Optional[int]], AudioRecorder] = AudioRecorder,
        clipboard: Callable[[], str] = read_clipboard,
        audio_dir: Path = AUDIO_DIR,
        level_interval: float = LEVEL_INTERVAL,
    ) -> None:
        self.settings = settings
        self.modes = modes
        self.history = history
        self.transcriber = transcriber
        self.postprocessor = postprocessor
        self.devices = devices or DeviceManager()
        self.events = events or EventBus()
        self.audio_dir = audio_dir
        self._recorder_factory = recorder_factory
        self._clipboard = clipboard
        self._level_interval = level_interval

        self._lock = threading.RLock()
        self._status = RecordingStatus.LOADING
        self._last_error: Optional[str] = None
        self._recorder: Optional[AudioRecorder] = None
        self._cycle: Optional[_Cycle] = None
        self._level_stop: Optional[threading.Event] = None
        self._level_thread: Optional[threading.Thread] = None

    # -- status -----------------------------------------------------------

    @property
    def status(self) -> RecordingStatus:
        return self._status

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def _set_status(self, status: RecordingStatus, error: Optional[str] = None) -> None:
        with self._lock:
            self._status = status
            self._last_error = error
        LOG.debug("Status -> %s", status.value)
        self.events.status(status, error)

    def warm_up(self) -> None:
        """Preload the active mode's transcription model, then become ready."""

        try:
            mode = self.modes.get_active().resolve(self.settings.get())
            self.transcriber.preload(mode.stt_provider, mode.stt_model)
        except VoxTrayError as exc:
            LOG.warning("Could not preload transcription model: %s", exc)
        finally:
            with self._lock:
                if self._status is RecordingStatus.LOADING:
                    self._set_status(RecordingStatus.READY)

    def acknowledge_error(self) -> RecordingStatus:
        with self._lock:
            if self._status is RecordingStatus.ERROR:
                self._set_status(RecordingStatus.READY)
            return self._status

    def _begin(self, mode_key: Optional[str] = None) -> _Cycle:
        # Caller holds the lock.
        if self._status in _BUSY:
            raise AlreadyRecording()
        settings = self.settings.get()
        mode = self.modes.get(mode_key) if mode_key else self.modes.get_active()
        return _Cycle(settings=settings, mode=mode.resolve(settings))

    # -- commands ---------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            cycle = self._begin()
            device = self.devices.resolve(cycle.settings.input_device)
            recorder = self._recorder_factory(device)
            recorder.start()
            self._recorder = recorder
            self._cycle = cycle
            self._set_status(RecordingStatus.RECORDING)
            self._start_levels(recorder)
        LOG.info("Recording started with mode %s", cycle.mode.key)

    def stop(self) -> HistoryItem:
        """Stop capture and run the cycle; returns the written history item."""

        with self._lock:
            recorder, cycle = self._recorder, self._cycle
            if self._status is not RecordingStatus.RECORDING or recorder is None or cycle is None:
                raise NotRecording()
            self._recorder = None
            self._set_status(RecordingStatus.PROCESSING)
        self._stop_levels()
        return self._run(cycle, load=recorder.stop, retain=cycle.settings.retain_audio)

    def transcribe_file(self, path: Union[str, Path]) -> HistoryItem:
        path = Path(path).expanduser()
        if not path.is_file():
            raise AudioCaptureError(f"Audio file not found: {path}")
        with self._lock:
            cycle = self._begin()
            self._cycle = cycle
            self._set_status(RecordingStatus.PROCESSING)
        return self._run(cycle, load=lambda: load_audio(path), audio_path=str(path))

    def reprocess(self, item_id: str, mode_key: str, retranscribe: bool = False) -> HistoryItem:
        """Write a new history item from an existing one using another mode.

        The stored raw transcript is reused unless ``retranscribe`` is set and
        the retained audio file still exists.
        """

        source = self.history.get(item_id)
        with self._lock:
            cycle = self._begin(mode_key)
            self._cycle = cycle
            self._set_status(RecordingStatus.PROCESSING)

        audio_path = source.audio_path
        if retranscribe and audio_path and Path(audio_path).is_file():
            return self._run(cycle, load=lambda: load_audio(audio_path), audio_path=audio_path)
        if retranscribe:
            LOG.warning("No retained audio for %s; reusing the stored transcript", item_id)
        return self._run(
            cycle,
            transcript=source.transcript_raw,
            audio_path=audio_path,
            stt=(source.stt_provider, source.stt_model),
        )

    # -- cycle ------------------------------------------------------------

    def _run(
        self,
        cycle: _Cycle,
        load: Optional[Callable[[], np.ndarray]] = None,
        transcript: Optional[str] = None,
        audio_path: Optional[str] = None,
        retain: bool = False,
        stt: Optional[Tuple[str, str]] = None,
    ) -> HistoryItem:
        mode, settings = cycle.mode, cycle.settings
        raw = transcript or ""
        output = ""
        used_llm = False
        failure: Optional[BaseException] = None

        try:
            if load is not None:
                samples = load()
                if retain and len(samples):
                    audio_path = self._retain(samples, cycle.item_id)
                raw = call_with_timeout(
                    self.transcriber.transcribe,
                    settings.provider_timeout,
                    samples,
                    mode.stt_provider,
                    mode.stt_model,
                    settings.language,
                )
            if mode.ai_processing:
                used_llm = True
                output = self._post_process(raw, cycle)
            else:
                output = raw
        except Exception as exc:  # noqa: BLE001 - recorded in history, then re-raised
            failure = exc
            LOG.exception("Cycle %s failed: %s", cycle.item_id, exc)

        stt_provider, stt_model = stt or (mode.stt_provider, mode.stt_model)
        try:
            item = self.history.create(
                item_id=cycle.item_id,
                mode_key=mode.key,
                audio_path=audio_path,
                transcript_raw=raw,
                output_final=output,
                stt_provider=stt_provider,
                stt_model=stt_model,
                llm_provider=mode.llm_provider if used_llm else None,
                llm_model=mode.llm_model if used_llm else None,
                duration_ms=cycle.elapsed_ms,
                error=_describe(failure) if failure else None,
            )
        except Exception as exc:
            self._finish(RecordingStatus.ERROR, _describe(exc))
            raise

        if failure is not None:
            self._finish(RecordingStatus.ERROR, item.error)
            raise failure
        self._finish(RecordingStatus.READY)
        LOG.info("Cycle %s finished in %d ms", item.id, item.duration_ms)
        return item

    def _post_process(self, transcript: str, cycle: _Cycle) -> str:
        settings = cycle.settings
        self.events.ai_processing(True)
        try:
            context = self._clipboard() if settings.context_awareness else ""
            return call_with_timeout(
                self.postprocessor.process,
                settings.provider_timeout,
                transcript,
                cycle.mode,
                context,
                settings.language,
            )
        finally:
            self.events.ai_processing(False)

    def _retain(self, samples: np.ndarray, item_id: str) -> Optional[str]:
        try:
            return str(save_wav(samples, self.audio_dir / f"{item_id}.wav"))
        except Exception as exc:  # noqa: BLE001 - audio retention is optional
            LOG.warning("Failed to retain audio for %s: %s", item_id, exc)
            return None

    def _finish(self, status: RecordingStatus, error: Optional[str] = None) -> None:
        with self._lock:
            self._cycle = None
            self._set_status(status, error)

    # -- audio levels -----------------------------------------------------

    def _start_levels(self, recorder: AudioRecorder) -> None:
        stop = threading.Event()
        thread = threading.Thread(
            target=self._emit_levels, args=(recorder, stop), name="voxtray-levels", daemon=True
        )
        self._level_stop, self._level_thread = stop, thread
        thread.start()

    def _stop_levels(self) -> None:
        stop, thread = self._level_stop, self._level_thread
        self._level_stop = self._level_thread = None
        if stop is not None:
            stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def _emit_levels(self, recorder: AudioRecorder, stop: threading.Event) -> None:
        while not stop.wait(self._level_interval):
            level, peak = recorder.levels()
            self.events.audio_level(level, peak)


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
