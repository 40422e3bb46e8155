import threading
import time

import numpy as np
import pytest

from voxtray.errors import (
    AlreadyRecording,
    AudioCaptureError,
    NotRecording,
    PostProcessingFailed,
    ProviderTimeout,
    TranscriptionFailed,
)
from voxtray.events import AI_PROCESSING_TOPIC, AUDIO_LEVEL_TOPIC, STATUS_TOPIC
from voxtray.models import RecordingStatus
from voxtray.orchestrator import call_with_timeout


def test_warm_up_moves_loading_to_ready(service):
    assert service.orchestrator.status is RecordingStatus.LOADING
    service.orchestrator.warm_up()
    assert service.orchestrator.status is RecordingStatus.READY


def test_record_cycle_writes_one_history_item(service, stt):
    service.start_recording()
    assert service.get_recording_status()["status"] == "recording"

    output = service.stop_recording()

    assert output == "hello world"
    assert service.orchestrator.status is RecordingStatus.READY
    items = service.list_history()
    assert len(items) == 1
    item = items[0]
    assert item.mode_key == "voice_to_text"
    assert item.transcript_raw == item.output_final == "hello world"
    assert item.stt_provider == "whisper"
    assert item.stt_model == "base.en"
    assert item.llm_provider is None
    assert item.error is None
    assert stt.calls == [(16000, "base.en", "en")]


def test_status_events_follow_the_cycle(service):
    seen = []

    def on_status(event):
        seen.append(event.status)

    service.events.subscribe(STATUS_TOPIC, on_status)
    service.start_recording()
    service.stop_recording()

    assert seen == [RecordingStatus.RECORDING, RecordingStatus.PROCESSING, RecordingStatus.READY]


def test_start_while_recording_is_rejected(service):
    service.start_recording()
    with pytest.raises(AlreadyRecording):
        service.start_recording()
    assert service.orchestrator.status is RecordingStatus.RECORDING
    service.stop_recording()


def test_stop_without_recording_is_rejected(service):
    with pytest.raises(NotRecording):
        service.stop_recording()
    assert service.list_history() == []


def test_audio_levels_are_published_while_recording(service):
    levels = []

    def on_level(event):
        levels.append((event.level, event.peak))

    service.events.subscribe(AUDIO_LEVEL_TOPIC, on_level)
    service.start_recording()
    deadline = time.monotonic() + 2.0
    while not levels and time.monotonic() < deadline:
        time.sleep(0.01)
    service.stop_recording()

    assert levels and levels[0] == (0.3, 0.5)


def test_ai_mode_runs_post_processing(service, llm):
    flags = []

    def on_ai(event):
        flags.append(event.active)

    service.events.subscribe(AI_PROCESSING_TOPIC, on_ai)
    service.set_active_mode("clean_transcript")
    service.start_recording()
    output = service.stop_recording()

    assert output == "polished: hello world"
    assert flags == [True, False]
    prompt, model = llm.prompts[0]
    assert "hello world" in prompt
    assert "{{" not in prompt
    assert model == "llama3.2"
    item = service.list_history()[0]
    assert item.transcript_raw == "hello world"
    assert item.llm_provider == "ollama"
    assert item.llm_model == "llama3.2"


def test_clipboard_context_only_when_enabled(service, llm):
    service.set_active_mode("email")
    service.start_recording()
    service.stop_recording()
    assert "Reply to Sam" not in llm.prompts[-1][0]

    service.update_settings(context_awareness=True)
    service.start_recording()
    service.stop_recording()
    assert "Reply to Sam about the launch" in llm.prompts[-1][0]


def test_provider_timeout_ends_in_error(service, stt):
    service.update_settings(provider_timeout=0.05)
    stt.delay = 0.5

    service.start_recording()
    with pytest.raises(ProviderTimeout):
        service.stop_recording()

    status = service.get_recording_status()
    assert status["status"] == "error"
    assert "did not respond" in status["error"]
    items = service.list_history()
    assert len(items) == 1
    assert items[0].failed
    assert items[0].output_final == ""

    assert service.acknowledge_error() is RecordingStatus.READY


def test_transcription_failure_is_recorded_and_next_start_allowed(service, stt):
    stt.error = TranscriptionFailed("model crashed")
    service.start_recording()
    with pytest.raises(TranscriptionFailed):
        service.stop_recording()
    assert service.orchestrator.status is RecordingStatus.ERROR
    assert service.list_history()[0].error == "model crashed"

    stt.error = None
    service.start_recording()
    assert service.stop_recording() == "hello world"
    assert service.history.count() == 2


def test_empty_capture_fails_the_cycle(service, monkeypatch):
    class SilentRecorder:
        def __init__(self, device=None):
            pass

        def start(self):
            pass

        def stop(self):
            return np.zeros(0, dtype=np.float32)

        def levels(self):
            return 0.0, 0.0

    monkeypatch.setattr(service.orchestrator, "_recorder_factory", SilentRecorder)
    service.start_recording()
    with pytest.raises(TranscriptionFailed, match="No audio"):
        service.stop_recording()
    assert service.list_history()[0].error == "No audio was captured."


def test_dangling_active_mode_falls_back_to_default(service):
    service.settings.update(active_mode_key="deleted_mode")
    assert service.get_active_mode().key == "voice_to_text"

    service.start_recording()
    service.stop_recording()
    assert service.list_history()[0].mode_key == "voice_to_text"


def test_reprocess_creates_new_item_and_keeps_source(service, stt, llm):
    service.start_recording()
    service.stop_recording()
    source = service.list_history()[0]

    stt.text = "something else entirely"
    output = service.reprocess_history_item(source.id, "clean_transcript")

    assert output == "polished: hello world"
    assert service.history.count() == 2
    assert service.get_history_item(source.id) == source
    new = next(item for item in service.list_history() if item.id != source.id)
    assert new.mode_key == "clean_transcript"
    assert new.transcript_raw == "hello world"
    assert new.stt_provider == source.stt_provider
    assert new.stt_model == source.stt_model
    assert len(stt.calls) == 1


def test_transcribe_missing_file(service, tmp_path):
    with pytest.raises(AudioCaptureError):
        service.transcribe_file(tmp_path / "missing.wav")
    assert service.list_history() == []


def test_retained_audio_is_saved_under_item_id(service):
    service.update_settings(retain_audio=True)
    service.start_recording()
    service.stop_recording()

    item = service.list_history()[0]
    assert item.audio_path is not None
    assert item.audio_path.endswith(f"{item.id}.wav")


def test_call_with_timeout_propagates_errors():
    def boom():
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        call_with_timeout(boom, 1.0)
    assert call_with_timeout(lambda x: x * 2, 1.0, 21) == 42


def test_transcribe_wav_file(service, stt, tmp_path):
    import soundfile as sf

    path = tmp_path / "memo.wav"
    sf.write(path, np.full(16000, 0.1, dtype=np.float32), 16000, subtype="PCM_16")

    assert service.transcribe_file(path) == "hello world"

    assert stt.calls == [(16000, "base.en", "en")]
    item = service.list_history()[0]
    assert item.audio_path == str(path)
    assert item.transcript_raw == "hello world"
    assert service.orchestrator.status is RecordingStatus.READY


def test_file_and_reprocess_rejected_while_recording(service, tmp_path):
    service.start_recording()
    service.stop_recording()
    source = service.list_history()[0]
    path = tmp_path / "memo.wav"
    path.write_bytes(b"RIFF")

    service.start_recording()
    with pytest.raises(AlreadyRecording):
        service.transcribe_file(path)
    with pytest.raises(AlreadyRecording):
        service.reprocess_history_item(source.id, "clean_transcript")
    assert service.orchestrator.status is RecordingStatus.RECORDING
    assert service.history.count() == 1

    service.stop_recording()
    assert service.history.count() == 2


def test_llm_failure_keeps_raw_transcript(service, llm):
    llm.error = PostProcessingFailed("ollama returned garbage")
    service.set_active_mode("clean_transcript")

    service.start_recording()
    with pytest.raises(PostProcessingFailed):
        service.stop_recording()

    item = service.list_history()[0]
    assert item.transcript_raw == "hello world"
    assert item.output_final == ""
    assert item.error == "ollama returned garbage"
    assert service.orchestrator.status is RecordingStatus.ERROR


def test_llm_timeout_ends_in_error(service, llm):
    service.update_settings(provider_timeout=0.05)
    llm.delay = 0.5
    flags = []

    def on_ai(event):
        flags.append(event.active)

    service.events.subscribe(AI_PROCESSING_TOPIC, on_ai)
    service.set_active_mode("meeting_notes")
    service.start_recording()
    with pytest.raises(ProviderTimeout):
        service.stop_recording()

    assert flags == [True, False]
    assert service.orchestrator.status is RecordingStatus.ERROR
    item = service.list_history()[0]
    assert item.failed
    assert item.transcript_raw == "hello world"


def test_concurrent_start_only_one_wins(service):
    barrier = threading.Barrier(2)
    outcomes = []

    def press():
        barrier.wait()
        try:
            service.start_recording()
        except AlreadyRecording:
            outcomes.append("rejected")
        else:
            outcomes.append("started")

    threads = [threading.Thread(target=press) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert sorted(outcomes) == ["rejected", "started"]
    assert service.orchestrator.status is RecordingStatus.RECORDING
    service.stop_recording()
    assert service.history.count() == 1
