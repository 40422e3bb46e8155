import httpx
import numpy as np
import pytest

from voxtray.credentials import CredentialVault
from voxtray.errors import AuthenticationFailed, ProviderUnavailable, TranscriptionFailed
from voxtray.models import SttProvider
from voxtray.transcriber import DeepgramBackend, TranscriptionEngine


class StaticBackend:
    def transcribe(self, samples, model, language):
        return f"{model}:{language}:{len(samples)}"


def test_engine_dispatches_by_provider():
    engine = TranscriptionEngine(CredentialVault(), backends={SttProvider.WHISPER: StaticBackend()})
    samples = np.zeros(800, dtype=np.float32)
    assert engine.transcribe(samples, "whisper", "tiny", "en") == "tiny:en:800"


def test_engine_rejects_empty_audio():
    engine = TranscriptionEngine(CredentialVault(), backends={SttProvider.WHISPER: StaticBackend()})
    with pytest.raises(TranscriptionFailed):
        engine.transcribe(np.zeros(0, dtype=np.float32), "whisper", "tiny")


def test_engine_unknown_provider():
    engine = TranscriptionEngine(CredentialVault(), backends={SttProvider.WHISPER: StaticBackend()})
    with pytest.raises(ProviderUnavailable):
        engine.transcribe(np.ones(10, dtype=np.float32), "assemblyai", "best")
    with pytest.raises(ProviderUnavailable):
        engine.backend("deepgram")


def test_deepgram_requires_key():
    backend = DeepgramBackend(CredentialVault(service="voxtray-test"))
    with pytest.raises(AuthenticationFailed):
        backend.transcribe(np.zeros(1600, dtype=np.float32), "nova-2", "en")


def test_deepgram_sends_wav_and_parses_transcript():
    vault = CredentialVault(service="voxtray-test")
    vault.save("deepgram", "dg-key")
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(
            200,
            json={"results": {"channels": [{"alternatives": [{"transcript": " hello there "}]}]}},
        )

    backend = DeepgramBackend(vault, transport=httpx.MockTransport(handler))
    text = backend.transcribe(np.zeros(1600, dtype=np.float32), "nova-2", "en")

    request = seen["request"]
    assert text == "hello there"
    assert request.headers["authorization"] == "Token dg-key"
    assert request.url.params["model"] == "nova-2"
    assert request.url.params["language"] == "en"
    assert request.content[:4] == b"RIFF"


def test_deepgram_rejected_key():
    vault = CredentialVault(service="voxtray-test")
    vault.save("deepgram", "bad")
    backend = DeepgramBackend(vault, transport=httpx.MockTransport(lambda request: httpx.Response(403)))
    with pytest.raises(AuthenticationFailed):
        backend.transcribe(np.zeros(1600, dtype=np.float32), "nova-2", None)
