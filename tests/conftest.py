import time

import keyring
import numpy as np
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError
from pubsub import pub

from voxtray.credentials import CredentialVault
from voxtray.models import AudioDevice, LlmProvider, SttProvider
from voxtray.postprocess import PostProcessingEngine
from voxtray.service import VoxTray
from voxtray.transcriber import TranscriptionEngine


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError("not found") from None


class FakeRecorder:
    samples = np.full(16000, 0.1, dtype=np.float32)

    def __init__(self, device=None):
        self.device = device
        self.active = False

    def start(self):
        self.active = True

    def stop(self):
        self.active = False
        return self.samples

    def levels(self):
        return 0.3, 0.5


class FakeStt:
    def __init__(self, text="hello world"):
        self.text = text
        self.delay = 0.0
        self.error = None
        self.calls = []

    def transcribe(self, samples, model, language):
        self.calls.append((len(samples), model, language))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


class FakeLlm:
    def __init__(self):
        self.prompts = []
        self.delay = 0.0
        self.error = None

    def complete(self, prompt, model):
        self.prompts.append((prompt, model))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return f"polished: {prompt.splitlines()[-1]}"


class FakeDevices:
    def list_devices(self):
        return [AudioDevice(name="Built-in Microphone", is_default=True)]

    def resolve(self, name):
        return None


@pytest.fixture(autouse=True)
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture(autouse=True)
def clean_pubsub():
    yield
    pub.unsubAll()


@pytest.fixture
def stt():
    return FakeStt()


@pytest.fixture
def llm():
    return FakeLlm()


@pytest.fixture
def service(tmp_path, stt, llm):
    credentials = CredentialVault(service="voxtray-test")
    transcriber = TranscriptionEngine(
        credentials, backends={SttProvider.WHISPER: stt, SttProvider.OPENAI: stt}
    )
    postprocessor = PostProcessingEngine(
        credentials, backends={LlmProvider.OLLAMA: llm, LlmProvider.ANTHROPIC: llm}
    )
    vox = VoxTray(
        app_dir=tmp_path / "app",
        credentials=credentials,
        devices=FakeDevices(),
        transcriber=transcriber,
        postprocessor=postprocessor,
        recorder_factory=FakeRecorder,
        clipboard=lambda: "Reply to Sam about the launch",
        level_interval=0.01,
    )
    vox.update_settings(retain_audio=False)
    return vox
