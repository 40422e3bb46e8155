import json

import pytest

from voxtray.config import SettingsStore
from voxtray.errors import ImmutableMode, ModeNotFound
from voxtray.models import Mode, Settings
from voxtray.modes import BUILTIN_MODES, DEFAULT_MODE_KEY, ModeRegistry


@pytest.fixture
def registry(tmp_path):
    return ModeRegistry(SettingsStore(tmp_path / "settings.json"), tmp_path / "modes")


def _write(modes_dir, filename, payload):
    modes_dir.mkdir(parents=True, exist_ok=True)
    (modes_dir / filename).write_text(json.dumps(payload), encoding="utf-8")


def test_builtin_modes_are_listed_first(registry):
    keys = [mode.key for mode in registry.list()]
    assert keys[: len(BUILTIN_MODES)] == list(BUILTIN_MODES)
    assert registry.get(DEFAULT_MODE_KEY).ai_processing is False
    assert all(mode.builtin for mode in BUILTIN_MODES.values())


def test_custom_modes_are_loaded_and_bad_files_skipped(tmp_path):
    modes_dir = tmp_path / "modes"
    _write(modes_dir, "standup.json", {"key": "standup", "name": "Standup", "ai_processing": True,
                                       "prompt_template": "Summarise: {{transcript}}"})
    _write(modes_dir, "clash.json", {"key": "email", "name": "My Email"})
    _write(modes_dir, "incomplete.json", {"name": "No key"})
    (modes_dir / "broken.json").write_text("{", encoding="utf-8")

    registry = ModeRegistry(SettingsStore(tmp_path / "settings.json"), modes_dir)

    custom = [mode for mode in registry.list() if not mode.builtin]
    assert [mode.key for mode in custom] == ["standup"]
    assert registry.get("email").name == "Email"


def test_save_and_delete_custom_mode(tmp_path, registry):
    mode = Mode(key="todo", name="To-do list", ai_processing=True, prompt_template="{{transcript}}")
    registry.save(mode)

    reopened = ModeRegistry(registry.settings, tmp_path / "modes")
    assert reopened.get("todo").name == "To-do list"

    registry.save(Mode(key="todo", name="Tasks"))
    assert registry.get("todo").name == "Tasks"
    assert len(list((tmp_path / "modes").glob("*.json"))) == 1

    registry.delete("todo")
    assert not registry.exists("todo")
    with pytest.raises(ModeNotFound):
        registry.delete("todo")


def test_builtin_modes_are_immutable(registry):
    with pytest.raises(ImmutableMode):
        registry.save(Mode(key="email", name="Mine"))
    with pytest.raises(ImmutableMode):
        registry.delete("voice_to_text")


def test_invalid_key_is_rejected(registry):
    with pytest.raises(ValueError):
        registry.save(Mode(key="../escape", name="Nope"))


def test_set_active_and_dangling_fallback(registry):
    assert registry.set_active("meeting_notes").key == "meeting_notes"
    assert registry.settings.get().active_mode_key == "meeting_notes"

    with pytest.raises(ModeNotFound):
        registry.set_active("missing")

    registry.settings.update(active_mode_key="missing")
    assert registry.get_active().key == DEFAULT_MODE_KEY


def test_resolve_inherits_settings_defaults():
    settings = Settings(default_stt_provider="openai", default_stt_model="whisper-1")
    resolved = Mode(key="x", name="X", llm_model="gpt-4o-mini").resolve(settings)
    assert resolved.stt_provider == "openai"
    assert resolved.stt_model == "whisper-1"
    assert resolved.llm_provider == settings.default_llm_provider
    assert resolved.llm_model == "gpt-4o-mini"
