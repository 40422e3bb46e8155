from typer.testing import CliRunner

from voxtray import cli

runner = CliRunner()


def test_history_list_shows_markup_literally(service, monkeypatch):
    monkeypatch.setattr(cli, "_service", lambda: service)
    service.history.create(
        mode_key="voice_to_text",
        transcript_raw="[bold] ok [/x]",
        output_final="[bold] ok [/x]",
        stt_provider="whisper",
        stt_model="base.en",
        duration_ms=900,
    )

    result = runner.invoke(cli.app, ["history", "list"])

    assert result.exit_code == 0, result.output
    assert "[bold] ok [/x]" in result.output


def test_missing_mode_exits_with_error(service, monkeypatch):
    monkeypatch.setattr(cli, "_service", lambda: service)
    result = runner.invoke(cli.app, ["modes", "use", "nope"])
    assert result.exit_code == 1
