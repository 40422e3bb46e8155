"""Command line interface for the voxtray application."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterator, Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress_bar import ProgressBar
from rich.table import Table

from . import __version__
from .errors import VoxTrayError
from .events import AUDIO_LEVEL_TOPIC
from .models import ExportFormat, Mode
from .modes import ModeDocument
from .service import VoxTray

app = typer.Typer(add_completion=False, help="Local voice transcription with optional AI rewriting.")
modes_app = typer.Typer(help="Inspect and manage processing modes.")
devices_app = typer.Typer(help="Audio input devices.")
history_app = typer.Typer(help="Browse, export and reprocess past transcriptions.")
key_app = typer.Typer(help="Provider API keys stored in the OS keyring.")
app.add_typer(modes_app, name="modes")
app.add_typer(devices_app, name="devices")
app.add_typer(history_app, name="history")
app.add_typer(key_app, name="key")

console = Console()


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except (VoxTrayError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _service() -> VoxTray:
    with _handle_errors():
        return VoxTray()


def _print_output(text: str, copy: bool) -> None:
    typer.echo(text)
    if copy and text:
        try:
            import pyperclip

            pyperclip.copy(text)
        except Exception as exc:  # noqa: BLE001 - clipboard is a convenience
            typer.secho(f"Could not copy to clipboard: {exc}", fg=typer.colors.YELLOW, err=True)
        else:
            typer.secho("Copied to clipboard.", fg=typer.colors.BLUE, err=True)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    if version:
        typer.echo(f"voxtray v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def record(
    copy: bool = typer.Option(False, "--copy", help="Copy the final text to the clipboard."),
) -> None:
    """Record from the microphone until Enter is pressed."""

    service = _service()
    with console.status("Loading transcription model…"):
        service.orchestrator.warm_up()

    mode = service.get_active_mode()
    meter = ProgressBar(total=1.0, completed=0.0, width=40)

    def on_level(event) -> None:
        meter.update(event.level)

    service.events.subscribe(AUDIO_LEVEL_TOPIC, on_level)
    with _handle_errors():
        service.start_recording()
        console.print(f"Recording with mode [bold]{escape(mode.name)}[/bold]. Press Enter to stop.")
        with Live(meter, console=console, refresh_per_second=20, transient=True):
            input()
        with console.status("Processing…"):
            output = service.stop_recording()
    service.events.unsubscribe(AUDIO_LEVEL_TOPIC, on_level)
    _print_output(output, copy)


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the audio file."),
    copy: bool = typer.Option(False, "--copy", help="Copy the final text to the clipboard."),
) -> None:
    """Transcribe an audio file with the active mode and store the result."""

    service = _service()
    with _handle_errors(), console.status(f"Transcribing {audio.name}…"):
        output = service.transcribe_file(audio)
    _print_output(output, copy)


@app.command()
def status() -> None:
    """Summarise the active mode, providers and stored history."""

    service = _service()
    settings = service.get_settings()
    mode = service.get_active_mode().resolve(settings)
    typer.secho(f"Active mode: {mode.name} ({mode.key})", fg=typer.colors.BLUE)
    typer.echo(f"STT: {mode.stt_provider}/{mode.stt_model}")
    if mode.ai_processing:
        typer.echo(f"LLM: {mode.llm_provider}/{mode.llm_model}")
    typer.echo(f"Input device: {settings.input_device or 'default'}")
    with _handle_errors():
        typer.echo(f"History items: {service.history.count()}")
        for provider in ("openai", "anthropic", "deepgram"):
            state = "configured" if service.has_api_key(provider) else "not configured"
            typer.echo(f"{provider} key: {state}")


@modes_app.command("list")
def modes_list() -> None:
    """List built-in and custom modes."""

    service = _service()
    active = service.get_active_mode().key
    table = Table("", "Key", "Name", "STT", "LLM")
    for mode in service.list_modes():
        llm = f"{mode.llm_provider or 'default'}/{mode.llm_model or 'default'}" if mode.ai_processing else "-"
        stt = f"{mode.stt_provider or 'default'}/{mode.stt_model or 'default'}"
        name = mode.name if mode.builtin else f"{mode.name} (custom)"
        table.add_row("*" if mode.key == active else "", mode.key, escape(name), stt, llm)
    console.print(table)


@modes_app.command("show")
def modes_show(key: Optional[str] = typer.Argument(None, help="Mode key; defaults to the active mode.")) -> None:
    """Show a mode as JSON."""

    service = _service()
    with _handle_errors():
        mode = service.modes.get(key) if key else service.get_active_mode()
    typer.echo(json.dumps(mode.to_dict(), indent=2))


@modes_app.command("use")
def modes_use(key: str = typer.Argument(..., help="Mode key to activate.")) -> None:
    """Set the active mode."""

    service = _service()
    with _handle_errors():
        mode = service.set_active_mode(key)
    typer.secho(f"Active mode: {mode.name}", fg=typer.colors.BLUE)


@modes_app.command("add")
def modes_add(
    document: Path = typer.Argument(..., exists=True, readable=True, help="JSON mode document."),
) -> None:
    """Create or replace a custom mode from a JSON document."""

    service = _service()
    with _handle_errors():
        mode: Mode = ModeDocument.model_validate_json(document.read_text(encoding="utf-8")).to_mode()
        service.save_mode(mode)
    typer.secho(f"Saved mode {mode.key}.", fg=typer.colors.BLUE)


@modes_app.command("remove")
def modes_remove(key: str = typer.Argument(..., help="Custom mode key.")) -> None:
    """Delete a custom mode."""

    service = _service()
    with _handle_errors():
        service.delete_mode(key)
    typer.secho(f"Mode {key} deleted.", fg=typer.colors.BLUE)


@devices_app.command("list")
def devices_list() -> None:
    """List audio input devices."""

    service = _service()
    devices = service.list_input_devices()
    if not devices:
        typer.echo("No input devices found.")
        return
    selected = service.get_settings().input_device
    for device in devices:
        markers = []
        if device.is_default:
            markers.append("default")
        if device.name == selected:
            markers.append("selected")
        suffix = f" ({', '.join(markers)})" if markers else ""
        typer.echo(f"{device.name}{suffix}")


@devices_app.command("use")
def devices_use(name: str = typer.Argument(..., help="Device name, or 'default'.")) -> None:
    """Select the input device used for recording."""

    service = _service()
    with _handle_errors():
        service.set_input_device("" if name == "default" else name)
    typer.secho(f"Input device set to {name}.", fg=typer.colors.BLUE)


@history_app.command("list")
def history_list(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by text."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum number of items."),
) -> None:
    """List past transcriptions, newest first."""

    service = _service()
    with _handle_errors():
        items = service.list_history(query=search, limit=limit)
    if not items:
        typer.echo("No history found. Use `voxtray record` to create some.")
        return
    table = Table("ID", "Created", "Mode", "Output")
    for item in items:
        text = item.error or item.output_final
        preview = escape(text if len(text) <= 60 else text[:57] + "...")
        if item.error:
            preview = f"[red]{preview}[/red]"
        table.add_row(item.id[:12], f"{item.created_at.astimezone():%Y-%m-%d %H:%M}", item.mode_key, preview)
    console.print(table)


def _resolve_id(service: VoxTray, prefix: str) -> str:
    for item in service.list_history(limit=500):
        if item.id.startswith(prefix):
            return item.id
    return prefix


@history_app.command("show")
def history_show(item_id: str = typer.Argument(..., help="History item id (or prefix).")) -> None:
    """Show a stored transcription."""

    service = _service()
    with _handle_errors():
        item = service.get_history_item(_resolve_id(service, item_id))
    typer.secho(f"Mode: {item.mode_key}", fg=typer.colors.BLUE)
    typer.echo(f"Created: {item.created_at.astimezone():%Y-%m-%d %H:%M}")
    typer.echo(f"STT: {item.stt_provider}/{item.stt_model}")
    if item.llm_provider:
        typer.echo(f"LLM: {item.llm_provider}/{item.llm_model}")
    if item.error:
        typer.secho(f"Error: {item.error}", fg=typer.colors.RED)
    typer.echo("\nTranscript:\n" + item.transcript_raw)
    if item.output_final != item.transcript_raw:
        typer.secho("\nOutput:\n" + item.output_final, fg=typer.colors.GREEN)


@history_app.command("delete")
def history_delete(item_id: str = typer.Argument(..., help="History item id (or prefix).")) -> None:
    """Delete a stored transcription."""

    service = _service()
    with _handle_errors():
        resolved = _resolve_id(service, item_id)
        service.delete_history_item(resolved)
    typer.secho(f"History item {resolved} deleted.", fg=typer.colors.BLUE)


@history_app.command("export")
def history_export(
    item_id: str = typer.Argument(..., help="History item id (or prefix)."),
    fmt: ExportFormat = typer.Option(ExportFormat.TXT, "--format", "-f", help="Export format."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout."),
) -> None:
    """Export a transcription as txt, md, srt or vtt."""

    service = _service()
    with _handle_errors():
        text = service.export_history_item(_resolve_id(service, item_id), fmt)
    if output is None:
        typer.echo(text, nl=False)
        return
    output.write_text(text, encoding="utf-8")
    typer.secho(f"Exported to {output}.", fg=typer.colors.BLUE)


@history_app.command("reprocess")
def history_reprocess(
    item_id: str = typer.Argument(..., help="History item id (or prefix)."),
    mode: str = typer.Argument(..., help="Mode key to apply."),
    retranscribe: bool = typer.Option(False, "--retranscribe", help="Run STT again on the retained audio."),
    copy: bool = typer.Option(False, "--copy", help="Copy the final text to the clipboard."),
) -> None:
    """Run an existing transcription through another mode as a new item."""

    service = _service()
    with _handle_errors(), console.status("Processing…"):
        output = service.reprocess_history_item(_resolve_id(service, item_id), mode, retranscribe=retranscribe)
    _print_output(output, copy)


@app.command()
def config(
    default_stt_provider: Optional[str] = typer.Option(None, help="STT provider (whisper, openai, deepgram)."),
    default_stt_model: Optional[str] = typer.Option(None, help="STT model id."),
    default_llm_provider: Optional[str] = typer.Option(None, help="LLM provider (ollama, openai, anthropic)."),
    default_llm_model: Optional[str] = typer.Option(None, help="LLM model id."),
    language: Optional[str] = typer.Option(None, help="Language code passed to providers."),
    context_awareness: Optional[bool] = typer.Option(
        None, "--context-awareness/--no-context-awareness", help="Use clipboard text as {{context}}."
    ),
    auto_paste: Optional[bool] = typer.Option(None, "--auto-paste/--no-auto-paste", help="Paste results automatically."),
    retain_audio: Optional[bool] = typer.Option(None, "--retain-audio/--no-retain-audio", help="Keep recorded audio."),
    provider_timeout: Optional[float] = typer.Option(None, min=1.0, help="Timeout (seconds) for each provider call."),
    ollama_url: Optional[str] = typer.Option(None, help="Base URL of the local Ollama daemon."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "default_stt_provider": default_stt_provider,
            "default_stt_model": default_stt_model,
            "default_llm_provider": default_llm_provider,
            "default_llm_model": default_llm_model,
            "language": language,
            "context_awareness": context_awareness,
            "auto_paste": auto_paste,
            "retain_audio": retain_audio,
            "provider_timeout": provider_timeout,
            "ollama_url": ollama_url,
        }.items()
        if value is not None
    }

    service = _service()
    if show or not updates:
        typer.echo(json.dumps(asdict(service.get_settings()), indent=2))
        return

    with _handle_errors():
        service.update_settings(**updates)
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@key_app.command("set")
def key_set(
    provider: str = typer.Argument(..., help="Provider name, e.g. openai or anthropic."),
    key: str = typer.Option(..., "--key", prompt=True, hide_input=True, help="API key."),
) -> None:
    """Store an API key in the OS keyring."""

    service = _service()
    with _handle_errors():
        service.save_api_key(provider, key)
    typer.secho(f"API key for {provider} stored.", fg=typer.colors.BLUE)


@key_app.command("delete")
def key_delete(provider: str = typer.Argument(..., help="Provider name.")) -> None:
    """Remove a stored API key."""

    service = _service()
    with _handle_errors():
        service.delete_api_key(provider)
    typer.secho(f"API key for {provider} removed.", fg=typer.colors.BLUE)


@key_app.command("status")
def key_status(provider: str = typer.Argument(..., help="Provider name.")) -> None:
    """Report whether an API key is stored, without showing it."""

    service = _service()
    with _handle_errors():
        present = service.has_api_key(provider)
    typer.echo(f"{provider}: {'configured' if present else 'not configured'}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8765, help="Port to listen on."),
) -> None:  # pragma: no cover - long running
    """Run the local HTTP API used by the desktop shell."""

    import uvicorn

    uvicorn.run("voxtray.api:app", host=host, port=port, log_level="info")


if __name__ == "__main__":  # pragma: no cover
    app()
