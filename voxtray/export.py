"""Render history items in textual export formats."""

from __future__ import annotations

import re
from typing import Union

from .models import ExportFormat, HistoryItem

_MD_SPECIAL = re.compile(r"([\\`*_{}\[\]<>#|])")
_MD_LINE_START = re.compile(r"^(\s*)([-+>]|\d+\.)(?=\s)", re.MULTILINE)


def _timestamp(ms: int, separator: str) -> str:
    hours, rest = divmod(max(ms, 0), 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}{separator}{millis:03d}"


def _cue_text(text: str) -> str:
    # A blank line would terminate the cue early.
    lines = [line.rstrip() for line in text.strip().splitlines()]
    return "\n".join(line for line in lines if line)


def escape_markdown(text: str) -> str:
    escaped = _MD_SPECIAL.sub(r"\\\1", text)
    return _MD_LINE_START.sub(lambda m: f"{m.group(1)}\\{m.group(2)}", escaped)


def to_txt(item: HistoryItem) -> str:
    return item.output_final


def to_markdown(item: HistoryItem) -> str:
    header = f"# Transcription {item.created_at:%Y-%m-%d %H:%M}"
    meta = f"*Mode:* `{item.mode_key}`"
    return f"{header}\n\n{meta}\n\n{escape_markdown(item.output_final)}\n"


def to_srt(item: HistoryItem) -> str:
    start = _timestamp(0, ",")
    end = _timestamp(item.duration_ms, ",")
    return f"1\n{start} --> {end}\n{_cue_text(item.output_final)}\n"


def to_vtt(item: HistoryItem) -> str:
    start = _timestamp(0, ".")
    end = _timestamp(item.duration_ms, ".")
    return f"WEBVTT\n\n{start} --> {end}\n{_cue_text(item.output_final)}\n"


_RENDERERS = {
    ExportFormat.TXT: to_txt,
    ExportFormat.MD: to_markdown,
    ExportFormat.SRT: to_srt,
    ExportFormat.VTT: to_vtt,
}


def render(item: HistoryItem, fmt: Union[ExportFormat, str]) -> str:
    try:
        fmt = ExportFormat(fmt)
    except ValueError:
        raise ValueError(f"Unsupported export format: {fmt}") from None
    return _RENDERERS[fmt](item)
