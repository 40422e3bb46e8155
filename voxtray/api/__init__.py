"""FastAPI application exposing the voxtray command surface to a local UI."""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from ..errors import (
    AlreadyRecording,
    AudioCaptureError,
    AuthenticationFailed,
    HistoryItemNotFound,
    ImmutableMode,
    ModeNotFound,
    NotRecording,
    PostProcessingFailed,
    ProviderUnavailable,
    StorageError,
    TranscriptionFailed,
    VoxTrayError,
)
from ..events import ALL_TOPICS, event_payload
from ..models import AudioDevice, ExportFormat, HistoryItem, Mode, Settings
from ..service import VoxTray

app = FastAPI(
    title="voxtray API",
    description="Local command surface for the voxtray recording pipeline.",
    version="0.1.0",
)

_service_lock = threading.Lock()
_service: Optional[VoxTray] = None


def get_service() -> VoxTray:
    global _service
    if _service is not None:
        return _service
    with _service_lock:
        if _service is None:
            service = VoxTray()
            service.warm_up_in_background()
            _service = service
    return _service


_STATUS_CODES = (
    ((AlreadyRecording, NotRecording), status.HTTP_409_CONFLICT),
    ((ModeNotFound, HistoryItemNotFound), status.HTTP_404_NOT_FOUND),
    ((ImmutableMode,), status.HTTP_403_FORBIDDEN),
    ((AuthenticationFailed,), status.HTTP_401_UNAUTHORIZED),
    ((ProviderUnavailable,), status.HTTP_503_SERVICE_UNAVAILABLE),
    ((TranscriptionFailed, PostProcessingFailed), status.HTTP_502_BAD_GATEWAY),
    ((AudioCaptureError,), status.HTTP_422_UNPROCESSABLE_ENTITY),
    ((StorageError,), status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _http_error(exc: VoxTrayError) -> HTTPException:
    for kinds, code in _STATUS_CODES:
        if isinstance(exc, kinds):
            break
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(
        status_code=code,
        detail={"kind": type(exc).__name__, "message": str(exc), "recoverable": exc.recoverable},
    )


async def _call(func, *args, **kwargs):
    try:
        return await run_in_threadpool(func, *args, **kwargs)
    except VoxTrayError as exc:
        raise _http_error(exc) from exc


class ModePayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    name: str
    description: str = ""
    stt_provider: str = ""
    stt_model: str = ""
    ai_processing: bool = False
    llm_provider: str = ""
    llm_model: str = ""
    prompt_template: str = ""
    output_format: str = "plain"
    builtin: bool = False


class HistoryPayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime
    mode_key: str
    audio_path: Optional[str]
    transcript_raw: str
    output_final: str
    stt_provider: str
    stt_model: str
    llm_provider: Optional[str]
    llm_model: Optional[str]
    duration_ms: int
    error: Optional[str]


class SettingsPayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    default_stt_provider: str
    default_stt_model: str
    default_llm_provider: str
    default_llm_model: str
    active_mode_key: str
    input_device: str
    auto_paste: bool
    context_awareness: bool
    language: str
    provider_timeout: float
    retain_audio: bool
    ollama_url: str


class SettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_stt_provider: Optional[str] = None
    default_stt_model: Optional[str] = None
    default_llm_provider: Optional[str] = None
    default_llm_model: Optional[str] = None
    active_mode_key: Optional[str] = None
    input_device: Optional[str] = None
    auto_paste: Optional[bool] = None
    context_awareness: Optional[bool] = None
    language: Optional[str] = None
    provider_timeout: Optional[float] = Field(default=None, gt=0)
    retain_audio: Optional[bool] = None
    ollama_url: Optional[str] = None


class StatusResponse(BaseModel):
    status: str
    error: Optional[str] = None


class OutputResponse(BaseModel):
    output: str


class DevicePayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    is_default: bool


class FileRequest(BaseModel):
    path: str


class ActiveModeRequest(BaseModel):
    key: str


class DeviceRequest(BaseModel):
    name: str


class ReprocessRequest(BaseModel):
    mode_key: str
    retranscribe: bool = False


class ApiKeyRequest(BaseModel):
    key: str = Field(min_length=1)


class NavigateRequest(BaseModel):
    route: str


def _mode(mode: Mode) -> ModePayload:
    return ModePayload.model_validate(mode)


def _history(item: HistoryItem) -> HistoryPayload:
    return HistoryPayload.model_validate(item)


def _settings(settings: Settings) -> SettingsPayload:
    return SettingsPayload.model_validate(settings)


def _device(device: AudioDevice) -> DevicePayload:
    return DevicePayload.model_validate(device)


@app.post("/recording/start", response_model=StatusResponse)
async def start_recording(service: VoxTray = Depends(get_service)) -> StatusResponse:
    await _call(service.start_recording)
    return StatusResponse(**service.get_recording_status())


@app.post("/recording/stop", response_model=OutputResponse)
async def stop_recording(service: VoxTray = Depends(get_service)) -> OutputResponse:
    return OutputResponse(output=await _call(service.stop_recording))


@app.get("/recording/status", response_model=StatusResponse)
async def recording_status(service: VoxTray = Depends(get_service)) -> StatusResponse:
    return StatusResponse(**service.get_recording_status())


@app.post("/recording/acknowledge", response_model=StatusResponse)
async def acknowledge_error(service: VoxTray = Depends(get_service)) -> StatusResponse:
    service.acknowledge_error()
    return StatusResponse(**service.get_recording_status())


@app.post("/transcribe", response_model=OutputResponse)
async def transcribe_file(request: FileRequest, service: VoxTray = Depends(get_service)) -> OutputResponse:
    return OutputResponse(output=await _call(service.transcribe_file, request.path))


@app.get("/modes", response_model=List[ModePayload])
async def list_modes(service: VoxTray = Depends(get_service)) -> List[ModePayload]:
    return [_mode(mode) for mode in service.list_modes()]


@app.get("/modes/active", response_model=ModePayload)
async def get_active_mode(service: VoxTray = Depends(get_service)) -> ModePayload:
    return _mode(service.get_active_mode())


@app.put("/modes/active", response_model=ModePayload)
async def set_active_mode(request: ActiveModeRequest, service: VoxTray = Depends(get_service)) -> ModePayload:
    return _mode(await _call(service.set_active_mode, request.key))


@app.put("/modes/{key}", response_model=ModePayload)
async def save_mode(key: str, payload: ModePayload, service: VoxTray = Depends(get_service)) -> ModePayload:
    data = payload.model_dump()
    data.update(key=key, builtin=False)
    try:
        mode = Mode(**data)
        return _mode(await _call(service.save_mode, mode))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


@app.delete("/modes/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_mode(key: str, service: VoxTray = Depends(get_service)) -> None:
    await _call(service.delete_mode, key)


@app.get("/devices", response_model=List[DevicePayload])
async def list_devices(service: VoxTray = Depends(get_service)) -> List[DevicePayload]:
    devices = await run_in_threadpool(service.list_input_devices)
    return [_device(device) for device in devices]


@app.put("/devices/active", response_model=SettingsPayload)
async def set_input_device(request: DeviceRequest, service: VoxTray = Depends(get_service)) -> SettingsPayload:
    return _settings(await _call(service.set_input_device, request.name))


@app.get("/history", response_model=List[HistoryPayload])
async def list_history(
    q: Optional[str] = Query(None, description="Free-text search over transcript and output."),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: VoxTray = Depends(get_service),
) -> List[HistoryPayload]:
    items = await _call(service.list_history, q, limit, offset)
    return [_history(item) for item in items]


@app.get("/history/{item_id}", response_model=HistoryPayload)
async def get_history_item(item_id: str, service: VoxTray = Depends(get_service)) -> HistoryPayload:
    return _history(await _call(service.get_history_item, item_id))


@app.delete("/history/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_history_item(item_id: str, service: VoxTray = Depends(get_service)) -> None:
    await _call(service.delete_history_item, item_id)


@app.get("/history/{item_id}/export", response_class=PlainTextResponse)
async def export_history_item(
    item_id: str,
    format: ExportFormat = Query(ExportFormat.TXT),
    service: VoxTray = Depends(get_service),
) -> str:
    return await _call(service.export_history_item, item_id, format)


@app.post("/history/{item_id}/reprocess", response_model=OutputResponse)
async def reprocess_history_item(
    item_id: str, request: ReprocessRequest, service: VoxTray = Depends(get_service)
) -> OutputResponse:
    output = await _call(service.reprocess_history_item, item_id, request.mode_key, request.retranscribe)
    return OutputResponse(output=output)


@app.get("/settings", response_model=SettingsPayload)
async def get_settings(service: VoxTray = Depends(get_service)) -> SettingsPayload:
    return _settings(service.get_settings())


@app.patch("/settings", response_model=SettingsPayload)
async def update_settings(request: SettingsUpdate, service: VoxTray = Depends(get_service)) -> SettingsPayload:
    changes: Dict[str, Any] = request.model_dump(exclude_none=True)
    return _settings(await _call(service.update_settings, **changes))


@app.put("/keys/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def save_api_key(provider: str, request: ApiKeyRequest, service: VoxTray = Depends(get_service)) -> None:
    await _call(service.save_api_key, provider, request.key)


@app.delete("/keys/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(provider: str, service: VoxTray = Depends(get_service)) -> None:
    await _call(service.delete_api_key, provider)


@app.get("/keys/{provider}")
async def has_api_key(provider: str, service: VoxTray = Depends(get_service)) -> Dict[str, bool]:
    return {"present": await _call(service.has_api_key, provider)}


@app.post("/navigate", status_code=status.HTTP_204_NO_CONTENT)
async def navigate(request: NavigateRequest, service: VoxTray = Depends(get_service)) -> None:
    service.navigate(request.route)


@app.websocket("/events")
async def events(websocket: WebSocket, service: VoxTray = Depends(get_service)) -> None:
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def forward(topic: str):
        def listener(event) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event_payload(topic, event))

        return listener

    # pypubsub holds listeners weakly; this dict keeps them alive for the connection.
    listeners = {topic: forward(topic) for topic in ALL_TOPICS}
    for topic, listener in listeners.items():
        service.events.subscribe(topic, listener)

    await websocket.accept()

    async def pump() -> None:
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        for topic, listener in listeners.items():
            service.events.unsubscribe(topic, listener)
