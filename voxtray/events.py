"""Typed events published toward the UI layer over pypubsub."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict

from pubsub import pub

from .models import RecordingStatus

LOG = logging.getLogger(__name__)

STATUS_TOPIC = "voxtray_status"
AUDIO_LEVEL_TOPIC = "voxtray_audio_level"
AI_PROCESSING_TOPIC = "voxtray_ai_processing"
NAVIGATE_TOPIC = "voxtray_navigate"

ALL_TOPICS = (STATUS_TOPIC, AUDIO_LEVEL_TOPIC, AI_PROCESSING_TOPIC, NAVIGATE_TOPIC)


@dataclass
class StatusEvent:
    status: RecordingStatus
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AudioLevelEvent:
    level: float
    peak: float


@dataclass
class AiProcessingEvent:
    active: bool


@dataclass
class NavigateEvent:
    route: str


def event_payload(topic: str, event: Any) -> Dict[str, Any]:
    """Return a JSON-friendly dict for an event."""

    data = asdict(event)
    for key, value in data.items():
        if isinstance(value, RecordingStatus):
            data[key] = value.value
        elif isinstance(value, datetime):
            data[key] = value.isoformat()
    return {"topic": topic, **data}


def _log_listener_error(listener_id: str, topic_obj: Any) -> None:
    """pypubsub listener exception handler; delivery continues to the remaining listeners."""

    LOG.exception("Listener %s for %s failed", listener_id, topic_obj.getName())


class EventBus:
    """Publishes voxtray events to every subscribed listener."""

    def __init__(self) -> None:
        pub.setListenerExcHandler(_log_listener_error)

    def publish(self, topic: str, event: Any) -> None:
        try:
            pub.sendMessage(topic, event=event)
        except Exception as exc:  # noqa: BLE001 - a broken listener must not stall the pipeline
            LOG.debug("Publishing %s failed: %s", topic, exc)

    def status(self, status: RecordingStatus, error: str | None = None) -> None:
        self.publish(STATUS_TOPIC, StatusEvent(status=status, error=error))

    def audio_level(self, level: float, peak: float) -> None:
        self.publish(AUDIO_LEVEL_TOPIC, AudioLevelEvent(level=level, peak=peak))

    def ai_processing(self, active: bool) -> None:
        self.publish(AI_PROCESSING_TOPIC, AiProcessingEvent(active=active))

    def navigate(self, route: str) -> None:
        self.publish(NAVIGATE_TOPIC, NavigateEvent(route=route))

    def subscribe(self, topic: str, listener: Callable[..., None]) -> None:
        """Register ``listener(event)``; pypubsub keeps only a weak reference."""

        pub.subscribe(listener, topic)

    def unsubscribe(self, topic: str, listener: Callable[..., None]) -> None:
        if pub.isSubscribed(listener, topic):
            pub.unsubscribe(listener, topic)
