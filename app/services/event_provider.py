"""
Event Configuration Provider

Supplies per-event check-in settings (active flag, geofence) to the check-in
flow. Events are owned elsewhere; this service only reads a JSON export.
"""

import json
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

import structlog
from pydantic import TypeAdapter

from app.models.geofence import EventConfig

logger = structlog.get_logger(__name__)

_EVENT_LIST = TypeAdapter(list[EventConfig])


class EventProvider(Protocol):
    """Anything that can look up an event's check-in configuration."""

    def get_event(self, event_id: str) -> Optional[EventConfig]:
        ...


class EventConfigError(Exception):
    """Raised when an event configuration file cannot be loaded."""


class StaticEventProvider:
    """
    In-memory event configuration, optionally loaded from a JSON file.

    File format: a list of objects, e.g.
        [{"id": "evt-1", "isActive": true,
          "geofence": {"type": "circle", "center": {"lat": 37.77, "lng": -122.42}, "radiusMeters": 100}}]
    """

    def __init__(self, events: Optional[Iterable[EventConfig]] = None):
        self._events: Dict[str, EventConfig] = {}
        for event in events or []:
            self.register(event)

    @classmethod
    def from_file(cls, path: str) -> "StaticEventProvider":
        """
        Load and validate events from a JSON file.

        Raises:
            EventConfigError: If the file is missing, not JSON or fails validation
        """
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            events = _EVENT_LIST.validate_python(raw)
        except (OSError, ValueError) as e:
            # pydantic.ValidationError is a ValueError subclass
            raise EventConfigError(f"Cannot load event configuration from {path}: {e}") from e

        logger.info("event_config_loaded", path=path, events=len(events))
        return cls(events)

    def register(self, event: EventConfig) -> None:
        self._events[event.id] = event

    def get_event(self, event_id: str) -> Optional[EventConfig]:
        return self._events.get(event_id)

    def __len__(self) -> int:
        return len(self._events)
