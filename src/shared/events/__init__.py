# src/shared/events/__init__.py
"""
Доменные события realtime-канала.
"""

from src.shared.events.realtime import (
    EVENT_MODELS,
    DriverLocationUpdate,
    EventLocation,
    RealtimeEvent,
    ShipmentStatusUpdate,
    parse_event,
)

__all__ = [
    "EVENT_MODELS",
    "DriverLocationUpdate",
    "EventLocation",
    "RealtimeEvent",
    "ShipmentStatusUpdate",
    "parse_event",
]
