# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели трекинга.
"""

from src.shared.models.tracking import (
    ApiEnvelope,
    Driver,
    PositionSample,
    RoutePoint,
    RouteRecord,
    SessionCredential,
    Shipment,
    is_valid_coordinate,
    utc_now,
)

__all__ = [
    "ApiEnvelope",
    "Driver",
    "PositionSample",
    "RoutePoint",
    "RouteRecord",
    "SessionCredential",
    "Shipment",
    "is_valid_coordinate",
    "utc_now",
]
