# src/shared/models/tracking.py
"""
DTO трекинга: координаты, маршруты, водители, отправки.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.common.constants import RoutePhase, ShipmentStatus, EN_ROUTE_STATUSES


def utc_now() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


def is_valid_coordinate(latitude: Any, longitude: Any) -> bool:
    """Проверяет, что координаты являются конечными числами в допустимом диапазоне."""
    for value in (latitude, longitude):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if not math.isfinite(value):
            return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


class PositionSample(BaseModel):
    """
    Одна точка геопозиции водителя.

    Координаты вне диапазона отклоняются (ValidationError), а не обрезаются.
    """
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("latitude", "longitude")
    @classmethod
    def check_finite(cls, v: float) -> float:
        """NaN и бесконечности недопустимы."""
        if not math.isfinite(v):
            raise ValueError("Координата должна быть конечным числом")
        return v

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Время без зоны считается UTC."""
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

    def same_position(self, other: "PositionSample | None") -> bool:
        """True, если координаты совпадают с другой точкой."""
        return other is not None and self.latitude == other.latitude and self.longitude == other.longitude

    def to_payload(self) -> dict[str, Any]:
        """Тело запроса на отправку локации."""
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }


class RoutePoint(BaseModel):
    """Точка маршрута."""
    lat: float
    lng: float


class RouteRecord(BaseModel):
    """Маршрут водителя по конкретной отправке."""
    model_config = ConfigDict(populate_by_name=True)

    shipment_id: str = ""
    route_points: list[RoutePoint] = Field(default_factory=list, alias="routePoints")
    phase: RoutePhase | None = None
    delivery_point: RoutePoint | None = Field(default=None, alias="deliveryPoint")


class Driver(BaseModel):
    """Водитель из справочника."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str | None = None
    user_id: str | None = Field(default=None, alias="userId")


class Shipment(BaseModel):
    """Отправка (груз) и её текущий статус."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: ShipmentStatus
    driver_id: str | None = Field(default=None, alias="driverId")
    pending_approval: bool = Field(default=False, alias="pendingApproval")

    @property
    def is_en_route(self) -> bool:
        """Водитель назначен и находится в пути."""
        return self.driver_id is not None and self.status in EN_ROUTE_STATUSES


class SessionCredential(BaseModel):
    """Учётные данные сессии для канала и HTTP API."""
    model_config = ConfigDict(frozen=True)

    token: str
    tenant_id: str
    user_id: str | None = None


DataT = TypeVar("DataT")


class ApiEnvelope(BaseModel, Generic[DataT]):
    """Конверт ответа API: {success, data, message}."""
    success: bool = True
    data: DataT | None = None
    message: str | None = None
