# src/core/fleet/store.py
"""
Общее состояние парка: водители, их последние координаты и отправки.
Единственный источник истины для всех потребителей.
"""

from __future__ import annotations

from typing import Iterable

from src.common.constants import ShipmentStatus
from src.shared.events import ShipmentStatusUpdate
from src.shared.models import Driver, PositionSample, Shipment


class FleetStore:
    """Хранилище водителей, координат и отправок."""

    def __init__(self) -> None:
        self._drivers: dict[str, Driver] = {}
        self._locations: dict[str, PositionSample] = {}
        self._shipments: dict[str, Shipment] = {}

    # =========================================================================
    # ВОДИТЕЛИ
    # =========================================================================

    def set_drivers(self, drivers: Iterable[Driver]) -> None:
        self._drivers = {driver.id: driver for driver in drivers}

    def upsert_driver(self, driver: Driver) -> None:
        self._drivers[driver.id] = driver

    def get_driver(self, driver_id: str) -> Driver | None:
        return self._drivers.get(driver_id)

    @property
    def drivers(self) -> list[Driver]:
        return list(self._drivers.values())

    # =========================================================================
    # КООРДИНАТЫ
    # =========================================================================

    def update_location(self, driver_id: str, sample: PositionSample) -> None:
        """Записывает последнюю координату водителя."""
        if not driver_id:
            raise ValueError("driver_id обязателен")
        self._locations[driver_id] = sample

    def get_location(self, driver_id: str) -> PositionSample | None:
        return self._locations.get(driver_id)

    @property
    def locations(self) -> dict[str, PositionSample]:
        return dict(self._locations)

    # =========================================================================
    # ОТПРАВКИ
    # =========================================================================

    def set_shipments(self, shipments: Iterable[Shipment]) -> None:
        self._shipments = {shipment.id: shipment for shipment in shipments}

    def upsert_shipment(self, shipment: Shipment) -> None:
        self._shipments[shipment.id] = shipment

    def get_shipment(self, shipment_id: str) -> Shipment | None:
        return self._shipments.get(shipment_id)

    @property
    def shipments(self) -> list[Shipment]:
        return list(self._shipments.values())

    def apply_status_update(self, event: ShipmentStatusUpdate) -> Shipment:
        """
        Применяет смену статуса.
        Неизвестная отправка добавляется по данным события.
        """
        current = self._shipments.get(event.shipment_id)
        changes: dict[str, object] = {"status": event.new_status}
        if event.driver_id is not None:
            changes["driver_id"] = event.driver_id
        if event.pending_approval is not None:
            changes["pending_approval"] = event.pending_approval

        if current is None:
            shipment = Shipment(id=event.shipment_id, **changes)
        else:
            shipment = current.model_copy(update=changes)
        self._shipments[shipment.id] = shipment
        return shipment

    def relevant_shipments(self, driver_id: str | None = None) -> list[Shipment]:
        """Отправки с водителем в статусе APPROVED или IN_TRANSIT."""
        return [
            shipment
            for shipment in self._shipments.values()
            if shipment.is_en_route and (driver_id is None or shipment.driver_id == driver_id)
        ]

    def shipments_for_driver(self, driver_id: str) -> list[Shipment]:
        return [s for s in self._shipments.values() if s.driver_id == driver_id]

    def relevant_key(self) -> frozenset[tuple[str, str, ShipmentStatus]]:
        """Отпечаток набора релевантных отправок для обнаружения изменений."""
        return frozenset((s.id, s.driver_id or "", s.status) for s in self.relevant_shipments())
