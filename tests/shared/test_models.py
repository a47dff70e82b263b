# tests/shared/test_models.py
"""
Тесты DTO трекинга и событий realtime-канала.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.common.constants import RealtimeEvents, RoutePhase, ShipmentStatus
from src.shared.events import DriverLocationUpdate, ShipmentStatusUpdate, parse_event
from src.shared.models import (
    ApiEnvelope,
    PositionSample,
    RouteRecord,
    SessionCredential,
    Shipment,
    is_valid_coordinate,
)


class TestIsValidCoordinate:
    """Тесты is_valid_coordinate."""

    @pytest.mark.parametrize("lat, lng", [(0, 0), (90, 180), (-90, -180), (40.7, -74.0)])
    def test_valid(self, lat, lng) -> None:
        assert is_valid_coordinate(lat, lng) is True

    @pytest.mark.parametrize(
        "lat, lng",
        [(91, 0), (0, 181), (math.nan, 0), (0, math.inf), (None, 0), ("40", "-74"), (True, 0)],
    )
    def test_invalid(self, lat, lng) -> None:
        assert is_valid_coordinate(lat, lng) is False


class TestPositionSample:
    """Тесты PositionSample."""

    @pytest.mark.parametrize("lat, lng", [(90.1, 0), (0, -180.5), (math.nan, 0), (0, math.inf)])
    def test_out_of_range_rejected(self, lat, lng) -> None:
        """Координаты вне диапазона отклоняются, а не обрезаются."""
        with pytest.raises(ValidationError):
            PositionSample(latitude=lat, longitude=lng)

    def test_naive_timestamp_is_utc(self) -> None:
        sample = PositionSample(latitude=1, longitude=2, timestamp=datetime(2024, 5, 1, 12, 0))
        assert sample.timestamp.tzinfo == timezone.utc

    def test_to_payload(self, make_sample) -> None:
        payload = make_sample(40.0, -74.0).to_payload()
        assert payload == {"latitude": 40.0, "longitude": -74.0, "timestamp": "2024-05-01T12:00:00Z"}

    def test_same_position(self, make_sample) -> None:
        assert make_sample(40.0, -74.0, 0).same_position(make_sample(40.0, -74.0, 9))
        assert not make_sample(40.0, -74.0).same_position(make_sample(40.0001, -74.0))
        assert not make_sample(40.0, -74.0).same_position(None)

    def test_frozen(self, make_sample) -> None:
        with pytest.raises(ValidationError):
            make_sample(40.0, -74.0).latitude = 41.0


class TestWireModels:
    """Модели с camelCase-полями API."""

    def test_route_record_from_api(self) -> None:
        record = RouteRecord.model_validate({
            "shipment_id": "s1",
            "routePoints": [{"lat": 40.0, "lng": -74.0}],
            "phase": "TO_PICKUP",
            "deliveryPoint": {"lat": 40.01, "lng": -74.0},
        })

        assert record.phase == RoutePhase.TO_PICKUP
        assert record.route_points[0].lat == 40.0
        assert record.delivery_point.lat == 40.01

    def test_shipment_is_en_route(self) -> None:
        assert Shipment.model_validate({"id": "s1", "status": "APPROVED", "driverId": "d1"}).is_en_route
        assert not Shipment(id="s2", status=ShipmentStatus.APPROVED).is_en_route
        assert not Shipment(id="s3", status=ShipmentStatus.DELIVERED, driver_id="d1").is_en_route

    def test_envelope(self) -> None:
        envelope = ApiEnvelope[dict].model_validate({"success": False, "message": "nope"})
        assert envelope.success is False
        assert envelope.data is None

    def test_credential_equality(self) -> None:
        assert SessionCredential(token="t", tenant_id="x") == SessionCredential(token="t", tenant_id="x")
        assert SessionCredential(token="t", tenant_id="x") != SessionCredential(token="t", tenant_id="y")


class TestParseEvent:
    """Тесты валидации событий на границе канала."""

    def test_location_update(self) -> None:
        event = parse_event(
            RealtimeEvents.DRIVER_LOCATION_UPDATE,
            {"driverId": "d1", "location": {"latitude": 40.0, "longitude": -74.0}, "source": "SIMULATED"},
        )

        assert isinstance(event, DriverLocationUpdate)
        assert event.location.timestamp is None
        assert event.source == "SIMULATED"

    def test_status_update(self) -> None:
        event = parse_event(
            RealtimeEvents.SHIPMENT_STATUS_UPDATE,
            {"shipmentId": "s1", "newStatus": "IN_TRANSIT", "driverId": "d1", "extra": 1},
        )

        assert isinstance(event, ShipmentStatusUpdate)
        assert event.new_status == ShipmentStatus.IN_TRANSIT
        assert event.pending_approval is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"location": {"latitude": 1, "longitude": 2}},
            {"driverId": "d1"},
            {"driverId": "d1", "location": {"latitude": "north", "longitude": 2}},
            ["d1"],
            None,
        ],
    )
    def test_malformed_location_rejected(self, payload) -> None:
        with pytest.raises(ValueError):
            parse_event(RealtimeEvents.DRIVER_LOCATION_UPDATE, payload)

    def test_unknown_event_passes_through(self) -> None:
        assert parse_event("something-else", {"a": 1}) == {"a": 1}
