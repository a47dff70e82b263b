# src/core/tracking/synchronizer.py
"""
Синхронизация живых треков для одной поверхности отображения.

Принимает точки из realtime-канала, ведёт историю каждого водителя,
считает скорость, курс, оставшееся расстояние и ETA, анимирует
маркеры и вычисляет центр и масштаб карты.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from pydantic import ValidationError

from src.common.constants import RealtimeEvents
from src.common.logger import log_warning
from src.core.fleet import FleetStore
from src.core.geo import kinematics
from src.core.routes import RouteCacheRefresher
from src.core.tracking.animation import MarkerAnimator
from src.core.tracking.state import DriverTrackState
from src.infra.realtime_channel import RealtimeChannel, SubscriptionToken
from src.shared.events import DriverLocationUpdate
from src.shared.models import PositionSample, Shipment, is_valid_coordinate, utc_now


DEFAULT_CENTER: tuple[float, float] = (40.7128, -74.006)
ZOOM_SELECTED = 15
ZOOM_FLEET = 12
ZOOM_DEFAULT = 10


@dataclass(frozen=True)
class MapView:
    """Центр и масштаб карты."""
    center: tuple[float, float]
    zoom: int
    follow: bool = False
    selected_driver_id: str | None = None


def is_eligible(sample: PositionSample | None) -> bool:
    """Координаты пригодны для отображения: числа, не ноль, в диапазоне."""
    if sample is None:
        return False
    if not is_valid_coordinate(sample.latitude, sample.longitude):
        return False
    return sample.latitude != 0 and sample.longitude != 0


class LiveTrackSynchronizer:
    """
    Треки водителей для одной карты.

    Каждая поверхность (дашборд, карточка водителя, карточка отправки)
    держит свой экземпляр; общее только хранилище и канал.
    """

    def __init__(
        self,
        store: FleetStore,
        routes: RouteCacheRefresher | None = None,
        *,
        capacity: int | None = None,
        animation_duration: float | None = None,
        only_driver_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity is None or animation_duration is None:
            from src.config import settings
            capacity = settings.tracking.HISTORY_CAPACITY if capacity is None else capacity
            animation_duration = (
                settings.tracking.MARKER_ANIMATION_DURATION if animation_duration is None else animation_duration
            )

        self._store = store
        self._routes = routes
        self.capacity = capacity
        self.only_driver_id = only_driver_id
        self.animator = MarkerAnimator(animation_duration, clock=clock)

        self._tracks: dict[str, DriverTrackState] = {}
        self._channel: RealtimeChannel | None = None
        self._token: SubscriptionToken | None = None

    # =========================================================================
    # ПРИЁМ ТОЧЕК
    # =========================================================================

    def _accepts(self, driver_id: str) -> bool:
        return self.only_driver_id is None or driver_id == self.only_driver_id

    def apply_sample(self, driver_id: str, sample: PositionSample) -> DriverTrackState | None:
        """
        Применяет новую точку водителя.

        Returns:
            Обновлённое состояние или None, если точка отброшена
            (повтор позиции или чужой водитель)
        """
        if not driver_id or not self._accepts(driver_id):
            return None

        track = self._tracks.get(driver_id)
        if track is None:
            track = DriverTrackState(driver_id, capacity=self.capacity)
            self._tracks[driver_id] = track

        previous = track.last
        if not track.record(sample):
            return None

        self._store.update_location(driver_id, sample)
        self.animator.move_to(driver_id, sample.latitude, sample.longitude)

        if previous is not None:
            dt_ms = (sample.timestamp - previous.timestamp).total_seconds() * 1000
            if dt_ms > 0:
                track.speed = kinematics.speed(
                    previous.latitude, previous.longitude, sample.latitude, sample.longitude, dt_ms
                )

        before = track.previous
        if before is not None:
            track.bearing = kinematics.bearing(
                before.latitude, before.longitude, sample.latitude, sample.longitude
            )

        self._update_eta(track, sample)
        return track

    def _update_eta(self, track: DriverTrackState, sample: PositionSample) -> None:
        """Прямое расстояние до точки доставки и ETA по текущей скорости."""
        route = self._routes.route_for(track.driver_id) if self._routes else None
        if route is None or not route.route_points or route.delivery_point is None:
            track.remaining_distance = None
            track.eta = None
            return

        track.remaining_distance = kinematics.distance(
            sample.latitude, sample.longitude, route.delivery_point.lat, route.delivery_point.lng
        )
        track.eta = kinematics.eta(track.remaining_distance, track.speed)

    async def on_location_update(self, event: DriverLocationUpdate) -> None:
        """Обработчик driver-location-update."""
        location = event.location
        try:
            sample = PositionSample(
                latitude=location.latitude,
                longitude=location.longitude,
                timestamp=location.timestamp or utc_now(),
            )
        except ValidationError:
            await log_warning(
                f"Отброшены некорректные координаты водителя {event.driver_id}",
                extra={"lat": location.latitude, "lng": location.longitude},
            )
            return
        self.apply_sample(event.driver_id, sample)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def view(self, driver_id: str) -> DriverTrackState | None:
        return self._tracks.get(driver_id)

    def views(self) -> dict[str, DriverTrackState]:
        return dict(self._tracks)

    def eligible_drivers(self) -> dict[str, PositionSample]:
        """Водители с пригодными для карты координатами."""
        return {
            driver_id: sample
            for driver_id, sample in self._store.locations.items()
            if self._accepts(driver_id) and is_eligible(sample)
        }

    def marker_position(self, driver_id: str, now: float | None = None) -> tuple[float, float] | None:
        """Текущая (интерполированная) позиция маркера."""
        position = self.animator.position(driver_id, now)
        if position is not None:
            return position
        sample = self._store.get_location(driver_id)
        return (sample.latitude, sample.longitude) if is_eligible(sample) else None

    def map_view(self, selected_driver_id: str | None = None, follow: bool = False) -> MapView:
        """
        Выбран водитель: центр на нём, масштаб 15;
        иначе среднее по пригодным водителям, масштаб 12;
        иначе центр по умолчанию, масштаб 10.
        """
        eligible = self.eligible_drivers()

        if selected_driver_id is not None and selected_driver_id in eligible:
            sample = eligible[selected_driver_id]
            return MapView(
                center=(sample.latitude, sample.longitude),
                zoom=ZOOM_SELECTED,
                follow=follow,
                selected_driver_id=selected_driver_id,
            )

        if eligible:
            count = len(eligible)
            lat = sum(s.latitude for s in eligible.values()) / count
            lng = sum(s.longitude for s in eligible.values()) / count
            return MapView(center=(lat, lng), zoom=ZOOM_FLEET, selected_driver_id=selected_driver_id)

        return MapView(center=DEFAULT_CENTER, zoom=ZOOM_DEFAULT, selected_driver_id=selected_driver_id)

    def should_recenter(self, driver_id: str, selected_driver_id: str | None, follow: bool) -> bool:
        """
        Нужно ли переместить карту после новой точки driver_id.

        Центрирование при выборе водителя делает вызывающий код через map_view();
        повторно карта следует за водителем только в режиме follow.
        """
        if not follow or selected_driver_id is None or driver_id != selected_driver_id:
            return False
        return selected_driver_id in self.eligible_drivers()

    def selected_driver_shipments(self, driver_id: str) -> list[Shipment]:
        """Активные отправки выбранного водителя."""
        return self._store.relevant_shipments(driver_id)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    def attach(self, channel: RealtimeChannel) -> None:
        if self._token is not None:
            return
        self._channel = channel
        self._token = channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, self.on_location_update)

    def detach(self) -> None:
        """Отписка при размонтировании поверхности; соединение не трогаем."""
        if self._channel is not None and self._token is not None:
            self._channel.unsubscribe(self._token)
        self._channel = None
        self._token = None
