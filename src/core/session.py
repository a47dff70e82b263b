# src/core/session.py
"""
Сессия трекинга: владеет соединением, хранилищем и кэшем маршрутов
и выдаёт независимые поверхности отображения.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from src.common.constants import RealtimeEvents, TypeMsg
from src.common.logger import log_info, log_warning
from src.core.fleet import FleetStore
from src.core.location_sharing import LocationSharingSession
from src.core.routes import RouteCacheRefresher
from src.core.tracking import LiveTrackSynchronizer
from src.infra.api_client import ApiError, TrackingApiClient
from src.infra.geolocation import GeolocationProvider
from src.infra.realtime_channel import RealtimeChannel, SubscriptionToken
from src.shared.events import ShipmentStatusUpdate
from src.shared.models import SessionCredential


class TrackingSession:
    """
    Корень композиции на время авторизованной сессии.

    Соединение создаётся здесь и передаётся компонентам по ссылке;
    logout() освобождает всё, что было захвачено.
    """

    def __init__(
        self,
        credential: SessionCredential,
        *,
        api: TrackingApiClient | None = None,
        channel: RealtimeChannel | None = None,
        store: FleetStore | None = None,
        routes: RouteCacheRefresher | None = None,
    ) -> None:
        self.credential = credential
        self.api = api or TrackingApiClient(credential=credential)
        self.channel = channel or RealtimeChannel()
        self.store = store or FleetStore()
        self.routes = routes or RouteCacheRefresher(self.api, self.store)

        self._surfaces: list[LiveTrackSynchronizer] = []
        self._sharing: LocationSharingSession | None = None
        self._status_token: SubscriptionToken | None = None

    @property
    def surfaces(self) -> list[LiveTrackSynchronizer]:
        return list(self._surfaces)

    async def start(self) -> None:
        """Подписывает хранилище и кэш маршрутов, подключается и загружает данные."""
        # Хранилище подписывается первым, чтобы остальные видели новый статус
        if self._status_token is None:
            self._status_token = self.channel.subscribe(
                RealtimeEvents.SHIPMENT_STATUS_UPDATE,
                self._on_status_update,
            )
        self.routes.attach(self.channel)
        await self.channel.ensure_connected(self.credential)
        await self.load()

    async def load(self) -> None:
        """Начальная загрузка водителей и отправок."""
        try:
            self.store.set_drivers(await self.api.list_drivers())
            self.store.set_shipments(await self.api.list_shipments())
        except ApiError as e:
            await log_warning(f"Не удалось загрузить водителей и отправки: {e.message}")
            return
        except ValidationError as e:
            await log_warning(f"Некорректные данные водителей или отправок: {e.error_count()} ошибок валидации")
            return
        await log_info(
            f"Загружено водителей: {len(self.store.drivers)}, отправок: {len(self.store.shipments)}",
            type_msg=TypeMsg.INFO,
        )
        await self.routes.on_shipments_changed()

    def _on_status_update(self, event: ShipmentStatusUpdate) -> None:
        self.store.apply_status_update(event)
        self.routes.notify_shipments_changed()

    # =========================================================================
    # ПОВЕРХНОСТИ
    # =========================================================================

    def open_surface(self, only_driver_id: str | None = None, **kwargs: Any) -> LiveTrackSynchronizer:
        """Новая карта (дашборд, карточка водителя или отправки)."""
        surface = LiveTrackSynchronizer(self.store, self.routes, only_driver_id=only_driver_id, **kwargs)
        surface.attach(self.channel)
        self._surfaces.append(surface)
        return surface

    def close_surface(self, surface: LiveTrackSynchronizer) -> None:
        """Размонтирование карты: только отписка, соединение остаётся."""
        surface.detach()
        if surface in self._surfaces:
            self._surfaces.remove(surface)

    def sharing(self, provider: GeolocationProvider | None, driver_id: str | None = None, **kwargs: Any) -> LocationSharingSession:
        """Сессия трансляции водителя (одна на процесс)."""
        if self._sharing is None:
            self._sharing = LocationSharingSession(self.api, provider, driver_id, **kwargs)
            self._sharing.attach(self.channel)
        return self._sharing

    # =========================================================================
    # ЗАВЕРШЕНИЕ
    # =========================================================================

    async def logout(self) -> None:
        """Освобождает подписки, таймеры и соединение."""
        for surface in list(self._surfaces):
            self.close_surface(surface)
        if self._sharing is not None:
            await self._sharing.aclose()
            self._sharing = None
        await self.routes.aclose()
        if self._status_token is not None:
            self.channel.unsubscribe(self._status_token)
            self._status_token = None
        await self.channel.disconnect()
        await self.api.close()

    async def __aenter__(self) -> "TrackingSession":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.logout()
