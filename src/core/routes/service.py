# src/core/routes/service.py
"""
Кэш маршрутов водителей.

Маршрут принадлежит кэшу и заменяется целиком при каждой успешной
загрузке. Обновление запускается сменой набора активных отправок,
переходом отправки в APPROVED/IN_TRANSIT и новыми координатами
водителя (с троттлингом на водителя).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Iterable

from src.common.constants import EN_ROUTE_STATUSES, ErrorSeverity, LocationSource, RealtimeEvents, TypeMsg
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.core.errors import ErrorKind, TrackingError
from src.core.fleet import FleetStore
from src.infra.api_client import ApiError, NotFoundError, TrackingApiClient
from src.infra.realtime_channel import RealtimeChannel, SubscriptionToken
from src.shared.events import DriverLocationUpdate, ShipmentStatusUpdate
from src.shared.models import RouteRecord, Shipment


@dataclass
class RetryPolicy:
    """
    Ограниченные повторы с линейной задержкой: base_delay * номер повтора.

    Первая попытка не считается повтором, поэтому при max_retries=3
    выполняется не более четырёх загрузок.
    """
    max_retries: int = 3
    base_delay: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def delay_for(self, retry: int) -> float:
        return self.base_delay * retry

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        from src.config import settings
        return cls(
            max_retries=settings.tracking.ROUTE_FETCH_MAX_RETRIES,
            base_delay=settings.tracking.ROUTE_FETCH_RETRY_DELAY,
        )


class RouteCacheRefresher:
    """Загружает и обновляет маршруты водителей с активными отправками."""

    def __init__(
        self,
        api: TrackingApiClient,
        store: FleetStore,
        *,
        retry_policy: RetryPolicy | None = None,
        settle_delay: float | None = None,
        throttle_window: float | None = None,
        simulated_window: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if settle_delay is None or throttle_window is None or simulated_window is None:
            from src.config import settings
            tracking = settings.tracking
            settle_delay = tracking.ROUTE_REFRESH_DELAY if settle_delay is None else settle_delay
            throttle_window = tracking.LOCATION_UPDATE_THROTTLE if throttle_window is None else throttle_window
            simulated_window = tracking.SIMULATED_UPDATE_THROTTLE if simulated_window is None else simulated_window

        self._api = api
        self._store = store
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.settle_delay = settle_delay
        self.throttle_window = throttle_window
        self.simulated_window = simulated_window
        self._sleep = sleep
        self._clock = clock

        self._routes: dict[str, RouteRecord] = {}
        self._last_fetch: dict[str, float] = {}
        self._last_error: TrackingError | None = None
        self._relevant_key: frozenset | None = None
        self._loading = 0

        self._refresh_lock = asyncio.Lock()
        self._settle_task: asyncio.Task | None = None
        self._driver_timers: dict[str, asyncio.Task] = {}
        self._fetching: set[str] = set()
        self._inflight: set[asyncio.Task] = set()

        self._channel: RealtimeChannel | None = None
        self._tokens: list[SubscriptionToken] = []

    # =========================================================================
    # СОСТОЯНИЕ
    # =========================================================================

    @property
    def routes(self) -> dict[str, RouteRecord]:
        return dict(self._routes)

    def route_for(self, driver_id: str) -> RouteRecord | None:
        return self._routes.get(driver_id)

    @property
    def last_error(self) -> TrackingError | None:
        return self._last_error

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def pending_timers(self) -> int:
        timers = [t for t in self._driver_timers.values() if not t.done()]
        if self._settle_task is not None and not self._settle_task.done():
            timers.append(self._settle_task)
        return len(timers)

    # =========================================================================
    # ЗАГРУЗКА
    # =========================================================================

    async def _fetch_once(self, shipments: Iterable[Shipment]) -> tuple[dict[str, RouteRecord], TrackingError | None]:
        """Одна попытка загрузки маршрутов для набора отправок."""
        shipments = [s for s in shipments if s.driver_id]
        results = await asyncio.gather(
            *(self._api.get_shipment_route(s.id) for s in shipments),
            return_exceptions=True,
        )

        found: dict[str, RouteRecord] = {}
        error: TrackingError | None = None
        for shipment, result in zip(shipments, results):
            if isinstance(result, RouteRecord):
                found[shipment.driver_id] = result
            elif isinstance(result, NotFoundError):
                # Маршрут ещё не построен: это не ошибка
                await log_debug(f"Маршрут отправки {shipment.id} пока недоступен")
            elif isinstance(result, ApiError):
                error = TrackingError(
                    ErrorKind.ROUTE_FETCH,
                    ErrorSeverity.TRANSIENT,
                    f"Failed to load route for shipment {shipment.id}: {result.message}",
                )
                await log_warning(error.message)
            elif isinstance(result, Exception):
                error = TrackingError(ErrorKind.ROUTE_FETCH, ErrorSeverity.TRANSIENT, str(result))
                await log_error(f"Неожиданная ошибка загрузки маршрута {shipment.id}: {result}")
            elif isinstance(result, BaseException):
                raise result
        return found, error

    async def _fetch_with_retry(self, shipments: list[Shipment]) -> dict[str, RouteRecord]:
        """Повторяет загрузку, пока не найден ни один маршрут и не исчерпан лимит."""
        retry = 0
        self._loading += 1
        try:
            while True:
                for shipment in shipments:
                    if shipment.driver_id:
                        self._last_fetch[shipment.driver_id] = self._clock()

                found, error = await self._fetch_once(shipments)
                if found:
                    self._last_error = None
                    return found
                if retry >= self.retry_policy.max_retries:
                    self._last_error = error
                    return found

                retry += 1
                delay = self.retry_policy.delay_for(retry)
                await log_debug(f"Маршруты не найдены, повтор {retry}/{self.retry_policy.max_retries} через {delay}с")
                await self.retry_policy.sleep(delay)
        finally:
            self._loading -= 1

    async def refresh_all(self) -> dict[str, RouteRecord]:
        """
        Загружает маршруты всех активных отправок и заменяет кэш целиком.
        Если нет активных отправок (или ни одного маршрута), кэш очищается.
        """
        async with self._refresh_lock:
            shipments = self._store.relevant_shipments()
            self._relevant_key = self._store.relevant_key()
            if not shipments:
                if self._routes:
                    await log_debug("Нет активных отправок, кэш маршрутов очищен")
                self._routes = {}
                return {}

            self._routes = await self._fetch_with_retry(shipments)
            await log_info(f"Загружено маршрутов: {len(self._routes)}", type_msg=TypeMsg.DEBUG)
            return dict(self._routes)

    async def refresh(self, driver_id: str) -> RouteRecord | None:
        """Обновляет маршрут одного водителя."""
        self._fetching.add(driver_id)
        try:
            shipments = self._store.relevant_shipments(driver_id)
            if not shipments:
                self._routes.pop(driver_id, None)
                return None
            found = await self._fetch_with_retry(shipments)
        finally:
            self._fetching.discard(driver_id)

        route = found.get(driver_id)
        if route is None:
            self._routes.pop(driver_id, None)
        else:
            self._routes[driver_id] = route
        return route

    # =========================================================================
    # ТРИГГЕРЫ
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def on_shipments_changed(self) -> None:
        """Набор активных отправок изменился: перезагружаем всё."""
        if self._store.relevant_key() == self._relevant_key:
            return
        await self.refresh_all()

    def notify_shipments_changed(self) -> None:
        """То же, что on_shipments_changed, но в фоне (из обработчиков канала)."""
        if self._store.relevant_key() != self._relevant_key:
            self._spawn(self.refresh_all(), name="route-refresh-all")

    async def _settle_then_refresh(self) -> None:
        await self._sleep(self.settle_delay)
        self._settle_task = None
        await self.refresh_all()

    def on_status_update(self, event: ShipmentStatusUpdate) -> None:
        """
        Переход отправки в APPROVED/IN_TRANSIT: перезагрузка после паузы,
        чтобы сервер успел построить маршрут. Таймер заменяется, а не копится.
        """
        if event.new_status not in EN_ROUTE_STATUSES:
            return
        if self._settle_task is not None:
            self._settle_task.cancel()
        self._settle_task = self._spawn(self._settle_then_refresh(), name="route-settle")

    async def _delayed_refresh(self, driver_id: str, delay: float) -> None:
        await self._sleep(delay)
        # Дальше таймер не отменяется: загрузка уже началась
        if self._driver_timers.get(driver_id) is asyncio.current_task():
            del self._driver_timers[driver_id]
        await self.refresh(driver_id)

    def on_location_update(self, event: DriverLocationUpdate) -> None:
        """
        Новые координаты: без маршрута загрузка сразу,
        с маршрутом не чаще окна троттлинга с последней загрузки.
        """
        driver_id = event.driver_id
        if not self._store.relevant_shipments(driver_id):
            return

        if driver_id not in self._routes:
            if driver_id in self._fetching or driver_id in self._driver_timers:
                return
            self._fetching.add(driver_id)
            self._spawn(self.refresh(driver_id), name=f"route-fetch-{driver_id}")
            return

        window = self.throttle_window
        if event.source == LocationSource.SIMULATED:
            window = min(window, self.simulated_window)
        elapsed = self._clock() - self._last_fetch.get(driver_id, float("-inf"))
        delay = max(0.0, window - elapsed)

        previous = self._driver_timers.pop(driver_id, None)
        if previous is not None:
            previous.cancel()
        self._driver_timers[driver_id] = self._spawn(
            self._delayed_refresh(driver_id, delay),
            name=f"route-throttle-{driver_id}",
        )

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    def attach(self, channel: RealtimeChannel) -> None:
        if self._tokens:
            return
        self._channel = channel
        self._tokens = [
            channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, self.on_location_update),
            channel.subscribe(RealtimeEvents.SHIPMENT_STATUS_UPDATE, self.on_status_update),
        ]

    def detach(self) -> None:
        if self._channel is not None:
            for token in self._tokens:
                self._channel.unsubscribe(token)
        self._channel = None
        self._tokens = []

    async def aclose(self) -> None:
        """Отписывается и отменяет все таймеры и загрузки."""
        self.detach()
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._driver_timers.clear()
        self._settle_task = None
        self._fetching.clear()
