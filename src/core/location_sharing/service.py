# src/core/location_sharing/service.py
"""
Трансляция геопозиции водителя.

Машина состояний idle → starting → sharing → idle.
При старте берётся одна точная координата и сразу отправляется,
затем открывается непрерывное наблюдение (оно только обновляет
последнюю точку) и таймер, который с фиксированным интервалом
отправляет самую свежую точку на сервер.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from src.common.constants import (
    EN_ROUTE_STATUSES,
    TERMINAL_STATUSES,
    ErrorSeverity,
    RealtimeEvents,
    ShareState,
    ShipmentStatus,
    TypeMsg,
)
from src.common.logger import log_error, log_info, log_warning
from src.core.errors import ErrorKind, TrackingError
from src.infra.api_client import (
    ApiError,
    AuthenticationError,
    NotFoundError,
    PayloadError,
    TrackingApiClient,
)
from src.infra.geolocation import (
    GeolocationError,
    GeolocationErrorCode,
    GeolocationProvider,
    InvalidReadingError,
    PositionOptions,
)
from src.infra.realtime_channel import RealtimeChannel, SubscriptionToken
from src.shared.events import ShipmentStatusUpdate
from src.shared.models import PositionSample, is_valid_coordinate, utc_now


DRIVER_MISSING_MESSAGE = "Driver profile not found. Please contact admin."
UNSUPPORTED_MESSAGE = "Geolocation is not supported on this device"


class LocationSharingSession:
    """
    Сессия трансляции геопозиции одного водителя.

    Ошибки не пробрасываются вызывающему коду, а публикуются в error:
    - fatal: сессия остановлена, ошибка остаётся видимой
    - sticky: трансляция продолжается, ошибка снимается следующей успешной отправкой
    - transient: предупреждение, снимается следующей успешной отправкой
    """

    def __init__(
        self,
        api: TrackingApiClient,
        provider: GeolocationProvider | None,
        driver_id: str | None = None,
        *,
        interval: float | None = None,
        fix_options: PositionOptions | None = None,
        watch_options: PositionOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if interval is None:
            from src.config import settings
            interval = settings.tracking.SHARE_INTERVAL

        self._api = api
        self._provider = provider
        self.profile_driver_id = driver_id
        self.interval = interval
        self._fix_options = fix_options or PositionOptions.for_fix()
        self._watch_options = watch_options or PositionOptions.for_watch()
        self._sleep = sleep
        self._clock = clock

        self._state = ShareState.IDLE
        self._generation = 0
        self._driver_id: str | None = None
        self._watch_id: int | None = None
        self._timer_task: asyncio.Task | None = None
        self._last_sample: PositionSample | None = None
        self._last_send_at: datetime | None = None
        self._error: TrackingError | None = None
        self._token: SubscriptionToken | None = None
        self._channel: RealtimeChannel | None = None

    # =========================================================================
    # НАБЛЮДАЕМОЕ СОСТОЯНИЕ
    # =========================================================================

    @property
    def state(self) -> ShareState:
        return self._state

    @property
    def is_sharing(self) -> bool:
        return self._state == ShareState.SHARING

    @property
    def driver_id(self) -> str | None:
        return self._driver_id

    @property
    def last_sample(self) -> PositionSample | None:
        return self._last_sample

    @property
    def last_send_at(self) -> datetime | None:
        return self._last_send_at

    @property
    def error(self) -> TrackingError | None:
        return self._error

    @property
    def has_timer(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def watch_id(self) -> int | None:
        return self._watch_id

    # =========================================================================
    # ЗАПУСК И ОСТАНОВКА
    # =========================================================================

    async def start(self, driver_id: str | None = None) -> bool:
        """
        Запускает трансляцию.

        Повторный вызов при активной (или запускающейся) сессии ничего не делает.

        Returns:
            True, если сессия перешла в sharing
        """
        if self._state != ShareState.IDLE:
            return False

        driver_id = driver_id or self.profile_driver_id
        if not driver_id:
            self._error = TrackingError(ErrorKind.DRIVER_MISSING, ErrorSeverity.FATAL, DRIVER_MISSING_MESSAGE)
            await log_warning("Трансляция не запущена: профиль водителя не найден")
            return False
        if self._provider is None:
            self._error = TrackingError(ErrorKind.UNSUPPORTED, ErrorSeverity.FATAL, UNSUPPORTED_MESSAGE)
            await log_warning("Трансляция не запущена: геолокация недоступна")
            return False

        self._generation += 1
        generation = self._generation
        self._state = ShareState.STARTING
        self._driver_id = driver_id
        self._error = None
        await log_info(f"Запуск трансляции геопозиции водителя {driver_id}", type_msg=TypeMsg.INFO)

        try:
            return await self._open(generation, driver_id)
        except Exception as e:
            await log_error(f"Сбой запуска трансляции водителя {driver_id}: {e}", exc_info=True)
            if generation == self._generation:
                self._release()
                self._error = TrackingError(
                    ErrorKind.INTERNAL,
                    ErrorSeverity.TRANSIENT,
                    f"Location sharing could not start: {e}",
                )
            return False

    async def _open(self, generation: int, driver_id: str) -> bool:
        """Фаза starting: первая точка, затем watch и таймер."""
        sample = await self._acquire_fix()
        if sample is not None and generation == self._generation:
            self._last_sample = sample
            await self._send(sample)

        # Сессию могли остановить (stop() или фатальная ошибка) пока ждали
        if generation != self._generation or self._state != ShareState.STARTING or self._provider is None:
            return False

        self._watch_id = self._provider.watch_position(
            self._on_watch_position,
            self._on_watch_error,
            self._watch_options,
        )
        self._timer_task = asyncio.create_task(self._run_timer(generation), name=f"share-timer-{driver_id}")
        self._state = ShareState.SHARING
        return True

    def _release(self) -> asyncio.Task | None:
        """
        Освобождает watch и таймер и сбрасывает поля сессии.

        Returns:
            Отменённая задача таймера, которую нужно дождаться
        """
        if self._watch_id is not None and self._provider is not None:
            self._provider.clear_watch(self._watch_id)
        self._watch_id = None

        timer, self._timer_task = self._timer_task, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        else:
            # Таймер сам завершится по смене поколения
            timer = None

        self._generation += 1
        self._state = ShareState.IDLE
        self._driver_id = None
        self._last_sample = None
        self._last_send_at = None
        return timer

    async def stop(self) -> None:
        """Останавливает трансляцию. Идемпотентна."""
        was_active = self._state != ShareState.IDLE
        timer = self._release()
        self._error = None
        if timer is not None:
            await asyncio.gather(timer, return_exceptions=True)
        if was_active:
            await log_info("Трансляция геопозиции остановлена", type_msg=TypeMsg.INFO)

    async def _halt(self, error: TrackingError) -> None:
        """Фатальная ошибка: останавливаемся, ошибка остаётся видимой."""
        self._release()
        self._error = error
        await log_warning(f"Трансляция остановлена: {error.message}", extra={"kind": error.kind})

    async def aclose(self) -> None:
        await self.stop()
        self.detach()

    async def __aenter__(self) -> "LocationSharingSession":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # =========================================================================
    # ГЕОЛОКАЦИЯ
    # =========================================================================

    async def _acquire_fix(self) -> PositionSample | None:
        if self._provider is None:
            return None
        try:
            return await self._provider.get_current_position(self._fix_options)
        except GeolocationError as e:
            await self._on_acquisition_error(e)
        except ValidationError as e:
            await self._reject_invalid("Invalid coordinates rejected: device reading out of range", str(e))
        return None

    def _on_watch_position(self, sample: PositionSample) -> None:
        """Наблюдение только обновляет последнюю точку."""
        if self._state != ShareState.IDLE:
            self._last_sample = sample

    async def _on_watch_error(self, error: GeolocationError) -> None:
        if self._state != ShareState.IDLE:
            await self._on_acquisition_error(error)

    async def _on_acquisition_error(self, error: GeolocationError) -> None:
        if isinstance(error, InvalidReadingError):
            await self._reject_invalid(error.message)
        elif error.code == GeolocationErrorCode.PERMISSION_DENIED:
            await self._halt(TrackingError(
                ErrorKind.PERMISSION_DENIED,
                ErrorSeverity.FATAL,
                f"Location permission denied: {error.message}",
            ))
        elif error.code == GeolocationErrorCode.TIMEOUT:
            self._error = TrackingError(
                ErrorKind.ACQUISITION_TIMEOUT,
                ErrorSeverity.TRANSIENT,
                f"Timeout: {error.message}. Retrying...",
            )
            await log_warning(f"Таймаут получения геопозиции: {error.message}")
        else:
            self._error = TrackingError(
                ErrorKind.ACQUISITION_FAILED,
                ErrorSeverity.TRANSIENT,
                f"Location warning: {error.message}. Retrying...",
            )
            await log_warning(f"Ошибка получения геопозиции: {error.message}")

    async def _reject_invalid(self, message: str, details: str | None = None) -> None:
        """Некорректная точка: sticky-ошибка, на сервер ничего не уходит."""
        self._error = TrackingError(ErrorKind.INVALID_SAMPLE, ErrorSeverity.STICKY, message)
        await log_warning("Некорректные координаты не отправлены", extra={"reason": details or message})

    # =========================================================================
    # ОТПРАВКА
    # =========================================================================

    async def _run_timer(self, generation: int) -> None:
        """Фиксированный интервал отправки последней точки."""
        while generation == self._generation:
            await self._sleep(self.interval)
            if generation != self._generation:
                return
            try:
                await self._tick(generation)
            except Exception as e:
                await log_error(f"Сбой отправки геопозиции, таймер продолжает работу: {e}", exc_info=True)
                if generation == self._generation:
                    self._error = TrackingError(
                        ErrorKind.INTERNAL,
                        ErrorSeverity.TRANSIENT,
                        f"Warning: {e}. Location tracking continues...",
                    )

    async def _tick(self, generation: int) -> None:
        sample = self._last_sample
        if sample is None:
            sample = await self._acquire_fix()
            if sample is None or generation != self._generation:
                return
            self._last_sample = sample
        await self._send(sample)

    async def _send(self, sample: PositionSample) -> bool:
        """Валидирует и отправляет точку, классифицируя ошибки."""
        if not is_valid_coordinate(sample.latitude, sample.longitude):
            await self._reject_invalid(f"Invalid coordinates rejected: {sample.latitude}, {sample.longitude}")
            return False

        generation = self._generation
        driver_id = self._driver_id
        if driver_id is None:
            return False

        try:
            await self._api.update_location(driver_id, sample)
        except AuthenticationError as e:
            if generation == self._generation:
                await self._halt(TrackingError(
                    ErrorKind.AUTHENTICATION,
                    ErrorSeverity.FATAL,
                    f"Authentication failed: {e.message}. Please login again.",
                ))
            return False
        except NotFoundError as e:
            if generation == self._generation:
                await self._halt(TrackingError(
                    ErrorKind.NOT_FOUND,
                    ErrorSeverity.FATAL,
                    f"Driver not found: {e.message}",
                ))
            return False
        except PayloadError as e:
            if generation == self._generation:
                self._error = TrackingError(
                    ErrorKind.PAYLOAD,
                    ErrorSeverity.STICKY,
                    f"Location rejected: {e.message}",
                )
                await log_warning(f"Сервер отклонил точку: {e.message}")
            return False
        except ApiError as e:
            if generation == self._generation:
                self._error = TrackingError(
                    ErrorKind.NETWORK,
                    ErrorSeverity.TRANSIENT,
                    f"Warning: {e.message}. Location tracking continues...",
                )
                await log_warning(f"Не удалось отправить точку, повторим: {e.message}")
            return False

        if generation != self._generation:
            return False
        self._last_send_at = self._clock()
        if self._error is not None and not self._error.is_fatal:
            self._error = None
        return True

    # =========================================================================
    # СТАТУС ОТПРАВКИ
    # =========================================================================

    async def reconcile(self, status: ShipmentStatus | str, driver_id: str | None = None) -> None:
        """
        Согласует трансляцию со статусом отправки: в пути запускаем,
        при финальном статусе останавливаем. Фатальная ошибка блокирует автозапуск.
        """
        try:
            status = ShipmentStatus(status)
        except ValueError:
            await log_warning(f"Неизвестный статус отправки: {status}")
            return

        if status in EN_ROUTE_STATUSES:
            if self._state == ShareState.IDLE and not (self._error and self._error.is_fatal):
                await self.start(driver_id)
        elif status in TERMINAL_STATUSES and self._state != ShareState.IDLE:
            await self.stop()

    async def on_status_update(self, event: ShipmentStatusUpdate) -> None:
        """Обработчик shipment-status-update для своего водителя."""
        own_driver = self._driver_id or self.profile_driver_id
        if event.driver_id is not None and event.driver_id != own_driver:
            return
        await self.reconcile(event.new_status, own_driver)

    def attach(self, channel: RealtimeChannel) -> None:
        if self._token is not None:
            return
        self._channel = channel
        self._token = channel.subscribe(RealtimeEvents.SHIPMENT_STATUS_UPDATE, self.on_status_update)

    def detach(self) -> None:
        if self._channel is not None and self._token is not None:
            self._channel.unsubscribe(self._token)
        self._channel = None
        self._token = None
