# src/infra/geolocation.py
"""
Источник геопозиции устройства.

GeolocationProvider: абстракция датчика, разовый запрос координат
и непрерывное наблюдение (watch). SimulatedGeolocationProvider проигрывает
заранее заданную траекторию и используется в CLI и тестах.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Iterator, Sequence

from pydantic import ValidationError

from src.common.logger import log_error
from src.shared.models import PositionSample, utc_now


class GeolocationErrorCode(IntEnum):
    """Коды ошибок геолокации."""
    UNSUPPORTED = 0
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class GeolocationError(Exception):
    """Ошибка получения координат."""

    def __init__(self, code: GeolocationErrorCode, message: str = "") -> None:
        super().__init__(message or code.name)
        self.code = code
        self.message = message or code.name.replace("_", " ").capitalize()


class InvalidReadingError(GeolocationError):
    """Датчик вернул координаты вне допустимого диапазона."""

    def __init__(self, latitude: Any, longitude: Any) -> None:
        super().__init__(
            GeolocationErrorCode.POSITION_UNAVAILABLE,
            f"Invalid coordinates rejected: {latitude}, {longitude}",
        )
        self.latitude = latitude
        self.longitude = longitude


@dataclass(frozen=True)
class PositionOptions:
    """Параметры запроса координат (секунды)."""
    enable_high_accuracy: bool = True
    timeout: float = 10.0
    maximum_age: float = 0.0

    @classmethod
    def for_fix(cls) -> "PositionOptions":
        """Параметры разового точного запроса."""
        from src.config import settings
        geo = settings.geolocation
        return cls(geo.HIGH_ACCURACY, geo.FIX_TIMEOUT, geo.FIX_MAXIMUM_AGE)

    @classmethod
    def for_watch(cls) -> "PositionOptions":
        """Параметры непрерывного наблюдения."""
        from src.config import settings
        geo = settings.geolocation
        return cls(geo.HIGH_ACCURACY, geo.WATCH_TIMEOUT, geo.WATCH_MAXIMUM_AGE)


PositionCallback = Callable[[PositionSample], Any]
ErrorCallback = Callable[[GeolocationError], Any]


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    """Вызывает sync или async колбэк."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class GeolocationProvider(ABC):
    """Абстрактный датчик геопозиции."""

    @abstractmethod
    async def get_current_position(self, options: PositionOptions) -> PositionSample:
        """
        Разовый запрос координат.

        Raises:
            GeolocationError: InvalidReadingError, если координаты вне диапазона
        """

    @abstractmethod
    def watch_position(
        self,
        on_position: PositionCallback,
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> int:
        """Начинает наблюдение и возвращает идентификатор watch."""

    @abstractmethod
    def clear_watch(self, watch_id: int) -> None:
        """Останавливает наблюдение. Неизвестный id игнорируется."""

    @property
    @abstractmethod
    def active_watches(self) -> int:
        """Количество активных наблюдений."""


class SimulatedGeolocationProvider(GeolocationProvider):
    """
    Проигрывает список точек по кругу с фиксированным шагом.

    Attributes:
        fail_with: Если задано, разовые запросы бросают эту ошибку,
            а наблюдения сообщают её в on_error вместо координат
    """

    def __init__(
        self,
        points: Sequence[tuple[float, float]],
        interval: float = 1.0,
    ) -> None:
        if not points:
            raise ValueError("Нужна хотя бы одна точка траектории")
        self._points: Iterator[tuple[float, float]] = itertools.cycle(list(points))
        self.interval = interval
        self.fail_with: GeolocationError | None = None
        self._watches: dict[int, asyncio.Task] = {}
        self._ids = itertools.count(1)

    @classmethod
    def along_line(
        cls,
        start: tuple[float, float],
        end: tuple[float, float],
        steps: int = 20,
        interval: float = 1.0,
    ) -> "SimulatedGeolocationProvider":
        """Траектория из равномерных шагов между двумя точками."""
        steps = max(1, steps)
        points = [
            (
                start[0] + (end[0] - start[0]) * i / steps,
                start[1] + (end[1] - start[1]) * i / steps,
            )
            for i in range(steps + 1)
        ]
        return cls(points, interval=interval)

    def _next_sample(self) -> PositionSample:
        lat, lng = next(self._points)
        try:
            return PositionSample(latitude=lat, longitude=lng, timestamp=utc_now())
        except ValidationError as e:
            raise InvalidReadingError(lat, lng) from e

    async def get_current_position(self, options: PositionOptions) -> PositionSample:
        if self.fail_with is not None:
            raise self.fail_with
        return self._next_sample()

    def watch_position(
        self,
        on_position: PositionCallback,
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> int:
        watch_id = next(self._ids)
        self._watches[watch_id] = asyncio.create_task(
            self._run_watch(on_position, on_error),
            name=f"geo-watch-{watch_id}",
        )
        return watch_id

    async def _run_watch(self, on_position: PositionCallback, on_error: ErrorCallback) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                if self.fail_with is not None:
                    await _invoke(on_error, self.fail_with)
                    continue
                try:
                    sample = self._next_sample()
                except InvalidReadingError as e:
                    await _invoke(on_error, e)
                    continue
                await _invoke(on_position, sample)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка в обработчике геопозиции: {e}", exc_info=True)

    def clear_watch(self, watch_id: int) -> None:
        task = self._watches.pop(watch_id, None)
        if task is not None:
            task.cancel()

    @property
    def active_watches(self) -> int:
        return len(self._watches)
