# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("SOCKET_URL", "http://localhost:3000")
os.environ.setdefault("API_BASE_URL", "http://localhost:3000/v1")

from src.common.constants import ShipmentStatus
from src.core.fleet import FleetStore
from src.infra.api_client import TrackingApiClient
from src.shared.models import PositionSample, RoutePoint, RouteRecord, SessionCredential, Shipment


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


# =============================================================================
# ВРЕМЯ И ОЖИДАНИЕ
# =============================================================================

class SleepRecorder:
    """Поддельный sleep: запоминает задержки и сразу уступает управление."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeClock:
    """Управляемые монотонные часы."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    """sleep, который просыпается только по tick()."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._waiters: list[asyncio.Future] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        future = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        await future

    @property
    def waiting(self) -> int:
        return sum(1 for future in self._waiters if not future.done())

    async def tick(self) -> None:
        """Будит все ожидающие sleep и даёт им отработать."""
        waiters, self._waiters = self._waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(None)
        for _ in range(10):
            await asyncio.sleep(0)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def base_time() -> datetime:
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_sample(base_time: datetime) -> Callable[..., PositionSample]:
    """Фабрика точек: смещение времени в секундах от base_time."""
    def _make(lat: float, lng: float, seconds: float = 0.0) -> PositionSample:
        return PositionSample(latitude=lat, longitude=lng, timestamp=base_time + timedelta(seconds=seconds))
    return _make


# =============================================================================
# ДОМЕННЫЕ ФИКСТУРЫ
# =============================================================================

@pytest.fixture
def credential() -> SessionCredential:
    return SessionCredential(token="test-token", tenant_id="tenant-1", user_id="user-1")


@pytest.fixture
def store() -> FleetStore:
    return FleetStore()


@pytest.fixture
def en_route_store(store: FleetStore) -> FleetStore:
    """Хранилище с одной отправкой в пути у водителя d1."""
    store.set_shipments([
        Shipment(id="s1", status=ShipmentStatus.IN_TRANSIT, driver_id="d1"),
        Shipment(id="s2", status=ShipmentStatus.CREATED),
    ])
    return store


@pytest.fixture
def route() -> RouteRecord:
    return RouteRecord(
        shipment_id="s1",
        route_points=[RoutePoint(lat=40.0, lng=-74.0), RoutePoint(lat=40.01, lng=-74.0)],
        phase="TO_DELIVERY",
        delivery_point=RoutePoint(lat=40.01, lng=-74.0),
    )


@pytest.fixture
def mock_api() -> MagicMock:
    """Мок HTTP-клиента трекинга."""
    api = MagicMock(spec=TrackingApiClient)
    api.update_location = AsyncMock(return_value={"ok": True})
    api.get_shipment_route = AsyncMock(return_value=None)
    api.list_drivers = AsyncMock(return_value=[])
    api.list_shipments = AsyncMock(return_value=[])
    api.get_driver = AsyncMock()
    api.close = AsyncMock()
    return api


# =============================================================================
# SOCKET.IO
# =============================================================================

class FakeSocketClient:
    """Заменитель socketio.AsyncClient: хранит обработчики и вызовы."""

    def __init__(self, **kwargs: Any) -> None:
        self.options = kwargs
        self.handlers: dict[str, Callable[..., Any]] = {}
        self.connect = AsyncMock(side_effect=self._connect)
        self.emit = AsyncMock()
        self.disconnect = AsyncMock()
        self.connect_errors: list[BaseException] = []

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.handlers[event] = handler

    async def _connect(self, *args: Any, **kwargs: Any) -> None:
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        handler = self.handlers.get("connect")
        if handler is not None:
            await handler()

    async def fire(self, event: str, data: Any = None) -> None:
        """Имитирует входящее событие с сервера."""
        await self.handlers[event](data)


class FakeSocketFactory:
    """Фабрика клиентов; запоминает все созданные экземпляры."""

    def __init__(self) -> None:
        self.clients: list[FakeSocketClient] = []
        self.connect_errors: list[BaseException] = []

    def __call__(self, **kwargs: Any) -> FakeSocketClient:
        client = FakeSocketClient(**kwargs)
        client.connect_errors = list(self.connect_errors)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeSocketClient:
        return self.clients[-1]


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()
