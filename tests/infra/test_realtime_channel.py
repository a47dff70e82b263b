# tests/infra/test_realtime_channel.py
"""
Тесты realtime-канала: подключение, подписки, раздача событий, отключение.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from src.common.constants import ConnectionStatus, RealtimeEvents
from src.infra.realtime_channel import RealtimeChannel
from src.shared.events import DriverLocationUpdate, ShipmentStatusUpdate
from src.shared.models import SessionCredential


LOCATION_PAYLOAD = {
    "driverId": "d1",
    "location": {"latitude": 40.0, "longitude": -74.0, "timestamp": "2024-05-01T12:00:00Z"},
}


@pytest.fixture
def channel(socket_factory, sleep_recorder) -> RealtimeChannel:
    return RealtimeChannel(
        "http://test:3000",
        reconnection_delay=1.0,
        connect_timeout=20.0,
        grace_delay=0.5,
        client_factory=socket_factory,
        sleep=sleep_recorder,
    )


class TestConnect:
    """Тесты ensure_connected."""

    @pytest.mark.asyncio
    async def test_connect_and_join_tenant(self, channel, socket_factory, credential) -> None:
        """Подключение с токеном и вход в комнату тенанта."""
        await channel.ensure_connected(credential)

        client = socket_factory.last
        client.connect.assert_awaited_once()
        kwargs = client.connect.call_args.kwargs
        assert kwargs["auth"] == {"token": "test-token"}
        assert kwargs["transports"] == ["polling", "websocket"]
        assert kwargs["wait_timeout"] == 20.0
        client.emit.assert_awaited_once_with(RealtimeEvents.JOIN_TENANT, "tenant-1")
        assert channel.status == ConnectionStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_reconnection_policy(self, channel, socket_factory, credential) -> None:
        """Повторы без лимита с фиксированной задержкой."""
        await channel.ensure_connected(credential)

        options = socket_factory.last.options
        assert options["reconnection"] is True
        assert options["reconnection_attempts"] == 0
        assert options["reconnection_delay"] == options["reconnection_delay_max"] == 1.0
        assert options["randomization_factor"] == 0

    @pytest.mark.asyncio
    async def test_second_call_is_noop(self, channel, socket_factory, credential) -> None:
        """Живое соединение для той же сессии не пересоздаётся."""
        await channel.ensure_connected(credential)
        await channel.ensure_connected(credential)

        assert len(socket_factory.clients) == 1

    @pytest.mark.asyncio
    async def test_new_credential_replaces_connection(self, channel, socket_factory, credential) -> None:
        """Другой пользователь — старое соединение закрывается."""
        await channel.ensure_connected(credential)
        first = socket_factory.last

        await channel.ensure_connected(SessionCredential(token="other", tenant_id="tenant-2"))

        first.disconnect.assert_awaited_once()
        assert len(socket_factory.clients) == 2
        socket_factory.last.emit.assert_awaited_once_with(RealtimeEvents.JOIN_TENANT, "tenant-2")

    @pytest.mark.asyncio
    async def test_rejoin_on_reconnect(self, channel, socket_factory, credential) -> None:
        """Каждое переподключение заново входит в комнату тенанта."""
        await channel.ensure_connected(credential)
        client = socket_factory.last

        await client.handlers["disconnect"]()
        assert channel.status == ConnectionStatus.DISCONNECTED
        await client.handlers["connect"]()

        assert client.emit.await_count == 2
        assert channel.status == ConnectionStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_initial_failure_retries_in_background(
        self, channel, socket_factory, credential, sleep_recorder
    ) -> None:
        """Ошибка подключения не пробрасывается, повторы идут в фоне."""
        socket_factory.connect_errors = [SocketConnectionError("refused"), SocketConnectionError("refused")]

        await channel.ensure_connected(credential)
        assert channel.status == ConnectionStatus.ERROR

        for _ in range(10):
            await asyncio.sleep(0)

        assert channel.status == ConnectionStatus.CONNECTED
        assert socket_factory.last.connect.await_count == 3
        assert sleep_recorder.delays == [1.0, 1.0]
        assert len(socket_factory.clients) == 1


class TestSubscriptions:
    """Тесты подписок и раздачи."""

    @pytest.mark.asyncio
    async def test_events_are_validated_before_fanout(self, channel, socket_factory, credential) -> None:
        received: list = []
        channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, received.append)
        await channel.ensure_connected(credential)

        await socket_factory.last.fire(RealtimeEvents.DRIVER_LOCATION_UPDATE, LOCATION_PAYLOAD)

        assert len(received) == 1
        assert isinstance(received[0], DriverLocationUpdate)
        assert received[0].driver_id == "d1"

    @pytest.mark.asyncio
    async def test_invalid_payload_dropped(self, channel) -> None:
        handler = MagicMock()
        channel.subscribe(RealtimeEvents.SHIPMENT_STATUS_UPDATE, handler)

        await channel.dispatch(RealtimeEvents.SHIPMENT_STATUS_UPDATE, {"shipmentId": "s1", "newStatus": "BOGUS"})
        await channel.dispatch(RealtimeEvents.SHIPMENT_STATUS_UPDATE, "not-a-dict")

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_all_subscribers_receive_in_order(self, channel) -> None:
        calls: list[str] = []

        async def first(event: ShipmentStatusUpdate) -> None:
            calls.append(f"a:{event.new_status.value}")

        def second(event: ShipmentStatusUpdate) -> None:
            calls.append(f"b:{event.new_status.value}")

        channel.subscribe(RealtimeEvents.SHIPMENT_STATUS_UPDATE, first)
        channel.subscribe(RealtimeEvents.SHIPMENT_STATUS_UPDATE, second)

        for status in ("APPROVED", "IN_TRANSIT"):
            await channel.dispatch(
                RealtimeEvents.SHIPMENT_STATUS_UPDATE, {"shipmentId": "s1", "newStatus": status}
            )

        assert calls == ["a:APPROVED", "b:APPROVED", "a:IN_TRANSIT", "b:IN_TRANSIT"]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, channel) -> None:
        """Исключение одного подписчика не мешает остальным."""
        failing = MagicMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, failing)
        channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, healthy)

        await channel.dispatch(RealtimeEvents.DRIVER_LOCATION_UPDATE, LOCATION_PAYLOAD)

        failing.assert_called_once()
        healthy.assert_awaited_once()

    def test_subscribe_same_handler_is_idempotent(self, channel) -> None:
        handler = MagicMock()
        token1 = channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, handler)
        token2 = channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, handler)

        assert token1 == token2
        assert channel.subscriber_count(RealtimeEvents.DRIVER_LOCATION_UPDATE) == 1

    @pytest.mark.asyncio
    async def test_unmounted_consumer_never_fires_again(self, channel) -> None:
        """Потребитель A отписался, B подписался: A больше не вызывается, B вызывается."""
        consumer_a = MagicMock()
        consumer_b = MagicMock()

        token_a = channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, consumer_a)
        assert channel.unsubscribe(token_a) is True
        channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, consumer_b)

        await channel.dispatch(RealtimeEvents.DRIVER_LOCATION_UPDATE, LOCATION_PAYLOAD)

        consumer_a.assert_not_called()
        consumer_b.assert_called_once()
        assert channel.unsubscribe(token_a) is False

    @pytest.mark.asyncio
    async def test_one_dispatcher_per_event(self, channel, socket_factory, credential) -> None:
        """Много подписчиков — один обработчик на клиенте."""
        channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, MagicMock())
        await channel.ensure_connected(credential)
        channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, MagicMock())
        channel.subscribe(RealtimeEvents.SHIPMENT_STATUS_UPDATE, MagicMock())

        handlers = socket_factory.last.handlers
        assert RealtimeEvents.DRIVER_LOCATION_UPDATE in handlers
        assert RealtimeEvents.SHIPMENT_STATUS_UPDATE in handlers


class TestDisconnect:
    """Тесты отключения."""

    @pytest.mark.asyncio
    async def test_disconnect_with_grace_delay(self, channel, socket_factory, credential, sleep_recorder) -> None:
        channel.subscribe(RealtimeEvents.DRIVER_LOCATION_UPDATE, MagicMock())
        await channel.ensure_connected(credential)
        client = socket_factory.last

        await channel.disconnect()

        client.disconnect.assert_awaited_once()
        assert sleep_recorder.delays == [0.5]
        assert channel.status == ConnectionStatus.DISCONNECTED
        assert channel.subscriber_count(RealtimeEvents.DRIVER_LOCATION_UPDATE) == 0
        assert channel.credential is None

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, channel, credential, sleep_recorder) -> None:
        await channel.ensure_connected(credential)
        await channel.disconnect()
        await channel.disconnect()

        assert sleep_recorder.delays == [0.5]

    @pytest.mark.asyncio
    async def test_disconnect_stops_retries(self, channel, socket_factory, credential) -> None:
        socket_factory.connect_errors = [SocketConnectionError("refused")] * 100

        await channel.ensure_connected(credential)
        await asyncio.sleep(0)
        await channel.disconnect()
        attempts = socket_factory.last.connect.await_count

        for _ in range(5):
            await asyncio.sleep(0)

        assert socket_factory.last.connect.await_count == attempts
        assert channel.status == ConnectionStatus.DISCONNECTED
