# src/infra/realtime_channel.py
"""
Realtime-канал на базе Socket.IO.

Одно долгоживущее соединение на сессию и раздача событий
множеству независимых подписчиков (карты, экран водителя).
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError, SocketIOError

from src.common.constants import ConnectionStatus, RealtimeEvents, TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.shared.events import parse_event
from src.shared.models import SessionCredential

# Тип обработчика события (sync или async)
EventHandler = Callable[[Any], Awaitable[None] | None]

# Ошибки установки соединения, после которых запускается повтор
_CONNECT_ERRORS = (SocketConnectionError, asyncio.TimeoutError, OSError)


@dataclass(frozen=True)
class SubscriptionToken:
    """Непрозрачный идентификатор подписки."""
    event_name: str
    subscription_id: int


class RealtimeChannel:
    """
    Владелец realtime-соединения.

    Реализует:
    - Ленивое подключение с повторами (фиксированная задержка, без лимита)
    - Вход в комнату тенанта при каждом (пере)подключении
    - Валидацию входящих событий до раздачи
    - Упорядоченную раздачу подписчикам с изоляцией их ошибок
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        reconnection_delay: float | None = None,
        connect_timeout: float | None = None,
        grace_delay: float | None = None,
        transports: list[str] | None = None,
        client_factory: Callable[..., socketio.AsyncClient] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if url is None or reconnection_delay is None or connect_timeout is None or grace_delay is None:
            from src.config import settings
            realtime = settings.realtime
            url = url or realtime.SOCKET_URL
            reconnection_delay = realtime.RECONNECTION_DELAY if reconnection_delay is None else reconnection_delay
            connect_timeout = realtime.CONNECT_TIMEOUT if connect_timeout is None else connect_timeout
            grace_delay = realtime.DISCONNECT_GRACE_DELAY if grace_delay is None else grace_delay
            transports = transports or list(realtime.TRANSPORTS)

        self.url = url
        self.reconnection_delay = reconnection_delay
        self.connect_timeout = connect_timeout
        self.grace_delay = grace_delay
        self.transports = transports or ["polling", "websocket"]

        self._client_factory = client_factory or socketio.AsyncClient
        self._sleep = sleep

        self._client: socketio.AsyncClient | None = None
        self._credential: SessionCredential | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._closed = False
        self._retry_task: asyncio.Task | None = None

        self._subscriptions: dict[str, dict[int, EventHandler]] = {}
        self._registered: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._ids = itertools.count(1)

    # =========================================================================
    # СОСТОЯНИЕ
    # =========================================================================

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        """Проверяет, активно ли соединение."""
        return self._client is not None and self._status == ConnectionStatus.CONNECTED

    @property
    def credential(self) -> SessionCredential | None:
        return self._credential

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscriptions.get(event_name, {}))

    def _is_usable(self) -> bool:
        """Клиент существует и либо подключён, либо переподключается."""
        if self._client is None or self._closed:
            return False
        if self._status != ConnectionStatus.ERROR:
            return True
        return self._retry_task is not None and not self._retry_task.done()

    # =========================================================================
    # ПОДПИСКИ
    # =========================================================================

    def subscribe(self, event_name: str, handler: EventHandler) -> SubscriptionToken:
        """
        Подписывает обработчик на событие.

        Повторная подписка того же обработчика на то же событие
        возвращает существующий токен.
        """
        handlers = self._subscriptions.setdefault(event_name, {})
        for subscription_id, existing in handlers.items():
            if existing == handler:
                return SubscriptionToken(event_name, subscription_id)

        subscription_id = next(self._ids)
        handlers[subscription_id] = handler
        self._register_dispatcher(event_name)
        return SubscriptionToken(event_name, subscription_id)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        """Удаляет только обработчик данного токена."""
        handlers = self._subscriptions.get(token.event_name)
        if not handlers or token.subscription_id not in handlers:
            return False
        del handlers[token.subscription_id]
        return True

    def _register_dispatcher(self, event_name: str) -> None:
        """Один диспетчер на имя события на клиента."""
        if self._client is None or event_name in self._registered:
            return

        async def dispatcher(data: Any = None) -> None:
            await self.dispatch(event_name, data)

        self._client.on(event_name, dispatcher)
        self._registered.add(event_name)

    async def dispatch(self, event_name: str, payload: Any) -> None:
        """
        Валидирует событие и раздаёт его подписчикам по порядку.
        Ошибка одного подписчика не мешает остальным.
        """
        try:
            event = parse_event(event_name, payload)
        except ValueError as e:
            await log_warning(
                f"Отброшено некорректное событие {event_name}: {e}",
                extra={"event_name": event_name},
            )
            return

        lock = self._locks.setdefault(event_name, asyncio.Lock())
        async with lock:
            snapshot = list(self._subscriptions.get(event_name, {}).items())
            for subscription_id, handler in snapshot:
                # Отписка во время раздачи действует сразу
                if subscription_id not in self._subscriptions.get(event_name, {}):
                    continue
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    await log_error(
                        f"Ошибка в обработчике события {event_name}: {e}",
                        extra={"event_name": event_name},
                        exc_info=True,
                    )

    # =========================================================================
    # ПОДКЛЮЧЕНИЕ
    # =========================================================================

    def _create_client(self) -> socketio.AsyncClient:
        client = self._client_factory(
            reconnection=True,
            reconnection_attempts=0,
            reconnection_delay=self.reconnection_delay,
            reconnection_delay_max=self.reconnection_delay,
            randomization_factor=0,
            logger=False,
            engineio_logger=False,
        )
        client.on("connect", self._on_connect)
        client.on("disconnect", self._on_disconnect)
        client.on("connect_error", self._on_connect_error)
        return client

    async def ensure_connected(self, credential: SessionCredential) -> None:
        """
        Создаёт соединение, если его нет или оно непригодно.

        Для того же пользователя с живым соединением ничего не делает.
        Смена учётных данных закрывает старое соединение.
        Ошибка подключения не пробрасывается: статус становится error,
        а повторы идут в фоне до успеха или disconnect().
        """
        if self._credential == credential and self._is_usable():
            return

        if self._client is not None:
            await log_info("Смена сессии: закрываем прежнее соединение", type_msg=TypeMsg.INFO)
            await self._teardown()

        self._closed = False
        self._credential = credential
        self._client = self._create_client()
        self._registered = set()
        for event_name in self._subscriptions:
            self._register_dispatcher(event_name)

        try:
            await self._connect_once()
        except _CONNECT_ERRORS as e:
            self._status = ConnectionStatus.ERROR
            await log_error(f"Не удалось подключиться к {self.url}: {e}")
            self._retry_task = asyncio.create_task(self._retry_connect(), name="realtime-reconnect")

    async def _connect_once(self) -> None:
        client = self._client
        credential = self._credential
        if client is None or credential is None:
            return

        self._status = ConnectionStatus.CONNECTING
        await log_info(f"Подключение к realtime-серверу {self.url}...", type_msg=TypeMsg.INFO)
        await client.connect(
            self.url,
            auth={"token": credential.token},
            transports=self.transports,
            wait_timeout=self.connect_timeout,
        )
        self._status = ConnectionStatus.CONNECTED

    async def _retry_connect(self) -> None:
        """Повторяет первичное подключение с фиксированной задержкой."""
        attempt = 0
        while not self._closed and self._client is not None:
            attempt += 1
            await self._sleep(self.reconnection_delay)
            if self._closed:
                return
            try:
                await self._connect_once()
                await log_info(f"Подключено после {attempt} повтора(ов)", type_msg=TypeMsg.INFO)
                return
            except _CONNECT_ERRORS as e:
                self._status = ConnectionStatus.ERROR
                await log_warning(f"Повтор подключения #{attempt} не удался: {e}")

    async def _on_connect(self) -> None:
        """Каждое (пере)подключение заново входит в комнату тенанта."""
        self._status = ConnectionStatus.CONNECTED
        if self._client is None or self._credential is None:
            return
        try:
            await self._client.emit(RealtimeEvents.JOIN_TENANT, self._credential.tenant_id)
            await log_info(
                f"Realtime-соединение установлено, тенант {self._credential.tenant_id}",
                type_msg=TypeMsg.INFO,
            )
        except SocketIOError as e:
            await log_error(f"Не удалось войти в комнату тенанта: {e}")

    async def _on_disconnect(self, *args: Any) -> None:
        if not self._closed:
            self._status = ConnectionStatus.DISCONNECTED
            await log_warning("Realtime-соединение потеряно, ожидаем переподключения")

    async def _on_connect_error(self, data: Any = None) -> None:
        self._status = ConnectionStatus.ERROR
        await log_warning(f"Ошибка realtime-соединения: {data}")

    # =========================================================================
    # ОТКЛЮЧЕНИЕ
    # =========================================================================

    async def _teardown(self) -> None:
        """Останавливает повторы и закрывает клиента."""
        self._closed = True
        if self._retry_task is not None:
            self._retry_task.cancel()
            await asyncio.gather(self._retry_task, return_exceptions=True)
            self._retry_task = None

        client, self._client = self._client, None
        self._registered = set()
        self._credential = None
        self._status = ConnectionStatus.DISCONNECTED
        if client is not None:
            try:
                await client.disconnect()
            except SocketIOError as e:
                await log_warning(f"Ошибка при закрытии соединения: {e}")

    async def disconnect(self, grace_delay: float | None = None) -> None:
        """
        Закрывает соединение при выходе пользователя.

        Снимает всех подписчиков и ждёт короткую паузу, чтобы сервер
        успел отметить сессию офлайн. Повторный вызов безопасен.
        """
        had_client = self._client is not None
        await self._teardown()
        self._subscriptions.clear()
        self._locks.clear()

        if had_client:
            await self._sleep(self.grace_delay if grace_delay is None else grace_delay)
            await log_info("Realtime-соединение закрыто", type_msg=TypeMsg.INFO)
