# src/infra/api_client.py
"""
HTTP-клиент бэкенда трекинга.
Отправка геопозиции водителя, загрузка маршрутов, водителей и отправок.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from src.common.logger import log_debug
from src.shared.models import ApiEnvelope, Driver, PositionSample, RouteRecord, SessionCredential, Shipment


# =============================================================================
# ОШИБКИ API
# =============================================================================

class ApiError(Exception):
    """Базовая ошибка HTTP API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthenticationError(ApiError):
    """401/403: токен недействителен или истёк."""


class NotFoundError(ApiError):
    """404: ресурс не найден (или ещё не создан)."""


class PayloadError(ApiError):
    """400/422: сервер отклонил тело запроса."""


class ServerError(ApiError):
    """5xx и прочие неожиданные статусы."""


class TransportError(ApiError):
    """Сеть недоступна или истёк таймаут."""


def _error_message(response: httpx.Response) -> str:
    """Достаёт message из тела ошибки, если оно в JSON."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or response.reason_phrase)
    return response.reason_phrase


def map_status_error(error: httpx.HTTPStatusError) -> ApiError:
    """Преобразует HTTPStatusError в типизированную ошибку API."""
    status = error.response.status_code
    message = _error_message(error.response)
    if status in (401, 403):
        return AuthenticationError(message, status)
    if status == 404:
        return NotFoundError(message, status)
    if status in (400, 422):
        return PayloadError(message, status)
    return ServerError(message, status)


# =============================================================================
# БАЗОВЫЙ КЛИЕНТ
# =============================================================================

class BaseClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._token: str | None = None
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    def set_credential(self, credential: SessionCredential | None) -> None:
        """Устанавливает Bearer-токен для всех последующих запросов."""
        self._token = credential.token if credential else None
        if self._token:
            self.client.headers["Authorization"] = f"Bearer {self._token}"
        else:
            self.client.headers.pop("Authorization", None)

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise map_status_error(e) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(str(e) or "Network error") from e
        except httpx.RequestError as e:
            raise TransportError(str(e) or "Request failed") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ServerError("Malformed JSON response", response.status_code) from e

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def _post(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self._request("POST", path, json=json)


# =============================================================================
# КЛИЕНТ ТРЕКИНГА
# =============================================================================

class TrackingApiClient(BaseClient):
    """
    Клиент REST API трекинга.

    Все ответы приходят в конверте {success, data, message}.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        credential: SessionCredential | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if base_url is None or timeout is None:
            from src.config import settings
            base_url = base_url or settings.api.API_BASE_URL
            timeout = timeout if timeout is not None else settings.api.API_TIMEOUT
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.set_credential(credential)

    @staticmethod
    def _unwrap(body: Any) -> Any:
        """Проверяет конверт и возвращает data."""
        if not isinstance(body, dict):
            return body
        try:
            envelope = ApiEnvelope[Any].model_validate(body)
        except ValidationError as e:
            raise ServerError(f"Unexpected response envelope: {e}") from e
        if not envelope.success:
            raise ServerError(envelope.message or "Request was not successful")
        return envelope.data

    async def update_location(self, driver_id: str, sample: PositionSample) -> Any:
        """
        Отправляет геопозицию водителя.

        Raises:
            AuthenticationError, NotFoundError, PayloadError, ServerError, TransportError
        """
        body = await self._post(f"/drivers/{driver_id}/location", json=sample.to_payload())
        await log_debug(
            f"Локация водителя {driver_id} отправлена",
            extra={"lat": sample.latitude, "lng": sample.longitude},
        )
        return self._unwrap(body)

    async def get_shipment_route(self, shipment_id: str) -> RouteRecord | None:
        """
        Загружает маршрут отправки.

        Returns:
            RouteRecord или None, если сервер вернул пустые данные

        Raises:
            NotFoundError: маршрут ещё не построен
        """
        data = self._unwrap(await self._get(f"/shipments/{shipment_id}/route"))
        if not data:
            return None
        try:
            return RouteRecord.model_validate({**data, "shipment_id": shipment_id})
        except ValidationError as e:
            raise ServerError(f"Malformed route for shipment {shipment_id}: {e}") from e

    async def get_driver(self, driver_id: str) -> Driver:
        data = self._unwrap(await self._get(f"/drivers/{driver_id}"))
        return Driver.model_validate(data)

    async def list_drivers(self) -> list[Driver]:
        data = self._unwrap(await self._get("/drivers")) or []
        return [Driver.model_validate(item) for item in data]

    async def list_shipments(self) -> list[Shipment]:
        data = self._unwrap(await self._get("/shipments")) or []
        return [Shipment.model_validate(item) for item in data]
