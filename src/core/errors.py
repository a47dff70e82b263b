# src/core/errors.py
"""
Типизированные ошибки трекинга, видимые потребителям.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from src.common.constants import ErrorSeverity
from src.shared.models import utc_now


class ErrorKind:
    """Коды причин ошибок."""
    DRIVER_MISSING = "driver_missing"
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission_denied"
    ACQUISITION_TIMEOUT = "acquisition_timeout"
    ACQUISITION_FAILED = "acquisition_failed"
    INVALID_SAMPLE = "invalid_sample"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    PAYLOAD = "payload"
    NETWORK = "network"
    ROUTE_FETCH = "route_fetch"
    INTERNAL = "internal"


@dataclass(frozen=True)
class TrackingError:
    """Ошибка с классом серьёзности и сообщением для пользователя."""
    kind: str
    severity: ErrorSeverity
    message: str
    occurred_at: datetime = field(default_factory=utc_now)

    @property
    def is_fatal(self) -> bool:
        return self.severity == ErrorSeverity.FATAL

    @property
    def is_transient(self) -> bool:
        return self.severity == ErrorSeverity.TRANSIENT
