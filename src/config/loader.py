# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Адреса и секреты переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _env_float(name: str, default: Any) -> float:
    """Читает число из окружения, иначе берёт значение из конфига."""
    value = os.getenv(name)
    return float(value) if value not in (None, "") else float(default)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "fleet_tracking"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только colored и json."""
        if v not in ("colored", "json"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class RealtimeSettings(BaseModel):
    """Настройки realtime-канала (Socket.IO)."""
    SOCKET_URL: str = "http://localhost:3000"
    RECONNECTION_DELAY: float = 1.0
    CONNECT_TIMEOUT: float = 20.0
    DISCONNECT_GRACE_DELAY: float = 0.5
    TRANSPORTS: list[str] = Field(default_factory=lambda: ["polling", "websocket"])


class ApiSettings(BaseModel):
    """Настройки HTTP API бэкенда."""
    API_BASE_URL: str = "http://localhost:3000/v1"
    API_TIMEOUT: float = 10.0


class TrackingSettings(BaseModel):
    """Интервалы и лимиты трекинга (секунды)."""
    SHARE_INTERVAL: float = 3.0
    ROUTE_REFRESH_DELAY: float = 1.0
    LOCATION_UPDATE_THROTTLE: float = 5.0
    SIMULATED_UPDATE_THROTTLE: float = 2.0
    HISTORY_CAPACITY: int = 20
    ROUTE_FETCH_MAX_RETRIES: int = 3
    ROUTE_FETCH_RETRY_DELAY: float = 1.0
    MARKER_ANIMATION_DURATION: float = 1.0

    @field_validator("HISTORY_CAPACITY")
    @classmethod
    def check_capacity(cls, v: int) -> int:
        """Ёмкость истории должна быть положительной."""
        if v < 1:
            raise ValueError("HISTORY_CAPACITY должен быть >= 1")
        return v


class GeolocationSettings(BaseModel):
    """Параметры получения геопозиции (секунды)."""
    FIX_TIMEOUT: float = 10.0
    FIX_MAXIMUM_AGE: float = 0.0
    WATCH_TIMEOUT: float = 15.0
    WATCH_MAXIMUM_AGE: float = 5.0
    HIGH_ACCURACY: bool = True


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    geolocation: GeolocationSettings = Field(default_factory=GeolocationSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Адреса и интервалы переопределяются из переменных окружения.
        """
        config_data = load_config_json()

        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "fleet_tracking"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=os.getenv("LOG_LEVEL", data.get("LOG_LEVEL", "DEBUG")),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            realtime=RealtimeSettings(
                SOCKET_URL=os.getenv("SOCKET_URL", data.get("SOCKET_URL", "http://localhost:3000")),
                RECONNECTION_DELAY=data.get("RECONNECTION_DELAY", 1.0),
                CONNECT_TIMEOUT=data.get("CONNECT_TIMEOUT", 20.0),
                DISCONNECT_GRACE_DELAY=data.get("DISCONNECT_GRACE_DELAY", 0.5),
                TRANSPORTS=data.get("TRANSPORTS", ["polling", "websocket"]),
            ),
            api=ApiSettings(
                API_BASE_URL=os.getenv("API_BASE_URL", data.get("API_BASE_URL", "http://localhost:3000/v1")),
                API_TIMEOUT=data.get("API_TIMEOUT", 10.0),
            ),
            tracking=TrackingSettings(
                SHARE_INTERVAL=_env_float("SHARE_INTERVAL", data.get("SHARE_INTERVAL", 3.0)),
                ROUTE_REFRESH_DELAY=_env_float("ROUTE_REFRESH_DELAY", data.get("ROUTE_REFRESH_DELAY", 1.0)),
                LOCATION_UPDATE_THROTTLE=_env_float(
                    "LOCATION_UPDATE_THROTTLE", data.get("LOCATION_UPDATE_THROTTLE", 5.0)
                ),
                SIMULATED_UPDATE_THROTTLE=data.get("SIMULATED_UPDATE_THROTTLE", 2.0),
                HISTORY_CAPACITY=data.get("HISTORY_CAPACITY", 20),
                ROUTE_FETCH_MAX_RETRIES=data.get("ROUTE_FETCH_MAX_RETRIES", 3),
                ROUTE_FETCH_RETRY_DELAY=data.get("ROUTE_FETCH_RETRY_DELAY", 1.0),
                MARKER_ANIMATION_DURATION=data.get("MARKER_ANIMATION_DURATION", 1.0),
            ),
            geolocation=GeolocationSettings(
                FIX_TIMEOUT=data.get("GEO_FIX_TIMEOUT", 10.0),
                FIX_MAXIMUM_AGE=data.get("GEO_FIX_MAXIMUM_AGE", 0.0),
                WATCH_TIMEOUT=data.get("GEO_WATCH_TIMEOUT", 15.0),
                WATCH_MAXIMUM_AGE=data.get("GEO_WATCH_MAXIMUM_AGE", 5.0),
                HIGH_ACCURACY=data.get("GEO_HIGH_ACCURACY", True),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
