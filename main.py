#!/usr/bin/env python3
# main.py
"""
Главная точка входа трекинга парка.
Режим track — наблюдение за водителями, share — трансляция геопозиции
водителя с симулированного датчика.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg
from src.core.geo import format_distance, format_eta, format_speed
from src.core.session import TrackingSession
from src.infra.geolocation import SimulatedGeolocationProvider
from src.shared.models import SessionCredential


MODES = ("track", "share")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


def credential_from_env() -> SessionCredential:
    """Учётные данные сессии из переменных окружения."""
    token = os.getenv("AUTH_TOKEN", "")
    tenant_id = os.getenv("TENANT_ID", "")
    if not token or not tenant_id:
        raise SystemExit("Нужны переменные окружения AUTH_TOKEN и TENANT_ID")
    return SessionCredential(token=token, tenant_id=tenant_id, user_id=os.getenv("USER_ID"))


async def run_track(session: TrackingSession) -> None:
    """Логирует кинематику всех водителей, пока не придёт сигнал остановки."""
    surface = session.open_surface()
    interval = settings.tracking.SHARE_INTERVAL

    while _shutdown_event is not None and not _shutdown_event.is_set():
        for driver_id, track in surface.views().items():
            remaining = track.remaining_distance
            await log_info(
                f"Водитель {driver_id}: {format_speed(track.speed)}, "
                f"курс {track.bearing or 0:.0f}°, "
                f"осталось {format_distance(remaining) if remaining is not None else '—'}, "
                f"ETA {format_eta(track.eta)}",
                type_msg=TypeMsg.INFO,
            )
        view = surface.map_view()
        await log_info(f"Карта: центр {view.center}, масштаб {view.zoom}", type_msg=TypeMsg.DEBUG)
        try:
            await asyncio.wait_for(_shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def run_share(session: TrackingSession) -> None:
    """Транслирует симулированную траекторию от имени водителя DRIVER_ID."""
    driver_id = os.getenv("DRIVER_ID")
    provider = SimulatedGeolocationProvider.along_line(
        start=(40.7128, -74.0060),
        end=(40.7580, -73.9855),
        steps=60,
        interval=1.0,
    )
    sharing = session.sharing(provider, driver_id)
    async with sharing:
        await sharing.start()
        while _shutdown_event is not None and not _shutdown_event.is_set():
            if sharing.error is not None:
                await log_info(f"Статус трансляции: {sharing.error.message}", type_msg=TypeMsg.WARNING)
                if sharing.error.is_fatal:
                    return
            try:
                await asyncio.wait_for(_shutdown_event.wait(), timeout=sharing.interval)
            except asyncio.TimeoutError:
                pass


async def main(mode: str) -> None:
    """Главная асинхронная функция."""
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"Запуск {settings.system.PROJECT_NAME} v{settings.system.VERSION} в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    credential = credential_from_env()
    async with TrackingSession(credential) as session:
        try:
            if mode == "track":
                await run_track(session)
            else:
                await run_share(session)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            await log_error(f"Ошибка в режиме {mode}: {e}", exc_info=True)
            raise

    await log_info("Работа завершена", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Fleet Tracking — живой трекинг водителей

Использование:
    python main.py [mode]

Режимы:
    track    — наблюдение за водителями тенанта (по умолчанию)
    share    — трансляция геопозиции водителя (симулированный датчик)

Переменные окружения:
    AUTH_TOKEN, TENANT_ID    — учётные данные сессии (обязательны)
    DRIVER_ID                — профиль водителя для режима share
    SOCKET_URL, API_BASE_URL — адреса realtime-сервера и API
""")


if __name__ == "__main__":
    mode = "track"

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
