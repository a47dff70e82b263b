# src/core/fleet/__init__.py
"""
Состояние парка: водители, координаты, отправки.
"""

from src.core.fleet.store import FleetStore

__all__ = [
    "FleetStore",
]
