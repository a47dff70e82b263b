# src/core/location_sharing/__init__.py
"""
Трансляция геопозиции водителя на сервер.
"""

from src.core.location_sharing.service import LocationSharingSession

__all__ = [
    "LocationSharingSession",
]
