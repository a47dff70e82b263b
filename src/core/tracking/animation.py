# src/core/tracking/animation.py
"""
Плавное перемещение маркеров между координатами.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


def ease_out_cubic(progress: float) -> float:
    """1 - (1 - p)^3, p ограничен [0, 1]."""
    p = min(1.0, max(0.0, progress))
    return 1 - (1 - p) ** 3


@dataclass
class _Segment:
    start: tuple[float, float]
    end: tuple[float, float]
    started_at: float | None


class MarkerAnimator:
    """
    Интерполяция позиции маркера с ease-out cubic за фиксированное окно.

    Первая позиция ставится сразу, без анимации. Новая цель отменяет
    текущую анимацию и продолжает движение с уже отображённой точки.
    """

    def __init__(self, duration: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.duration = duration
        self._clock = clock
        self._segments: dict[str, _Segment] = {}

    def move_to(self, key: str, lat: float, lng: float) -> None:
        now = self._clock()
        current = self.position(key, now)
        if current is None:
            self._segments[key] = _Segment((lat, lng), (lat, lng), None)
            return
        self._segments[key] = _Segment(current, (lat, lng), now)

    def _progress(self, segment: _Segment, now: float) -> float:
        if segment.started_at is None or self.duration <= 0:
            return 1.0
        return (now - segment.started_at) / self.duration

    def position(self, key: str, now: float | None = None) -> tuple[float, float] | None:
        segment = self._segments.get(key)
        if segment is None:
            return None
        eased = ease_out_cubic(self._progress(segment, self._clock() if now is None else now))
        (lat1, lng1), (lat2, lng2) = segment.start, segment.end
        return (lat1 + (lat2 - lat1) * eased, lng1 + (lng2 - lng1) * eased)

    def is_animating(self, key: str, now: float | None = None) -> bool:
        segment = self._segments.get(key)
        if segment is None:
            return False
        return self._progress(segment, self._clock() if now is None else now) < 1.0

    def forget(self, key: str) -> None:
        self._segments.pop(key, None)
