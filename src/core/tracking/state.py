# src/core/tracking/state.py
"""
Состояние трека одного водителя: ограниченная история и кинематика.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from src.shared.models import PositionSample


@dataclass
class DriverTrackState:
    """
    История точек водителя (последняя в конце) и производные величины.

    При переполнении вытесняется самая старая точка.
    """
    driver_id: str
    capacity: int = 20
    history: deque[PositionSample] = field(init=False, repr=False)
    speed: float = 0.0
    bearing: float | None = None
    eta: int | None = None
    remaining_distance: float | None = None

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity должна быть >= 1")
        self.history = deque(maxlen=self.capacity)

    @property
    def last(self) -> PositionSample | None:
        return self.history[-1] if self.history else None

    @property
    def previous(self) -> PositionSample | None:
        return self.history[-2] if len(self.history) >= 2 else None

    def record(self, sample: PositionSample) -> bool:
        """Добавляет точку; повтор последней позиции отбрасывается."""
        if sample.same_position(self.last):
            return False
        self.history.append(sample)
        return True
