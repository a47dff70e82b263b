# tests/core/test_kinematics.py
"""
Тесты кинематики: расстояние, курс, скорость, ETA, маршрут, форматирование.
"""

from __future__ import annotations

import math

import pytest

from src.core.geo import (
    bearing,
    distance,
    eta,
    format_distance,
    format_eta,
    format_speed,
    route_distance,
    route_remaining_distance,
    speed,
)


class TestDistance:
    """Тесты для distance."""

    def test_same_point_is_zero(self) -> None:
        """Расстояние от точки до себя равно нулю."""
        assert distance(40.0, -74.0, 40.0, -74.0) == 0

    def test_symmetric(self) -> None:
        """distance(a, b) == distance(b, a)."""
        a = (50.4501, 30.5234)
        b = (53.5511, 9.9937)
        assert distance(*a, *b) == pytest.approx(distance(*b, *a))

    def test_one_thousandth_degree_latitude(self) -> None:
        """0.001° широты ≈ 111 м."""
        assert distance(40.0, -74.0, 40.001, -74.0) == pytest.approx(111.19, abs=0.5)

    @pytest.mark.parametrize("bad", [None, float("nan"), float("inf"), "40.0"])
    def test_invalid_input_degrades_to_zero(self, bad) -> None:
        """Некорректный ввод даёт 0 без исключений."""
        assert distance(bad, -74.0, 40.0, -74.0) == 0


class TestBearing:
    """Тесты для bearing."""

    def test_north(self) -> None:
        assert bearing(40.0, -74.0, 40.001, -74.0) == pytest.approx(0.0, abs=1e-6)

    def test_east(self) -> None:
        assert bearing(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0, abs=1e-6)

    def test_south_and_west(self) -> None:
        assert bearing(40.0, -74.0, 39.999, -74.0) == pytest.approx(180.0, abs=1e-6)
        assert bearing(0.0, 0.0, 0.0, -1.0) == pytest.approx(270.0, abs=1e-6)

    @pytest.mark.parametrize(
        "points",
        [
            (40.0, -74.0, 40.001, -74.0),
            (40.0, -74.0, 39.9, -74.1),
            (-33.86, 151.2, 51.5, -0.12),
            (0.0, 179.9, 0.0, -179.9),
            (10.0, 10.0, 10.0, 10.0),
        ],
    )
    def test_always_in_range(self, points) -> None:
        """Курс всегда в [0, 360)."""
        value = bearing(*points)
        assert 0 <= value < 360


class TestSpeed:
    """Тесты для speed."""

    def test_scenario_40_kmh(self) -> None:
        """111 м за 10 с ≈ 40 км/ч."""
        assert speed(40.0, -74.0, 40.001, -74.0, 10_000) == pytest.approx(40.0, abs=0.1)

    @pytest.mark.parametrize("dt", [0, -1000, None, float("nan")])
    def test_zero_when_no_interval(self, dt) -> None:
        """Ровно 0 при dt <= 0 или некорректном dt."""
        assert speed(40.0, -74.0, 40.001, -74.0, dt) == 0

    def test_never_negative(self) -> None:
        assert speed(40.001, -74.0, 40.0, -74.0, 5000) >= 0


class TestEta:
    """Тесты для eta."""

    def test_zero_distance(self) -> None:
        assert eta(0, 30) == 0

    def test_100m_at_60kmh_is_one_minute(self) -> None:
        """0.1 мин округляется вверх до 1."""
        assert eta(100, 60) == 1

    def test_ceiling(self) -> None:
        """1500 м при 60 км/ч = 1.5 мин → 2."""
        assert eta(1500, 60) == 2

    @pytest.mark.parametrize("v", [0, -5, None, float("nan")])
    def test_unknown_when_not_moving(self, v) -> None:
        assert eta(1000, v) is None


class TestRouteDistance:
    """Тесты длины маршрута."""

    def test_sum_of_legs(self) -> None:
        points = [{"lat": 40.0, "lng": -74.0}, {"lat": 40.001, "lng": -74.0}, {"lat": 40.002, "lng": -74.0}]
        expected = distance(40.0, -74.0, 40.001, -74.0) + distance(40.001, -74.0, 40.002, -74.0)
        assert route_distance(points) == pytest.approx(expected)

    def test_fewer_than_two_points(self) -> None:
        assert route_distance([]) == 0
        assert route_distance([{"lat": 1.0, "lng": 1.0}]) == 0

    def test_remaining_from_step(self) -> None:
        """От текущей позиции до points[step+1] плюс последующие отрезки."""
        points = [{"lat": 40.0, "lng": -74.0}, {"lat": 40.01, "lng": -74.0}, {"lat": 40.02, "lng": -74.0}]
        remaining = route_remaining_distance(40.005, -74.0, points, 0)
        expected = distance(40.005, -74.0, 40.01, -74.0) + distance(40.01, -74.0, 40.02, -74.0)
        assert remaining == pytest.approx(expected)

    def test_remaining_at_last_step_is_zero(self) -> None:
        points = [{"lat": 40.0, "lng": -74.0}, {"lat": 40.01, "lng": -74.0}]
        assert route_remaining_distance(40.0, -74.0, points, 1) == 0
        assert route_remaining_distance(40.0, -74.0, [], 0) == 0


class TestFormatting:
    """Тесты форматирования."""

    @pytest.mark.parametrize(
        "meters, expected",
        [(0, "0m"), (849.6, "850m"), (999, "999m"), (1000, "1.0km"), (1234, "1.2km")],
    )
    def test_format_distance(self, meters, expected) -> None:
        assert format_distance(meters) == expected

    @pytest.mark.parametrize(
        "minutes, expected",
        [(None, "Calculating..."), (0, "Calculating..."), (5, "5 min"), (59, "59 min"),
         (60, "1h"), (65, "1h 5min"), (120, "2h")],
    )
    def test_format_eta(self, minutes, expected) -> None:
        assert format_eta(minutes) == expected

    def test_format_speed(self) -> None:
        assert format_speed(39.96) == "40 km/h"
        assert format_speed(math.nan) == "0 km/h"
