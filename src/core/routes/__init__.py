# src/core/routes/__init__.py
"""
Кэш маршрутов водителей с триггерами обновления и повторами.
"""

from src.core.routes.service import RetryPolicy, RouteCacheRefresher

__all__ = [
    "RetryPolicy",
    "RouteCacheRefresher",
]
