# src/shared/__init__.py
"""
Общий код между компонентами трекинга.

Модули:
- events: схемы событий realtime-канала
- models: общие DTO и Pydantic-модели
"""

__all__: list[str] = []
