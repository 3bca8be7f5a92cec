"""Configuration management with Pydantic models."""

from .settings import LivewatchSettings

__all__ = ["LivewatchSettings"]
