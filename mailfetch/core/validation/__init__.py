"""Domain validation utilities."""

from .datetime import DateTimeParser

__all__ = ['DateTimeParser']
