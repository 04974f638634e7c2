"""Observation cache backends."""

from .base import ObservationCache
from .memory import InMemoryObservationCache

__all__ = [
    "ObservationCache",
    "InMemoryObservationCache",
]
