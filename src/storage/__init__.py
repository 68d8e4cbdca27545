"""Persistent state storage module."""

from .state_store import StateStore
from .models import StateEntry

__all__ = ["StateStore", "StateEntry"]
