"""Durable agent state."""

from .models import PersistedAgentState, SessionRecord
from .state import StateStore, StateStoreError

__all__ = [
    "PersistedAgentState",
    "SessionRecord",
    "StateStore",
    "StateStoreError",
]
