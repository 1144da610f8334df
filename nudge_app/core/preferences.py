"""User preference store contract and an in-memory implementation."""

from __future__ import annotations

import copy
import threading
from typing import Protocol

from .models import UserPreferences


class PreferenceStore(Protocol):
    def get_preferences(self, user_id: str) -> UserPreferences | None: ...


class InMemoryPreferenceStore:
    """Dict-backed store; unknown users get default preferences."""

    def __init__(self, preferences: dict[str, UserPreferences] | None = None):
        self._prefs: dict[str, UserPreferences] = dict(preferences or {})
        self._lock = threading.Lock()

    def get_preferences(self, user_id: str) -> UserPreferences:
        with self._lock:
            stored = self._prefs.get(user_id)
        if stored is None:
            return UserPreferences(user_id=user_id)
        return copy.deepcopy(stored)

    def set_preferences(self, prefs: UserPreferences) -> None:
        with self._lock:
            self._prefs[prefs.user_id] = copy.deepcopy(prefs)
