"""In-memory secret store — for tests and single-process simulations.

Shared by reference between simulated nodes in one process. Creates are
atomic under a lock, so exactly one of several racing creates for a key
wins. An optional ``visibility_delay`` hides new records from ``get()``
for a while, mimicking an eventually consistent backend.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

from acl_bootstrap.errors import AlreadyExists
from acl_bootstrap.models import StoreRecord


class InMemorySecretStore:
    """Dict-backed store satisfying the SecretStore protocol."""

    def __init__(
        self,
        visibility_delay: float = 0.0,
        _clock: Callable[[], float] | None = None,
    ) -> None:
        self._visibility_delay = visibility_delay
        self._clock = _clock or time.monotonic
        self._lock = threading.Lock()
        self._records: dict[str, tuple[StoreRecord, float]] = {}
        self._create_attempts = 0

    def get(self, key: str) -> StoreRecord | None:
        with self._lock:
            entry = self._records.get(key)
        if entry is None:
            return None
        record, written_at = entry
        if self._clock() - written_at < self._visibility_delay:
            return None
        return record

    def create_if_absent(self, key: str, value: str) -> StoreRecord:
        with self._lock:
            self._create_attempts += 1
            if key in self._records:
                raise AlreadyExists(key)
            record = StoreRecord(key=key, value=value, created_at=datetime.now(tz=UTC))
            self._records[key] = (record, self._clock())
        return record

    def keys(self) -> list[str]:
        """All stored keys, visible or not (for testing)."""
        with self._lock:
            return sorted(self._records)

    @property
    def create_attempts(self) -> int:
        """Number of create calls seen, successful or not (for testing)."""
        return self._create_attempts
