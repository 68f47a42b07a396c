"""In-memory token registry.

Stores device token records keyed by token, with a per-recipient index that
preserves registration order. Mutations are serialised with a lock so the
registry can be shared by concurrent dispatches and worker threads.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable, Iterator
from datetime import UTC, datetime

from push_dispatch.exceptions import TokenNotFoundError
from push_dispatch.types import DeviceToken, Platform

__all__ = ["InMemoryTokenRegistry"]


def _now() -> datetime:
    """Return timezone-aware current datetime for record timestamps."""
    return datetime.now(tz=UTC)


class InMemoryTokenRegistry:
    """Token registry backed by ordered dictionaries.

    Args:
        clock: Source of record timestamps, injectable for tests.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _now) -> None:
        self._clock: Callable[[], datetime] = clock
        self._records: dict[str, DeviceToken] = {}
        # recipient_id -> tokens in registration order (dict used as ordered set)
        self._by_recipient: dict[str, dict[str, None]] = {}
        self._lock: threading.Lock = threading.Lock()

    def upsert(self, recipient_id: str, token: str, platform: Platform) -> DeviceToken:
        """Insert a token or update the existing record in place."""
        now = self._clock()
        with self._lock:
            existing = self._records.get(token)
            if existing is None:
                record = DeviceToken(
                    recipient_id=recipient_id,
                    token=token,
                    platform=platform,
                    active=True,
                    created_at=now,
                    updated_at=now,
                )
            else:
                if existing.recipient_id != recipient_id:
                    self._unindex(existing.recipient_id, token)
                record = dataclasses.replace(
                    existing,
                    recipient_id=recipient_id,
                    platform=platform,
                    active=True,
                    updated_at=now,
                )
            self._records[token] = record
            self._by_recipient.setdefault(recipient_id, {})[token] = None
            return record

    def deactivate(self, token: str) -> bool:
        """Mark a token inactive; unknown tokens are ignored."""
        with self._lock:
            existing = self._records.get(token)
            if existing is None:
                return False
            if existing.active:
                self._records[token] = dataclasses.replace(existing, active=False, updated_at=self._clock())
            return True

    def remove(self, recipient_id: str, token: str) -> None:
        """Delete a token owned by ``recipient_id``."""
        with self._lock:
            existing = self._records.get(token)
            if existing is None or existing.recipient_id != recipient_id:
                raise TokenNotFoundError(recipient_id, token)
            del self._records[token]
            self._unindex(recipient_id, token)

    def get(self, token: str) -> DeviceToken | None:
        with self._lock:
            return self._records.get(token)

    def active_tokens_for(self, recipient_id: str, platform: Platform | None = None) -> tuple[str, ...]:
        with self._lock:
            return tuple(
                record.token
                for record in self._recipient_records(recipient_id)
                if record.active and (platform is None or record.platform is platform)
            )

    def tokens_for(self, recipient_id: str) -> tuple[DeviceToken, ...]:
        with self._lock:
            return tuple(self._recipient_records(recipient_id))

    def iter_active_tokens(self) -> Iterator[str]:
        """Enumerate active tokens lazily in registration order.

        Each call snapshots the key order and then checks every record as it
        is reached, so tokens deactivated mid-enumeration are skipped.
        """
        with self._lock:
            tokens = list(self._records)
        for token in tokens:
            record = self._records.get(token)
            if record is not None and record.active:
                yield token

    def count_active(self) -> int:
        with self._lock:
            return sum(1 for record in self._records.values() if record.active)

    def prune_inactive(self, older_than: datetime) -> int:
        with self._lock:
            stale = [
                record
                for record in self._records.values()
                if not record.active and record.updated_at < older_than
            ]
            for record in stale:
                del self._records[record.token]
                self._unindex(record.recipient_id, record.token)
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _recipient_records(self, recipient_id: str) -> list[DeviceToken]:
        tokens = self._by_recipient.get(recipient_id, {})
        return [self._records[token] for token in tokens]

    def _unindex(self, recipient_id: str, token: str) -> None:
        tokens = self._by_recipient.get(recipient_id)
        if tokens is None:
            return
        _ = tokens.pop(token, None)
        if not tokens:
            del self._by_recipient[recipient_id]
