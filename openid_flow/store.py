"""
Short-lived key-value stores with per-entry expiration.
Used to hold pending authorization flows (state -> provider, code_verifier, redirect_uri, info)
between signin and callback. Expired entries are swept on every get/set/delete, no background timer.
"""
import base64
import heapq
import inspect
import itertools
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

SimpleKey = str | int | float | bool | bytes
Key = SimpleKey | tuple[SimpleKey, ...]

OnSet = Callable[[Key, Any], Awaitable[None] | None]
OnDelete = Callable[[Key, Any], Awaitable[None] | None]

# Rebuild the expiry heap once stale markers outnumber live entries by this much
_COMPACT_SLACK = 64


def _encode_part(part: Any) -> list:
    # bool before int: bool is an int subclass and True == 1
    if isinstance(part, bool):
        return ["bool", part]
    if isinstance(part, int):
        return ["int", part]
    if isinstance(part, float):
        return ["float", part]
    if isinstance(part, str):
        return ["str", part]
    if isinstance(part, bytes):
        return ["bytes", base64.b64encode(part).decode("ascii")]
    raise TypeError(f"Unsupported key part type: {type(part).__name__}")


def encode_key(key: Key) -> str:
    """
    Canonical string form of a key. Tuple (or list) keys are encoded positionally,
    so ("a", "b") and ("b", "a") never collide, and neither does 1 with True or "1".
    """
    if isinstance(key, (tuple, list)):
        if not key:
            raise TypeError("Tuple keys must not be empty")
        parts = [_encode_part(p) for p in key]
    else:
        parts = [_encode_part(key)]
    return json.dumps(parts, separators=(",", ":"))


async def call_observer(callback: Callable | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Store(ABC):
    """
    Store contract. get returns None when the key is absent or expired.
    ttl is in seconds; None or <= 0 means the entry never expires.
    """

    @abstractmethod
    async def get(self, key: Key) -> Any | None:
        ...

    @abstractmethod
    async def set(self, key: Key, value: Any, ttl: float | None = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: Key) -> None:
        ...

    @abstractmethod
    async def take(self, key: Key) -> Any | None:
        """
        Remove the entry and return its value in one atomic step; None if absent or expired.
        Of any number of concurrent takes on the same key, at most one gets the value.
        """

    @abstractmethod
    async def is_empty(self) -> bool:
        ...


class MemoryStore(Store):
    """
    In-process store. Entries with a TTL are tracked in a min-heap ordered by absolute expiry;
    each operation first pops every heap item whose expiry is at or before now.

    Heap items carry the sequence number of the write that created them. Overwriting or
    deleting a key leaves a stale item behind; a stale item never removes a newer value,
    and stale items are dropped when they reach the head or on compaction.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_set: OnSet | None = None,
        on_delete: OnDelete | None = None,
    ):
        self._clock = clock
        self._on_set = on_set
        self._on_delete = on_delete
        # encoded key -> (value, expires_at | None, seq)
        self._entries: dict[str, tuple[Any, float | None, int]] = {}
        # (expires_at, seq, encoded key)
        self._expiry: list[tuple[float, int, str]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        """Caller holds the lock."""
        removed = 0
        while self._expiry and self._expiry[0][0] <= now:
            _, seq, mkey = heapq.heappop(self._expiry)
            entry = self._entries.get(mkey)
            if entry is not None and entry[2] == seq:
                del self._entries[mkey]
                removed += 1
        if removed:
            logger.debug("Swept %d expired entries", removed)

    def _compact(self) -> None:
        """Caller holds the lock. Drop stale heap items left by overwrites and deletes."""
        if len(self._expiry) <= 2 * len(self._entries) + _COMPACT_SLACK:
            return
        self._expiry = [
            (expires_at, seq, mkey)
            for mkey, (_, expires_at, seq) in self._entries.items()
            if expires_at is not None
        ]
        heapq.heapify(self._expiry)
        logger.debug("Compacted expiry heap to %d items", len(self._expiry))

    async def get(self, key: Key) -> Any | None:
        mkey = encode_key(key)
        with self._lock:
            self._sweep(self._clock())
            entry = self._entries.get(mkey)
        return entry[0] if entry is not None else None

    async def set(self, key: Key, value: Any, ttl: float | None = None) -> None:
        mkey = encode_key(key)
        with self._lock:
            now = self._clock()
            self._sweep(now)
            seq = next(self._seq)
            expires_at = now + ttl if ttl is not None and ttl > 0 else None
            self._entries[mkey] = (value, expires_at, seq)
            if expires_at is not None:
                heapq.heappush(self._expiry, (expires_at, seq, mkey))
            self._compact()
        await call_observer(self._on_set, key, value)

    async def delete(self, key: Key) -> None:
        mkey = encode_key(key)
        with self._lock:
            self._sweep(self._clock())
            entry = self._entries.pop(mkey, None)
            self._compact()
        await call_observer(self._on_delete, key, entry[0] if entry is not None else None)

    async def take(self, key: Key) -> Any | None:
        mkey = encode_key(key)
        with self._lock:
            self._sweep(self._clock())
            entry = self._entries.pop(mkey, None)
            self._compact()
        if entry is None:
            return None
        await call_observer(self._on_delete, key, entry[0])
        return entry[0]

    async def is_empty(self) -> bool:
        with self._lock:
            self._sweep(self._clock())
            return not self._entries

    def __len__(self) -> int:
        with self._lock:
            self._sweep(self._clock())
            return len(self._entries)
