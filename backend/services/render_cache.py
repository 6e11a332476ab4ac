"""
In-process result cache keyed by a request fingerprint.

Entries are immutable; the map is guarded by a lock that is only ever held
for dictionary operations. Expired entries are dropped lazily on ``get`` and
by a periodic sweeper thread started at construction and stopped by
``close()``.
"""
from __future__ import annotations

import hashlib
import json
import logging
import math
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from domain.errors import CacheUnavailable
from domain.models import CacheEntry, Field, OutputContainer, QualityTier
from services.compositor import DESIGN_FIELDS_KEY
from settings import settings

logger = logging.getLogger(__name__)

EVICT_FRACTION = 0.2
PRESSURE_FRACTION = 0.9


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _canonical_field(field: Field) -> dict:
    return {
        "id": field.id,
        "name": field.name,
        "position": [field.position.x_pct, field.position.y_pct],
        "kind": field.kind.value,
        "depth": field.depth,
    }


def _canonical_values(values: Mapping[str, Any]) -> dict:
    out = {}
    for key, value in values.items():
        if key == DESIGN_FIELDS_KEY:
            continue
        if isinstance(value, (str, int, float, bool)):
            out[key] = value
        elif isinstance(value, bytes):
            out[key] = {"sha256": _digest(value)}
        # objects / arrays are left out of the key
    return out


def compute_fingerprint(
    template: Any,
    fields: Iterable[Field],
    values: Mapping[str, Any],
    quality: QualityTier,
    width: int,
    height: int,
    container: Optional[OutputContainer] = None,
) -> str:
    """Stable hash identifying a renderable request."""
    if isinstance(template, bytes):
        template_ref: Any = {"sha256": _digest(template)}
    else:
        template_ref = str(template)
    payload = {
        "template": template_ref,
        "fields": [_canonical_field(f) for f in fields],
        "quality": QualityTier(quality).value,
        "width": width,
        "height": height,
        "container": container.value if container else None,
        "values": _canonical_values(values),
    }
    return _digest(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8"))


class RenderCache:
    def __init__(
        self,
        capacity: Optional[int] = None,
        ttl_seconds: Optional[float] = None,
        sweep_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.capacity = max(1, capacity if capacity is not None else settings.RENDER_CACHE_CAPACITY)
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.RENDER_CACHE_TTL_SECONDS
        interval = sweep_interval_seconds if sweep_interval_seconds is not None else settings.RENDER_CACHE_SWEEP_SECONDS
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._closed = False
        self._sweeper: Optional[threading.Thread] = None
        if interval and interval > 0:
            self._sweeper = threading.Thread(
                target=self._sweep_loop, args=(interval,), name="render-cache-sweeper", daemon=True
            )
            self._sweeper.start()

    def __enter__(self) -> "RenderCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _check_open(self) -> None:
        if self._closed:
            raise CacheUnavailable("render cache is closed")

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        self._check_open()
        now = self._clock()
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if self._expired(entry, now):
                del self._entries[fingerprint]
                return None
            return entry

    def put(
        self,
        fingerprint: str,
        data: bytes,
        path: Optional[Path] = None,
        container: Optional[OutputContainer] = None,
        width: int = 0,
        height: int = 0,
    ) -> CacheEntry:
        self._check_open()
        now = self._clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            encoded_bytes=bytes(data),
            created_at=now,
            stored_path=path,
            container=container,
            width=width,
            height=height,
        )
        with self._lock:
            self._entries.pop(fingerprint, None)
            if len(self._entries) >= self.capacity:
                self._relieve_pressure(now)
            self._entries[fingerprint] = entry
        return entry

    def _relieve_pressure(self, now: float) -> None:
        # caller holds the lock
        for key in [k for k, e in self._entries.items() if self._expired(e, now)]:
            del self._entries[key]
        if len(self._entries) >= PRESSURE_FRACTION * self.capacity:
            count = max(1, math.floor(EVICT_FRACTION * self.capacity))
            # insertion order is creation order: the front holds the oldest
            for key in list(self._entries)[:count]:
                del self._entries[key]
            logger.info("[cache] evicted %d oldest entries", count)

    def sweep(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("[cache] swept %d expired entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.sweep()
            except Exception:
                logger.warning("[cache] sweep failed", exc_info=True)

    def close(self) -> None:
        """Stop the sweeper and refuse further use."""
        self._closed = True
        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=5)
        self.clear()
