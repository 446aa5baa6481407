import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from src.core.multisig.models import SafeInfo
from src.core.multisig.protocols import SafeReader

logger = logging.getLogger(__name__)

DEFAULT_SAFE_INFO_TTL = timedelta(seconds=300)


class SafeInfoCache:
    """TTL-bounded snapshot of the Safe's owners, threshold and nonce."""

    def __init__(
        self,
        *,
        reader: SafeReader,
        ttl: timedelta = DEFAULT_SAFE_INFO_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._reader = reader
        self._ttl = ttl
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._snapshot: Optional[SafeInfo] = None

    @property
    def reader(self) -> SafeReader:
        return self._reader

    def get(self, *, force_refresh: bool = False) -> SafeInfo:
        with self._lock:
            now = self._clock()
            if (
                not force_refresh
                and self._snapshot is not None
                and now - self._snapshot.fetched_at < self._ttl
            ):
                return self._snapshot
            snapshot = SafeInfo(
                address=self._reader.get_safe_address(),
                owners=list(self._reader.get_owners()),
                threshold=self._reader.get_threshold(),
                nonce=self._reader.get_nonce(),
                fetched_at=now,
            )
            if self._snapshot is not None and (
                self._snapshot.threshold != snapshot.threshold
                or sorted(o.lower() for o in self._snapshot.owners)
                != sorted(o.lower() for o in snapshot.owners)
            ):
                logger.info(
                    "Safe configuration changed",
                    extra={
                        "extra_fields": {
                            "safe_address": snapshot.address,
                            "previous_threshold": self._snapshot.threshold,
                            "threshold": snapshot.threshold,
                            "owner_count": len(snapshot.owners),
                        }
                    },
                )
            self._snapshot = snapshot
            return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None

    def is_owner(self, address: str, *, force_refresh: bool = True) -> bool:
        return self.get(force_refresh=force_refresh).has_owner(address)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
