# verifier_backend/storage.py
#
# In-memory state for the gateway:
#   - TTLCache     : thread-safe key/value store with per-entry expiry
#   - SessionStore : session id -> PendingSession | FailedSession | VerifiedSession
#   - QRCodeStore  : opaque id -> issued RequestMessage (namespaced "qr-code-")
#
# Both stores may share one TTLCache. Nothing is persisted: a restart drops
# every session, and an evicted session is indistinguishable from one that
# never existed.
#
# FastAPI runs sync endpoints on a thread pool, so every cache access goes
# through one lock. Last writer for a key wins.
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .errors import QRCodeNotFoundError
from .models import RequestMessage


class TTLCache:
    """
    Expiry counts from the last write; reads never extend it.
    Expired entries are hidden from get() immediately, but only swept from
    memory by the first write after each cleanup interval (default: the TTL).
    """

    def __init__(
        self,
        default_ttl: float,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: Optional[float] = None,
    ):
        self.default_ttl = default_ttl
        self.cleanup_interval = default_ttl if cleanup_interval is None else cleanup_interval
        self._clock = clock
        self._items: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            # a full sweep is O(entries) under the lock; keep it off the hot path
            if now - self._last_prune >= self.cleanup_interval:
                self._prune_locked(now)
            self._items[key] = (value, now + ttl)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() >= expires_at:
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def prune(self) -> int:
        with self._lock:
            return self._prune_locked(self._clock())

    def _prune_locked(self, now: float) -> int:
        self._last_prune = now
        dead = [k for k, (_, expires_at) in self._items.items() if now >= expires_at]
        for k in dead:
            del self._items[k]
        return len(dead)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


# -----------------------------------------------------------------------------
# Session values
# -----------------------------------------------------------------------------
class SessionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class NullifierArtifact:
    scope_id: int
    nullifier_session_id: Optional[str] = None
    nullifier: Optional[str] = None


@dataclass(frozen=True)
class PendingSession:
    request: RequestMessage

    @property
    def status(self) -> SessionStatus:
        return SessionStatus.PENDING


@dataclass(frozen=True)
class FailedSession:
    cause: str

    @property
    def status(self) -> SessionStatus:
        return SessionStatus.ERROR


@dataclass(frozen=True)
class VerifiedSession:
    jwz: str
    user_did: str
    scopes: List[NullifierArtifact] = field(default_factory=list)

    @property
    def status(self) -> SessionStatus:
        return SessionStatus.SUCCESS


SessionValue = Union[PendingSession, FailedSession, VerifiedSession]


class SessionStore:
    def __init__(self, cache: TTLCache):
        self.cache = cache

    def create(self, session_id: str, value: SessionValue) -> None:
        self.cache.set(str(session_id), value)

    def get(self, session_id: str) -> Optional[SessionValue]:
        value = self.cache.get(str(session_id))
        if isinstance(value, (PendingSession, FailedSession, VerifiedSession)):
            return value
        return None


class QRCodeStore:
    KEY_PREFIX = "qr-code-"

    def __init__(self, cache: TTLCache, ttl: float = 3600):
        self.cache = cache
        self.ttl = ttl

    def _key(self, qr_id: str) -> str:
        return self.KEY_PREFIX + str(qr_id)

    def save(self, message: RequestMessage) -> str:
        qr_id = str(uuid.uuid4())
        self.cache.set(self._key(qr_id), message, ttl=self.ttl)
        return qr_id

    def get(self, qr_id: str) -> RequestMessage:
        message = self.cache.get(self._key(qr_id))
        if not isinstance(message, RequestMessage):
            raise QRCodeNotFoundError(str(qr_id))
        return message
