"""
Maiat — Payment nonce store.

Each 402 challenge issues a random nonce bound to one action+resource and
valid for the deadline window. A proof must present an issued nonce; the
first successful claim consumes it and any later presentation is a replay.
"""
import secrets
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple


def new_nonce() -> str:
    """128 random bits as a decimal string (fits the uint256 nonce field)."""
    return str(secrets.randbits(128))


def binding(action: str, resource: str) -> str:
    return f"{action}|{resource}"


class NonceStore(ABC):

    @abstractmethod
    def issue(self, nonce: str, bound_to: str, ttl: int) -> None:
        ...

    @abstractmethod
    def peek(self, nonce: str) -> Optional[str]:
        """The binding of an issued, unconsumed nonce."""

    @abstractmethod
    def claim(self, nonce: str, ttl: int) -> bool:
        """Atomically consume an issued nonce. False if it was not available."""

    @abstractmethod
    def was_used(self, key: str) -> bool:
        ...

    @abstractmethod
    def mark_used(self, key: str, ttl: int) -> bool:
        """Record a one-shot key. False if it had been recorded before."""


class MemoryNonceStore(NonceStore):

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._issued: Dict[str, Tuple[str, float]] = {}
        self._used: Dict[str, float] = {}

    def _expire(self) -> None:
        now = self._clock()
        for nonce in [n for n, (_, expires) in self._issued.items() if expires <= now]:
            del self._issued[nonce]
        for key in [k for k, expires in self._used.items() if expires <= now]:
            del self._used[key]

    def issue(self, nonce: str, bound_to: str, ttl: int) -> None:
        with self._lock:
            self._expire()
            self._issued[nonce] = (bound_to, self._clock() + ttl)

    def peek(self, nonce: str) -> Optional[str]:
        with self._lock:
            self._expire()
            held = self._issued.get(nonce)
            return held[0] if held else None

    def claim(self, nonce: str, ttl: int) -> bool:
        with self._lock:
            self._expire()
            if self._issued.pop(nonce, None) is None:
                return False
            self._used[nonce] = self._clock() + ttl
            return True

    def was_used(self, key: str) -> bool:
        with self._lock:
            self._expire()
            return key in self._used

    def mark_used(self, key: str, ttl: int) -> bool:
        with self._lock:
            self._expire()
            if key in self._used:
                return False
            self._used[key] = self._clock() + ttl
            return True


class RedisNonceStore(NonceStore):

    def __init__(self, client, prefix: str = "x402"):
        self._redis = client
        self._prefix = prefix

    def _issued_key(self, nonce: str) -> str:
        return f"{self._prefix}:nonce:{nonce}"

    def _used_key(self, key: str) -> str:
        return f"{self._prefix}:used:{key}"

    def issue(self, nonce: str, bound_to: str, ttl: int) -> None:
        self._redis.set(self._issued_key(nonce), bound_to, ex=ttl)

    def peek(self, nonce: str) -> Optional[str]:
        return self._redis.get(self._issued_key(nonce))

    def claim(self, nonce: str, ttl: int) -> bool:
        if self._redis.getdel(self._issued_key(nonce)) is None:
            return False
        self._redis.set(self._used_key(nonce), "1", ex=ttl)
        return True

    def was_used(self, key: str) -> bool:
        return bool(self._redis.exists(self._used_key(key)))

    def mark_used(self, key: str, ttl: int) -> bool:
        return bool(self._redis.set(self._used_key(key), "1", nx=True, ex=ttl))
