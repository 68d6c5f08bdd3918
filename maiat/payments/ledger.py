"""
Maiat — Payment log sink.

Verified payments are appended here for observability. Newest first,
bounded; nothing reads it on the hot path.
"""
import json
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger()


class PaymentLogSink(ABC):

    @abstractmethod
    def append(self, entry: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        ...


class RingBufferPaymentLog(PaymentLogSink):

    def __init__(self, size: int = 100):
        self._lock = threading.Lock()
        self._entries = deque(maxlen=size)

    def append(self, entry: Dict[str, Any]) -> None:
        with self._lock:
            self._entries.appendleft(dict(entry))

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(e) for e in list(self._entries)[:limit]]


class RedisPaymentLog(PaymentLogSink):

    def __init__(self, client, size: int = 100, key: str = "x402:log"):
        self._redis = client
        self._size = size
        self._key = key

    def append(self, entry: Dict[str, Any]) -> None:
        pipe = self._redis.pipeline()
        pipe.lpush(self._key, json.dumps(entry, default=str))
        pipe.ltrim(self._key, 0, self._size - 1)
        pipe.execute()

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [json.loads(row) for row in self._redis.lrange(self._key, 0, limit - 1)]
