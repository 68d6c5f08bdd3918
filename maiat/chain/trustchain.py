"""
Maiat — Attestation Log

Every attested review is an entry in an append-only, hash-chained log
segment (one segment per topic id).

    Entry 1              Entry 2              Entry 3
    ┌──────────────┐     ┌──────────────┐     ┌──────────────┐
    │ segment_id   │     │ segment_id   │     │ segment_id   │
    │ sequence: 1  │     │ sequence: 2  │     │ sequence: 3  │
    │ message: {}  │     │ message: {}  │     │ message: {}  │
    │ prev: 0x00   │──→  │ prev: 0xA3.. │──→  │ prev: 0xF1.. │
    │ hash: 0xA3.. │     │ hash: 0xF1.. │     │ hash: 0x7B.. │
    └──────────────┘     └──────────────┘     └──────────────┘

To verify: recompute each hash and confirm it matches the next entry's
prev_hash. If any message was altered, the chain breaks.

A review is attested at most once per segment; appending the same review
again returns the original entry.
"""
import asyncio
import hashlib
import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from maiat.errors import ConfigurationMissing
from maiat.models import AIVerdict, AttestationRecord, Project, Review, TrustScoreBreakdown

logger = structlog.get_logger()

GENESIS_HASH = "0" * 64
ATTESTATION_VERSION = "1.0"


@dataclass
class Entry:
    """A sealed log entry. The hash covers content and the previous hash."""
    segment_id: str
    sequence_number: int
    review_id: str
    message: Dict[str, Any] = field(default_factory=dict)
    recorded_at: str = ""
    prev_hash: str = GENESIS_HASH
    entry_hash: str = ""

    def __post_init__(self):
        if not self.recorded_at:
            self.recorded_at = datetime.now(timezone.utc).isoformat()
        if not self.entry_hash:
            self.entry_hash = self.compute_hash()

    def compute_hash(self) -> str:
        content = json.dumps({
            "segment_id": self.segment_id,
            "sequence_number": self.sequence_number,
            "review_id": self.review_id,
            "recorded_at": self.recorded_at,
            "message": self.message,
            "prev_hash": self.prev_hash,
        }, sort_keys=True, default=str)
        return hashlib.sha256(content.encode()).hexdigest()

    def verify(self) -> bool:
        return self.entry_hash == self.compute_hash()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def verify_entries(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Recompute hashes and linkage over entries in sequence order."""
    if not entries:
        return {"verified": True, "entries_checked": 0, "breaks": [], "head": ""}

    entries = sorted(entries, key=lambda e: e.get("sequence_number", 0))
    breaks = []
    for i, data in enumerate(entries):
        entry = Entry(**{k: v for k, v in data.items() if k in Entry.__dataclass_fields__})
        recomputed = entry.compute_hash()
        if recomputed != data.get("entry_hash"):
            breaks.append({
                "sequence_number": data.get("sequence_number"),
                "expected_hash": recomputed,
                "stored_hash": data.get("entry_hash"),
                "type": "hash_mismatch",
            })
        if i > 0:
            expected_prev = entries[i - 1].get("entry_hash")
            if expected_prev != data.get("prev_hash"):
                breaks.append({
                    "sequence_number": data.get("sequence_number"),
                    "expected_prev": expected_prev,
                    "actual_prev": data.get("prev_hash"),
                    "type": "chain_break",
                })

    return {
        "verified": not breaks,
        "entries_checked": len(entries),
        "breaks": breaks,
        "head": entries[-1].get("entry_hash", ""),
    }


# ── Log storage ───────────────────────────────────

class AttestationLog(ABC):

    @abstractmethod
    def append(self, segment_id: str, review_id: str, message: Dict[str, Any]) -> Entry:
        ...

    @abstractmethod
    def history(self, segment_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        ...

    def verify_segment(self, segment_id: str, limit: int = 1000) -> Dict[str, Any]:
        return verify_entries(self.history(segment_id, limit))


class MemoryAttestationLog(AttestationLog):

    def __init__(self):
        self._lock = threading.Lock()
        self._segments: Dict[str, List[Entry]] = {}
        self._by_review: Dict[str, Dict[str, Entry]] = {}

    def append(self, segment_id: str, review_id: str, message: Dict[str, Any]) -> Entry:
        with self._lock:
            index = self._by_review.setdefault(segment_id, {})
            if review_id in index:
                return index[review_id]
            entries = self._segments.setdefault(segment_id, [])
            entry = Entry(
                segment_id=segment_id,
                sequence_number=len(entries) + 1,
                review_id=review_id,
                message=message,
                prev_hash=entries[-1].entry_hash if entries else GENESIS_HASH,
            )
            entries.append(entry)
            index[review_id] = entry
            return entry

    def history(self, segment_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            entries = self._segments.get(segment_id, [])
            return [e.to_dict() for e in reversed(entries[-limit:])]


class RedisAttestationLog(AttestationLog):
    """
    Head (hash + sequence) in a hash, entries in a list, review index in a
    hash. Appends run in a WATCHed transaction on the head key.
    """

    def __init__(self, client):
        self._redis = client

    def append(self, segment_id: str, review_id: str, message: Dict[str, Any]) -> Entry:
        head_key = f"attest:{segment_id}:head"
        index_key = f"attest:{segment_id}:reviews"
        list_key = f"attest:{segment_id}:entries"

        def _append(pipe):
            existing = pipe.hget(index_key, review_id)
            if existing:
                return Entry(**json.loads(existing))
            head = pipe.hgetall(head_key)
            entry = Entry(
                segment_id=segment_id,
                sequence_number=int(head.get("sequence", 0)) + 1,
                review_id=review_id,
                message=message,
                prev_hash=head.get("hash", GENESIS_HASH),
            )
            encoded = json.dumps(entry.to_dict(), default=str)
            pipe.multi()
            pipe.hset(head_key, mapping={
                "hash": entry.entry_hash,
                "sequence": entry.sequence_number,
                "updated_at": entry.recorded_at,
            })
            pipe.rpush(list_key, encoded)
            pipe.hset(index_key, review_id, encoded)
            return entry

        entry = self._redis.transaction(_append, head_key, index_key, value_from_callable=True)
        logger.debug("attestation_appended",
                     segment=segment_id,
                     sequence=entry.sequence_number,
                     hash=entry.entry_hash[:16])
        return entry

    def history(self, segment_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        rows = self._redis.lrange(f"attest:{segment_id}:entries", -limit, -1)
        return [json.loads(r) for r in reversed(rows)]


# ── Recorder ──────────────────────────────────────

def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


class AttestationRecorder:
    """Writes one attestation entry per review into the configured segment."""

    def __init__(self, log: AttestationLog, segment_id: Optional[str]):
        self.log = log
        self.segment_id = segment_id or ""

    @property
    def enabled(self) -> bool:
        return bool(self.segment_id)

    def build_message(
        self,
        review: Review,
        project: Project,
        reviewer_address: str,
        breakdown: Optional[TrustScoreBreakdown],
        verdict: Optional[AIVerdict],
    ) -> Dict[str, Any]:
        return {
            "version": ATTESTATION_VERSION,
            "type": "maiat-review-attestation",
            "reviewId": review.id,
            "projectId": project.id,
            "projectName": project.name,
            "projectSlug": project.slug,
            "reviewer": reviewer_address,
            "rating": review.rating,
            "contentHash": content_hash(review.content),
            "trustScore": breakdown.score if breakdown else None,
            "aiScore": verdict.score if verdict else None,
            "verdict": verdict.verdict.value if verdict else "pending",
            "verificationStatus": "verified" if verdict and verdict.display_verified else "pending",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def record(
        self,
        review: Review,
        project: Project,
        reviewer_address: str,
        breakdown: Optional[TrustScoreBreakdown] = None,
        verdict: Optional[AIVerdict] = None,
    ) -> AttestationRecord:
        if not self.enabled:
            raise ConfigurationMissing("Attestation topic is not configured")

        message = self.build_message(review, project, reviewer_address, breakdown, verdict)
        entry = await asyncio.to_thread(self.log.append, self.segment_id, review.id, message)
        logger.info("review_attested",
                    review_id=review.id,
                    segment=entry.segment_id,
                    sequence=entry.sequence_number)
        return AttestationRecord(
            segment_id=entry.segment_id,
            sequence_number=entry.sequence_number,
            review_id=review.id,
            entry_hash=entry.entry_hash,
            payload=entry.message,
        )
