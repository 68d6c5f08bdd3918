"""
Maiat — Paid review verification.

Writes one on-chain attestation per review. Concurrent requests race for
a claim on the review; the winner writes and stores the hash, everyone
else waits for that hash and returns it.
"""
import asyncio
import hashlib
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from maiat.errors import ConfigurationMissing, UpstreamDegraded
from maiat.models import Review, utcnow

logger = structlog.get_logger()


def review_content_hash(review: Review) -> str:
    raw = f"{review.content}|{review.rating}|{review.reviewer_id}"
    return "0x" + hashlib.sha256(raw.encode()).hexdigest()


@dataclass(frozen=True)
class VerificationOutcome:
    review_id: str
    tx_hash: str
    already_verified: bool
    explorer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reviewId": self.review_id,
            "verified": True,
            "txHash": self.tx_hash,
            "alreadyVerified": self.already_verified,
            "explorer": self.explorer,
        }


class ReviewVerifier:

    def __init__(self, store, settlement=None, wait_seconds: float = 15.0,
                 poll_interval: float = 0.1, claim_ttl: float = 60.0):
        self.store = store
        self.settlement = settlement
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self.claim_ttl = claim_ttl

    def _outcome(self, review: Review, already_verified: bool) -> VerificationOutcome:
        return VerificationOutcome(
            review_id=review.id,
            tx_hash=review.on_chain_proof_hash,
            already_verified=already_verified,
            explorer=self.settlement.explorer_link(review.on_chain_proof_hash) if self.settlement else None,
        )

    @property
    def available(self) -> bool:
        return self.settlement is not None and self.settlement.can_write

    def ensure_available(self) -> None:
        if not self.available:
            raise ConfigurationMissing("On-chain verification is not available")

    async def verify(self, review_id: str) -> VerificationOutcome:
        review = await self.store.get_review(review_id)
        if review.is_verified:
            return self._outcome(review, already_verified=True)
        self.ensure_available()

        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.wait_seconds
        while True:
            if await self.store.claim_review_verification(review_id, token, self.claim_ttl):
                return await self._write(review, token)

            await asyncio.sleep(self.poll_interval)
            review = await self.store.get_review(review_id)
            if review.is_verified:
                return self._outcome(review, already_verified=True)
            if time.monotonic() >= deadline:
                logger.warning("review_verification_wait_expired", review_id=review_id)
                raise UpstreamDegraded("Verification still in progress, retry later")

    async def _write(self, review: Review, token: str) -> VerificationOutcome:
        try:
            tx_hash = await self.settlement.send_self_attestation({
                "type": "maiat-review-verification",
                "reviewId": review.id,
                "projectId": review.project_id,
                "reviewer": review.reviewer_id,
                "rating": review.rating,
                "contentHash": review_content_hash(review),
                "timestamp": utcnow().isoformat(),
            })
        except Exception:
            await self.store.release_review_claim(review.id, token)
            raise

        stored = await self.store.set_proof_hash_if_unset(review.id, tx_hash)
        logger.info("review_verified_onchain", review_id=review.id, tx_hash=stored.on_chain_proof_hash)
        return self._outcome(stored, already_verified=stored.on_chain_proof_hash != tx_hash)
