"""
Maiat — Review Verification Pipeline

    submitted
      → usage checked      (only when usage proof is required; failure rejects)
      → persisted          (review row + aggregate recompute, atomic)
      → AI checked    ┐    (independent, run concurrently)
      → on-chain      ┘
      → scored
      → attested           (append-only log entry)
      → complete

Only validation and the usage-proof gate can reject a submission. Every
later stage is best-effort: it reports a StageResult and never aborts the
pipeline, so a persisted review stays persisted whatever happens after.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from maiat.errors import ConfigurationMissing, UsageProofRequired, ValidationError
from maiat.models import (
    MAX_REVIEW_LENGTH, AIVerdict, Project, Review, UsageProof, is_evm_address, utcnow,
)

logger = structlog.get_logger()

MAX_TITLE_LENGTH = 200
MAX_ADDRESS_LENGTH = 128


class CircuitBreaker:
    """
    Skips a failing backend for `recovery_timeout` seconds after
    `threshold` consecutive failures, then lets one call through.
    """
    def __init__(self, name: str, threshold: int = 3, recovery_timeout: int = 60):
        self.name = name
        self.threshold = threshold
        self.recovery_timeout = recovery_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "closed"

    def can_execute(self) -> bool:
        if self.state == "closed":
            return True
        if self.state == "open":
            if time.time() - self.last_failure_time > self.recovery_timeout:
                self.state = "half-open"
                return True
            return False
        return True

    def record_success(self):
        self.failures = 0
        self.state = "closed"

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.threshold:
            if self.state != "open":
                logger.warning("circuit_opened", stage=self.name, failures=self.failures)
            self.state = "open"


# =============================================
# RESULT TYPES
# =============================================

class PipelineState(str, Enum):
    SUBMITTED     = "submitted"
    USAGE_CHECKED = "usage_checked"
    PERSISTED     = "persisted"
    AI_CHECKED    = "ai_checked"
    SCORED        = "scored"
    ATTESTED      = "attested"
    COMPLETE      = "complete"


class StageStatus(str, Enum):
    OK      = "ok"
    FAILED  = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StageResult:
    stage: str
    status: StageStatus
    value: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.OK

    @classmethod
    def success(cls, stage: str, value: Any = None, duration_ms: float = 0.0) -> "StageResult":
        return cls(stage, StageStatus.OK, value=value, duration_ms=duration_ms)

    @classmethod
    def failure(cls, stage: str, error: str, duration_ms: float = 0.0) -> "StageResult":
        return cls(stage, StageStatus.FAILED, error=error, duration_ms=duration_ms)

    @classmethod
    def skipped(cls, stage: str, reason: str) -> "StageResult":
        return cls(stage, StageStatus.SKIPPED, error=reason)

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {
            "status": self.status.value,
            "value": value,
            "error": self.error,
            "durationMs": self.duration_ms,
        }


@dataclass
class ReviewSubmission:
    project_ref: str
    address: str
    rating: Any
    content: str
    title: str = ""


@dataclass
class PipelineResult:
    review: Review
    project: Project
    state: PipelineState = PipelineState.SUBMITTED
    history: List[PipelineState] = field(default_factory=list)
    stages: Dict[str, StageResult] = field(default_factory=dict)

    def advance(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)

    def to_dict(self) -> Dict[str, Any]:
        verdict = self.stages.get("ai_check")
        return {
            "review": self.review.to_dict(),
            "project": self.project.to_dict(),
            "state": self.state.value,
            "verified": bool(verdict and verdict.ok and verdict.value.display_verified),
            "stages": {name: result.to_dict() for name, result in self.stages.items()},
        }


def validate_submission(submission: ReviewSubmission) -> ReviewSubmission:
    """Normalize a submission or raise ValidationError."""
    address = (submission.address or "").strip()
    if not address or len(address) > MAX_ADDRESS_LENGTH:
        raise ValidationError("Invalid reviewer address", field="address")
    if is_evm_address(address):
        address = address.lower()

    rating = submission.rating
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5", field="rating")

    content = (submission.content or "").strip()
    if not content:
        raise ValidationError("Review content is required", field="content")
    if len(content) > MAX_REVIEW_LENGTH:
        raise ValidationError(f"Review content exceeds {MAX_REVIEW_LENGTH} characters", field="content")

    title = (submission.title or "").strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title exceeds {MAX_TITLE_LENGTH} characters", field="title")

    if not (submission.project_ref or "").strip():
        raise ValidationError("Project is required", field="project")

    return ReviewSubmission(
        project_ref=submission.project_ref.strip(),
        address=address,
        rating=rating,
        content=content,
        title=title,
    )


# =============================================
# PIPELINE
# =============================================

class ReviewPipeline:

    def __init__(
        self,
        store,
        engine,
        usage_probe=None,
        ai_checker=None,
        settlement=None,
        recorder=None,
        require_usage_proof: bool = False,
        usage_timeout: float = 10.0,
        stage_timeout: float = 15.0,
    ):
        self.store = store
        self.engine = engine
        self.usage_probe = usage_probe
        self.ai_checker = ai_checker
        self.settlement = settlement
        self.recorder = recorder
        self.require_usage_proof = require_usage_proof
        self.usage_timeout = usage_timeout
        self.stage_timeout = stage_timeout
        self._breakers = {
            "ai_check": CircuitBreaker("ai_check"),
            "onchain_attestation": CircuitBreaker("onchain_attestation"),
        }

    async def submit(self, submission: ReviewSubmission) -> PipelineResult:
        submission = validate_submission(submission)
        project = await self.store.get_project(submission.project_ref)

        usage = await self._check_usage(project, submission)

        reviewer = await self.store.get_or_create_reviewer(submission.address)
        review = await self.store.create_review(
            project.id, reviewer.id, submission.rating, submission.content, submission.title,
        )
        project = await self.store.get_project(project.id)
        logger.info("review_submitted",
                    review_id=review.id, project=project.slug, rating=review.rating)

        result = PipelineResult(review=review, project=project)
        result.advance(PipelineState.SUBMITTED)
        if usage is not None:
            result.stages["usage_proof"] = usage
            result.advance(PipelineState.USAGE_CHECKED)
        result.advance(PipelineState.PERSISTED)

        ai_result, chain_result = await asyncio.gather(
            self._guarded("ai_check", lambda: self._ai_check(review, project)),
            self._guarded("onchain_attestation", lambda: self._write_onchain(review, project, reviewer.address)),
        )
        result.stages["ai_check"] = ai_result
        result.stages["onchain_attestation"] = chain_result
        result.advance(PipelineState.AI_CHECKED)

        score_result = await self._guarded("score", lambda: self.engine.compute(project.id))
        result.stages["score"] = score_result
        result.advance(PipelineState.SCORED)

        verdict: Optional[AIVerdict] = ai_result.value if ai_result.ok else None
        result.stages["attestation"] = await self._guarded(
            "attestation",
            lambda: self._attest(review, project, reviewer.address,
                                 score_result.value if score_result.ok else None, verdict),
        )
        if result.stages["attestation"].ok:
            result.advance(PipelineState.ATTESTED)

        result.review = await self.store.get_review(review.id)
        result.advance(PipelineState.COMPLETE)
        return result

    async def _check_usage(self, project: Project, submission: ReviewSubmission) -> Optional[StageResult]:
        if not self.require_usage_proof or not is_evm_address(project.address):
            return None
        if self.usage_probe is None:
            logger.warning("usage_probe_not_configured", project=project.slug)
            return StageResult.skipped("usage_proof", "usage probe not configured")
        if not is_evm_address(submission.address):
            raise UsageProofRequired("A wallet address is required to prove usage")

        start = time.monotonic()
        proof: UsageProof = await self.usage_probe.verify_usage(
            submission.address, project.address, project.category,
            deadline=start + self.usage_timeout,
        )
        if not proof.verified:
            logger.info("usage_proof_rejected", project=project.slug)
            raise UsageProofRequired(proof.details)
        return StageResult.success("usage_proof", proof, round((time.monotonic() - start) * 1000, 2))

    async def _guarded(self, name: str, factory: Callable[[], Awaitable[Any]]) -> StageResult:
        """Run one stage; every failure becomes a StageResult."""
        breaker = self._breakers.get(name)
        if breaker and not breaker.can_execute():
            return StageResult.skipped(name, "circuit open")

        start = time.monotonic()
        try:
            value = await asyncio.wait_for(factory(), timeout=self.stage_timeout)
        except ConfigurationMissing as e:
            logger.info("pipeline_stage_skipped", stage=name, reason=e.message)
            return StageResult.skipped(name, e.message)
        except asyncio.TimeoutError:
            if breaker:
                breaker.record_failure()
            logger.warning("pipeline_stage_failed", stage=name, error="timeout")
            return StageResult.failure(name, "timeout", round((time.monotonic() - start) * 1000, 2))
        except Exception as e:
            if breaker:
                breaker.record_failure()
            logger.warning("pipeline_stage_failed", stage=name, error=str(e)[:200], type=type(e).__name__)
            return StageResult.failure(name, str(e)[:200], round((time.monotonic() - start) * 1000, 2))

        if breaker:
            breaker.record_success()
        return StageResult.success(name, value, round((time.monotonic() - start) * 1000, 2))

    async def _ai_check(self, review: Review, project: Project) -> AIVerdict:
        if self.ai_checker is None:
            raise ConfigurationMissing("AI checker not configured")
        verdict = await self.ai_checker.score_review(
            review.title, review.content, review.rating, project.category.value,
        )
        await self.store.record_ai_verdict(review.id, verdict.score, verdict.verdict.value)
        return verdict

    async def _write_onchain(self, review: Review, project: Project, reviewer_address: str) -> Optional[str]:
        if self.settlement is None or not self.settlement.can_write:
            raise ConfigurationMissing("Settlement signer not configured")
        tx_hash = await self.settlement.send_self_attestation({
            "type": "maiat-review-verification",
            "reviewId": review.id,
            "reviewer": reviewer_address,
            "project": project.name,
            "rating": review.rating,
            "timestamp": utcnow().isoformat(),
        })
        stored = await self.store.set_proof_hash_if_unset(review.id, tx_hash)
        return stored.on_chain_proof_hash

    async def _attest(self, review, project, reviewer_address, breakdown, verdict):
        if self.recorder is None:
            raise ConfigurationMissing("Attestation log not configured")
        return await self.recorder.record(review, project, reviewer_address, breakdown, verdict)
