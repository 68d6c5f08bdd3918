"""
Maiat — Domain model.

Projects, reviewers and reviews as the store hands them out, plus the
value objects that flow between evidence probes, the scoring engine and
the review pipeline.
"""
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
MAX_REVIEW_LENGTH = 5000


def is_evm_address(value: Optional[str]) -> bool:
    return bool(value) and bool(EVM_ADDRESS_RE.match(value))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================
# ENUMS
# =============================================

class ProjectCategory(str, Enum):
    AGENT    = "agent"
    DEFI     = "defi-protocol"
    MERCHANT = "merchant"

    @classmethod
    def parse(cls, value: str) -> "ProjectCategory":
        """Accepts canonical values and the legacy forum-style aliases."""
        key = (value or "").strip().lower()
        if key.startswith("m/"):
            key = key[2:]
        aliases = {
            "ai-agents": cls.AGENT,
            "ai-agent": cls.AGENT,
            "defi": cls.DEFI,
            "coffee": cls.MERCHANT,
        }
        if key in aliases:
            return aliases[key]
        return cls(key)


class ReviewStatus(str, Enum):
    ACTIVE  = "active"
    FLAGGED = "flagged"
    PENDING = "pending"


class RiskLevel(str, Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


class Recommendation(str, Enum):
    SAFE    = "SAFE"
    CAUTION = "CAUTION"
    AVOID   = "AVOID"


class Verdict(str, Enum):
    AUTHENTIC  = "authentic"
    SUSPICIOUS = "suspicious"
    SPAM       = "spam"


# =============================================
# ENTITIES
# =============================================

@dataclass
class Project:
    id: str
    slug: str
    name: str
    category: ProjectCategory
    address: Optional[str] = None
    description: str = ""
    average_rating: float = 0.0
    review_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "category": self.category.value,
            "address": self.address,
            "description": self.description,
            "averageRating": round(self.average_rating, 2),
            "reviewCount": self.review_count,
        }


@dataclass
class Reviewer:
    id: str
    address: str
    reputation_score: int = 0
    display_name: Optional[str] = None


@dataclass
class Review:
    id: str
    project_id: str
    reviewer_id: str
    rating: int
    content: str
    title: str = ""
    status: ReviewStatus = ReviewStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    upvotes: int = 0
    downvotes: int = 0
    on_chain_proof_hash: Optional[str] = None
    ai_score: Optional[int] = None
    ai_verdict: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return bool(self.on_chain_proof_hash)

    @property
    def is_active(self) -> bool:
        return self.status == ReviewStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "reviewerId": self.reviewer_id,
            "rating": self.rating,
            "title": self.title,
            "content": self.content,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "upvotes": self.upvotes,
            "downvotes": self.downvotes,
            "txHash": self.on_chain_proof_hash,
            "aiScore": self.ai_score,
            "aiVerdict": self.ai_verdict,
        }


# =============================================
# VALUE OBJECTS
# =============================================

@dataclass(frozen=True)
class TrustScoreBreakdown:
    project_id: str
    on_chain_activity: int
    verified_reviews: int
    community_trust: int
    ai_quality: int
    score: int

    @property
    def risk_level(self) -> RiskLevel:
        if self.score >= 80:
            return RiskLevel.LOW
        if self.score >= 50:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

    @property
    def recommendation(self) -> Recommendation:
        return {
            RiskLevel.LOW: Recommendation.SAFE,
            RiskLevel.MEDIUM: Recommendation.CAUTION,
            RiskLevel.HIGH: Recommendation.AVOID,
        }[self.risk_level]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.score,
            "riskLevel": self.risk_level.value,
            "recommendation": self.recommendation.value,
            "breakdown": {
                "onChainActivity": self.on_chain_activity,
                "verifiedReviews": self.verified_reviews,
                "communityTrust": self.community_trust,
                "aiQuality": self.ai_quality,
            },
        }


@dataclass(frozen=True)
class CommunitySignal:
    total_upvotes: int = 0
    total_reviews: int = 0
    avg_reviewer_reputation: float = 0.0


@dataclass(frozen=True)
class UsageProof:
    verified: bool
    details: str
    chain: Optional[str] = None
    tx_hash: Optional[str] = None
    timestamp: Optional[int] = None  # unix milliseconds
    interaction_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "chain": self.chain,
            "txHash": self.tx_hash,
            "timestamp": self.timestamp,
            "interactionCount": self.interaction_count,
            "details": self.details,
        }


@dataclass(frozen=True)
class AIVerdict:
    score: int
    verdict: Verdict
    reasoning: str
    fallback: bool = False

    @property
    def display_verified(self) -> bool:
        return self.score >= 60

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "verdict": self.verdict.value,
            "reasoning": self.reasoning,
            "fallback": self.fallback,
        }


@dataclass(frozen=True)
class AttestationRecord:
    segment_id: str
    sequence_number: int
    review_id: str
    entry_hash: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
