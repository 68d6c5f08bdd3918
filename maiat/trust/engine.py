"""
Maiat — Trust Scoring Engine

Trust Score = weighted blend of four sub-scores, each 0-100:

    On-chain activity  (weight 40%): share of reviews backed by an on-chain proof
    Verified reviews   (weight 30%): rating quality, recency and moderation health
    Community trust    (weight 20%): upvote density and reviewer reputation
    AI quality         (weight 10%): static baseline per known project

Risk bands:
    80-100  low     SAFE
    50-79   medium  CAUTION
    0-49    high    AVOID

SimpleTrustScore is the cheap list-view variant: the AI baseline blended
with the raw average rating, shifting weight toward the community as
reviews accumulate.
"""
import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

import structlog

from maiat.models import (
    CommunitySignal, Project, ProjectCategory, Review, TrustScoreBreakdown, utcnow,
)
from maiat.trust.tables import BASELINES, BaselineTable

logger = structlog.get_logger()

WEIGHTS = {
    "on_chain_activity": 0.4,
    "verified_reviews": 0.3,
    "community_trust": 0.2,
    "ai_quality": 0.1,
}

RECENCY_WINDOW = timedelta(days=30)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


# =============================================
# SUB-SCORES
# =============================================

def on_chain_activity_score(reviews: List[Review]) -> int:
    total = len(reviews)
    if total == 0:
        return 0
    verified = sum(1 for r in reviews if r.is_verified)
    verification_rate = 100.0 * verified / total
    return round_half_up(_clamp(verification_rate + min(20, verified * 2)))


def verified_reviews_score(reviews: List[Review], average_rating: float,
                           now: datetime) -> int:
    total = len(reviews)
    if total == 0:
        return 0
    rating_score = 100.0 * average_rating / 5
    cutoff = now - RECENCY_WINDOW
    recent_fraction = sum(1 for r in reviews if r.created_at >= cutoff) / total
    active_rate = 100.0 * sum(1 for r in reviews if r.is_active) / total
    value = rating_score * 0.6 + min(20.0, 20.0 * recent_fraction) + active_rate * 0.2
    return round_half_up(_clamp(value))


def community_trust_score(signal: CommunitySignal) -> int:
    if signal.total_reviews == 0:
        return 0
    upvote_part = min(60.0, 10.0 * signal.total_upvotes / signal.total_reviews)
    reputation_part = min(40.0, 40.0 * signal.avg_reviewer_reputation / 1000)
    return round_half_up(_clamp(upvote_part + reputation_part))


# =============================================
# COMPOSITE SCORES
# =============================================

def calculate_trust_score(
    project: Project,
    reviews: Iterable[Review],
    community: CommunitySignal,
    baselines: BaselineTable = BASELINES,
    now: Optional[datetime] = None,
) -> TrustScoreBreakdown:
    """
    Weighted trust score for one project.

    With zero reviews the three review-derived sub-scores are 0 and the
    score collapses to the weighted AI baseline.
    """
    reviews = list(reviews)
    now = now or utcnow()

    on_chain = on_chain_activity_score(reviews)
    verified = verified_reviews_score(reviews, project.average_rating, now)
    community_score = community_trust_score(community) if reviews else 0
    ai_quality = round_half_up(_clamp(baselines.lookup(project.name, project.category)))

    score = round_half_up(_clamp(
        on_chain * WEIGHTS["on_chain_activity"]
        + verified * WEIGHTS["verified_reviews"]
        + community_score * WEIGHTS["community_trust"]
        + ai_quality * WEIGHTS["ai_quality"]
    ))

    return TrustScoreBreakdown(
        project_id=project.id,
        on_chain_activity=on_chain,
        verified_reviews=verified,
        community_trust=community_score,
        ai_quality=ai_quality,
        score=score,
    )


def simple_trust_score(
    name: str,
    category: ProjectCategory,
    average_rating: float,
    review_count: int,
    baselines: BaselineTable = BASELINES,
) -> int:
    """Baseline blended with the average rating, weighted by review volume."""
    baseline = baselines.lookup(name, category)
    if review_count <= 0:
        return baseline
    community = round_half_up(average_rating * 20)
    if review_count <= 5:
        ai_weight, community_weight = 60, 40
    elif review_count <= 20:
        ai_weight, community_weight = 30, 70
    else:
        ai_weight, community_weight = 10, 90
    return round_half_up((baseline * ai_weight + community * community_weight) / 100)


class TrustScoreEngine:
    """Reads a project's review facts through the store and scores them."""

    def __init__(self, store, community_reader, baselines: BaselineTable = BASELINES):
        self.store = store
        self.community_reader = community_reader
        self.baselines = baselines

    async def compute(self, project_ref: str, now: Optional[datetime] = None) -> TrustScoreBreakdown:
        project = await self.store.get_project(project_ref)
        reviews = await self.store.list_project_reviews(project.id)
        community = await self.community_reader.read(project.id, reviews=reviews)
        breakdown = calculate_trust_score(project, reviews, community, self.baselines, now)
        logger.info("score_computed",
                    project=project.slug,
                    score=breakdown.score,
                    reviews=len(reviews))
        return breakdown

    def simple(self, project: Project) -> int:
        return simple_trust_score(
            project.name, project.category,
            project.average_rating, project.review_count, self.baselines,
        )
