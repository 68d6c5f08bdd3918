from datetime import timedelta

import pytest

from maiat.evidence.community import CommunitySignalReader
from maiat.models import (
    CommunitySignal, Project, ProjectCategory, Recommendation, Review, ReviewStatus, RiskLevel, utcnow,
)
from maiat.trust.engine import (
    TrustScoreEngine, calculate_trust_score, community_trust_score, round_half_up,
    simple_trust_score,
)
from maiat.trust.tables import BASELINES, CHAIN_CANDIDATES
from tests.conftest import seed_reviews


def _review(i, rating=5, verified=False, status=ReviewStatus.ACTIVE, age_days=1, upvotes=0):
    return Review(
        id=f"r{i}", project_id="p", reviewer_id=f"u{i}", rating=rating, content="x",
        status=status, created_at=utcnow() - timedelta(days=age_days), upvotes=upvotes,
        on_chain_proof_hash="0xabc" if verified else None,
    )


class TestTables:

    def test_known_baselines(self):
        assert BASELINES.lookup("Uniswap", ProjectCategory.DEFI) == 90
        assert BASELINES.lookup("  Curve   Finance ", ProjectCategory.DEFI) == 84
        assert BASELINES.lookup("AIXBT", ProjectCategory.AGENT) == 82

    def test_unknown_defaults_depend_on_category(self):
        assert BASELINES.lookup("Brand New Dex", ProjectCategory.DEFI) == 60
        assert BASELINES.lookup("Brand New Bot", ProjectCategory.AGENT) == 50
        assert BASELINES.lookup("Corner Shop", ProjectCategory.MERCHANT) == 50

    def test_chain_candidates(self):
        assert CHAIN_CANDIDATES.for_category(ProjectCategory.AGENT) == ("base", "ethereum")
        assert CHAIN_CANDIDATES.for_category(ProjectCategory.DEFI) == ("ethereum", "base", "bsc")
        assert CHAIN_CANDIDATES.for_category(ProjectCategory.MERCHANT) == ("ethereum", "base", "bsc")

    def test_tables_are_immutable(self):
        with pytest.raises(TypeError):
            BASELINES.scores["uniswap"] = 1


class TestTrustScore:

    def test_uniswap_scenario(self):
        project = Project(id="p", slug="uniswap", name="Uniswap", category=ProjectCategory.DEFI,
                          average_rating=4.5, review_count=6)
        reviews = [_review(i, verified=i < 2) for i in range(6)]
        community = CommunitySignal(total_upvotes=10, total_reviews=6, avg_reviewer_reputation=200)

        b = calculate_trust_score(project, reviews, community)

        assert b.on_chain_activity == 37
        assert b.verified_reviews == 94
        assert b.community_trust == 25
        assert b.ai_quality == 90
        assert b.score == 57
        assert b.risk_level == RiskLevel.MEDIUM
        assert b.recommendation == Recommendation.CAUTION

    def test_zero_reviews_collapse_to_baseline(self):
        project = Project(id="p", slug="uniswap", name="Uniswap", category=ProjectCategory.DEFI)
        b = calculate_trust_score(project, [], CommunitySignal(total_upvotes=50, total_reviews=0))
        assert (b.on_chain_activity, b.verified_reviews, b.community_trust) == (0, 0, 0)
        assert b.score == round_half_up(0.1 * 90)

    def test_unknown_merchant_without_reviews(self):
        project = Project(id="p", slug="shop", name="Shop", category=ProjectCategory.MERCHANT)
        assert calculate_trust_score(project, [], CommunitySignal()).score == 5

    def test_score_is_bounded_under_extreme_inputs(self):
        project = Project(id="p", slug="x", name="Uniswap", category=ProjectCategory.DEFI,
                          average_rating=5.0, review_count=100)
        reviews = [_review(i, verified=True, upvotes=1000) for i in range(100)]
        community = CommunitySignal(total_upvotes=100000, total_reviews=100, avg_reviewer_reputation=10**6)
        b = calculate_trust_score(project, reviews, community)
        for value in (b.on_chain_activity, b.verified_reviews, b.community_trust, b.ai_quality, b.score):
            assert 0 <= value <= 100

    def test_old_and_flagged_reviews_weigh_less(self):
        project = Project(id="p", slug="x", name="X", category=ProjectCategory.AGENT,
                          average_rating=4.0, review_count=2)
        fresh = [_review(i) for i in range(4)]
        stale = [_review(i, age_days=90, status=ReviewStatus.FLAGGED if i % 2 else ReviewStatus.ACTIVE)
                 for i in range(4)]
        signal = CommunitySignal(total_reviews=4)
        assert (calculate_trust_score(project, fresh, signal).verified_reviews
                > calculate_trust_score(project, stale, signal).verified_reviews)

    def test_community_trust_caps(self):
        assert community_trust_score(CommunitySignal(total_upvotes=600, total_reviews=1,
                                                     avg_reviewer_reputation=5000)) == 100
        assert community_trust_score(CommunitySignal(total_upvotes=3, total_reviews=1)) == 30


class TestSimpleTrustScore:

    def test_no_reviews_returns_baseline(self):
        assert simple_trust_score("Aave", ProjectCategory.DEFI, 0.0, 0) == 88

    def test_weights_shift_toward_community(self):
        assert simple_trust_score("Uniswap", ProjectCategory.DEFI, 2.0, 3) == 70
        assert simple_trust_score("Uniswap", ProjectCategory.DEFI, 2.0, 10) == 55
        assert simple_trust_score("Uniswap", ProjectCategory.DEFI, 2.0, 25) == 45

    def test_simple_and_detailed_disagree(self):
        project = Project(id="p", slug="uniswap", name="Uniswap", category=ProjectCategory.DEFI,
                          average_rating=4.5, review_count=6)
        reviews = [_review(i, verified=i < 2) for i in range(6)]
        community = CommunitySignal(total_upvotes=10, total_reviews=6, avg_reviewer_reputation=200)
        detailed = calculate_trust_score(project, reviews, community).score
        simple = simple_trust_score(project.name, project.category, 4.5, 6)
        assert simple == 90
        assert detailed == 57
        assert simple != detailed


class TestTrustScoreEngine:

    @pytest.mark.asyncio
    async def test_compute_reads_through_store(self, store, uniswap):
        await seed_reviews(store, uniswap, [5, 5, 5, 4, 4, 4], verified=2,
                           upvotes=[2, 2, 2, 2, 1, 1], reputation=200)
        engine = TrustScoreEngine(store, CommunitySignalReader(store))

        breakdown = await engine.compute("uniswap")

        assert breakdown.score == 57
        project = await store.get_project("uniswap")
        assert project.average_rating == 4.5
        assert engine.simple(project) == 90
