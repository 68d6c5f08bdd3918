from contextlib import contextmanager
from unittest.mock import MagicMock

import pytest

from maiat.errors import NotFoundError
from maiat.models import ProjectCategory, ReviewStatus
from maiat.store.graph import GraphReviewStore, _review_from_node


def session_factory(session):
    @contextmanager
    def factory():
        yield session
    return factory


class TestMemoryStore:

    @pytest.mark.asyncio
    async def test_project_lookup_by_id_slug_and_name(self, store, coffee):
        await store.add_project(coffee)
        assert (await store.get_project("jerrys-coffee")).id == coffee.id
        assert (await store.get_project("JERRY'S COFFEE")).id == coffee.id
        with pytest.raises(NotFoundError):
            await store.get_project("nope")

    @pytest.mark.asyncio
    async def test_reviewer_addresses_are_case_insensitive(self, store):
        a = await store.get_or_create_reviewer("0x" + "AB" * 20)
        b = await store.get_or_create_reviewer("0x" + "ab" * 20)
        assert a.id == b.id

    @pytest.mark.asyncio
    async def test_proof_hash_is_set_once(self, store, coffee):
        await store.add_project(coffee)
        review = await store.create_review(coffee.id, "u1", 4, "good")

        assert await store.claim_review_verification(review.id, "t1") is True
        assert await store.claim_review_verification(review.id, "t2") is False
        first = await store.set_proof_hash_if_unset(review.id, "0xfirst")
        second = await store.set_proof_hash_if_unset(review.id, "0xsecond")

        assert first.on_chain_proof_hash == "0xfirst"
        assert second.on_chain_proof_hash == "0xfirst"
        assert await store.claim_review_verification(review.id, "t3") is False

    @pytest.mark.asyncio
    async def test_stale_claim_can_be_taken_over(self, store, coffee):
        await store.add_project(coffee)
        review = await store.create_review(coffee.id, "u1", 4, "good")
        await store.claim_review_verification(review.id, "t1")
        assert await store.claim_review_verification(review.id, "t2", stale_after=0) is True


class TestGraphStore:

    @pytest.mark.asyncio
    async def test_missing_project_raises(self):
        session = MagicMock()
        session.run.return_value.single.return_value = None

        with pytest.raises(NotFoundError):
            await GraphReviewStore(session_factory(session)).get_project("ghost")

        query, = session.run.call_args[0]
        assert "toLower(p.name)" in query
        assert session.run.call_args[1] == {"ref": "ghost", "slug": "ghost"}

    @pytest.mark.asyncio
    async def test_project_mapping(self):
        session = MagicMock()
        session.run.return_value.single.return_value = {"p": {
            "id": "p1", "slug": "aixbt", "name": "AIXBT", "category": "m/ai-agents",
            "averageRating": 4.25, "reviewCount": 4,
        }}

        project = await GraphReviewStore(session_factory(session)).get_project("aixbt")

        assert project.category == ProjectCategory.AGENT
        assert project.average_rating == 4.25
        assert project.review_count == 4

    @pytest.mark.asyncio
    async def test_claim_uses_conditional_update(self):
        session = MagicMock()
        session.run.return_value.single.return_value = None

        claimed = await GraphReviewStore(session_factory(session)).claim_review_verification("r1", "tok")

        assert claimed is False
        query = session.run.call_args[0][0]
        assert "r.onChainProofHash IS NULL" in query

    def test_review_mapping(self):
        review = _review_from_node({
            "id": "r1", "projectId": "p1", "reviewerId": "u1", "rating": 4, "content": "ok",
            "status": "flagged", "createdAt": "2026-01-01T00:00:00+00:00",
            "onChainProofHash": "0xabc",
        })
        assert review.status == ReviewStatus.FLAGGED
        assert review.is_verified
        assert review.created_at.year == 2026

    def test_pending_review_mapping(self):
        review = _review_from_node({
            "id": "r2", "projectId": "p1", "reviewerId": "u1", "rating": 2, "content": "queued",
            "status": "pending", "createdAt": "2026-01-01T00:00:00+00:00",
        })
        assert review.status == ReviewStatus.PENDING
        assert not review.is_active
