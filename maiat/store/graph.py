"""
Maiat — Neo4j-backed review store.

The sync driver runs in a worker thread per call. Creation and aggregate
recompute share one write transaction; the proof hash update is guarded
by ``WHERE r.onChainProofHash IS NULL`` so concurrent writers cannot
overwrite each other.
"""
import asyncio
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from maiat.db.neo4j import get_session
from maiat.errors import NotFoundError
from maiat.models import (
    Project, ProjectCategory, Review, ReviewStatus, Reviewer, utcnow,
)
from maiat.store.base import ReviewStore, resolve_slug

logger = structlog.get_logger()


# =============================================
# CYPHER
# =============================================

FIND_PROJECT = """
MATCH (p:Project)
WHERE p.id = $ref OR p.slug = $slug OR toLower(p.name) = $slug
RETURN p
ORDER BY CASE WHEN p.id = $ref THEN 0 WHEN p.slug = $slug THEN 1 ELSE 2 END
LIMIT 1
"""

RECOMPUTE_AGGREGATES = """
MATCH (p:Project {id: $project_id})
OPTIONAL MATCH (r:Review {projectId: $project_id, status: 'active'})
WITH p, avg(r.rating) AS avg_rating, count(r) AS n
SET p.averageRating = coalesce(avg_rating, 0.0), p.reviewCount = n
RETURN p
"""

CREATE_REVIEW = """
MATCH (p:Project {id: $project_id}), (u:Reviewer {id: $reviewer_id})
CREATE (u)-[:WROTE]->(r:Review {
    id: $id, projectId: $project_id, reviewerId: $reviewer_id,
    rating: $rating, content: $content, title: $title, status: 'active',
    createdAt: $created_at, upvotes: 0, downvotes: 0
})-[:ABOUT]->(p)
RETURN r
"""

CLAIM_VERIFICATION = """
MATCH (r:Review {id: $id})
WHERE r.onChainProofHash IS NULL
  AND (r.verificationClaim IS NULL OR r.verificationClaim = $token
       OR r.verificationClaimedAt < $stale_before)
SET r.verificationClaim = $token, r.verificationClaimedAt = $now
RETURN r.id AS id
"""

SET_PROOF_IF_UNSET = """
MATCH (r:Review {id: $id})
SET r.onChainProofHash = coalesce(r.onChainProofHash, $tx_hash),
    r.verificationClaim = null, r.verificationClaimedAt = null
RETURN r
"""


def _project_from_node(node: Dict[str, Any]) -> Project:
    return Project(
        id=node["id"],
        slug=node.get("slug", ""),
        name=node.get("name", ""),
        category=ProjectCategory.parse(node.get("category", "merchant")),
        address=node.get("address"),
        description=node.get("description", ""),
        average_rating=float(node.get("averageRating") or 0.0),
        review_count=int(node.get("reviewCount") or 0),
    )


def _review_from_node(node: Dict[str, Any]) -> Review:
    created = node.get("createdAt")
    return Review(
        id=node["id"],
        project_id=node["projectId"],
        reviewer_id=node["reviewerId"],
        rating=int(node["rating"]),
        content=node.get("content", ""),
        title=node.get("title", ""),
        status=ReviewStatus(node.get("status", "active")),
        created_at=datetime.fromisoformat(created) if created else utcnow(),
        upvotes=int(node.get("upvotes") or 0),
        downvotes=int(node.get("downvotes") or 0),
        on_chain_proof_hash=node.get("onChainProofHash"),
        ai_score=node.get("aiScore"),
        ai_verdict=node.get("aiVerdict"),
    )


def _reviewer_from_node(node: Dict[str, Any]) -> Reviewer:
    return Reviewer(
        id=node["id"],
        address=node["address"],
        reputation_score=int(node.get("reputationScore") or 0),
        display_name=node.get("displayName"),
    )


class GraphReviewStore(ReviewStore):

    def __init__(self, session_factory: Callable = get_session):
        self._session_factory = session_factory

    async def _run(self, fn: Callable, *args):
        return await asyncio.to_thread(fn, *args)

    def _single(self, query: str, **params) -> Optional[Dict[str, Any]]:
        with self._session_factory() as session:
            record = session.run(query, **params).single()
            return dict(record) if record else None

    def _many(self, query: str, **params) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            return [dict(record) for record in session.run(query, **params)]

    # --- projects ---

    async def get_project(self, ref: str) -> Project:
        row = await self._run(lambda: self._single(FIND_PROJECT, ref=ref, slug=resolve_slug(ref)))
        if not row:
            raise NotFoundError(f"Project not found: {ref}")
        return _project_from_node(dict(row["p"]))

    async def list_projects(self) -> List[Project]:
        rows = await self._run(lambda: self._many("MATCH (p:Project) RETURN p ORDER BY p.name"))
        return [_project_from_node(dict(r["p"])) for r in rows]

    async def add_project(self, project: Project) -> Project:
        query = """
        MERGE (p:Project {id: $id})
        SET p.slug = $slug, p.name = $name, p.category = $category,
            p.address = $address, p.description = $description,
            p.averageRating = coalesce(p.averageRating, 0.0),
            p.reviewCount = coalesce(p.reviewCount, 0)
        RETURN p
        """
        row = await self._run(lambda: self._single(
            query, id=project.id, slug=project.slug, name=project.name,
            category=project.category.value, address=project.address,
            description=project.description,
        ))
        return _project_from_node(dict(row["p"]))

    async def recompute_project_aggregates(self, project_id: str) -> Project:
        row = await self._run(lambda: self._single(RECOMPUTE_AGGREGATES, project_id=project_id))
        if not row:
            raise NotFoundError(f"Project not found: {project_id}")
        return _project_from_node(dict(row["p"]))

    # --- reviewers ---

    async def get_reviewers(self, reviewer_ids: List[str]) -> List[Reviewer]:
        if not reviewer_ids:
            return []
        rows = await self._run(lambda: self._many(
            "MATCH (u:Reviewer) WHERE u.id IN $ids RETURN u", ids=list(reviewer_ids),
        ))
        return [_reviewer_from_node(dict(r["u"])) for r in rows]

    async def get_or_create_reviewer(self, address: str) -> Reviewer:
        query = """
        MERGE (u:Reviewer {address: $address})
        ON CREATE SET u.id = $id, u.reputationScore = 0
        RETURN u
        """
        row = await self._run(lambda: self._single(
            query, address=address.lower(), id=uuid.uuid4().hex,
        ))
        return _reviewer_from_node(dict(row["u"]))

    # --- reviews ---

    async def get_review(self, review_id: str) -> Review:
        row = await self._run(lambda: self._single(
            "MATCH (r:Review {id: $id}) RETURN r", id=review_id,
        ))
        if not row:
            raise NotFoundError(f"Review not found: {review_id}")
        return _review_from_node(dict(row["r"]))

    async def list_project_reviews(self, project_id: str) -> List[Review]:
        rows = await self._run(lambda: self._many(
            "MATCH (r:Review {projectId: $project_id}) RETURN r ORDER BY r.createdAt DESC",
            project_id=project_id,
        ))
        return [_review_from_node(dict(r["r"])) for r in rows]

    async def create_review(self, project_id: str, reviewer_id: str, rating: int,
                            content: str, title: str = "") -> Review:
        params = {
            "id": uuid.uuid4().hex,
            "project_id": project_id,
            "reviewer_id": reviewer_id,
            "rating": rating,
            "content": content,
            "title": title,
            "created_at": utcnow().isoformat(),
        }

        def _create(tx):
            record = tx.run(CREATE_REVIEW, **params).single()
            if record is None:
                return None
            tx.run(RECOMPUTE_AGGREGATES, project_id=project_id).consume()
            return dict(record["r"])

        def _write():
            with self._session_factory() as session:
                return session.execute_write(_create)

        node = await self._run(_write)
        if node is None:
            raise NotFoundError(f"Project not found: {project_id}")
        logger.info("review_created", review_id=params["id"], project_id=project_id)
        return _review_from_node(node)

    async def set_review_status(self, review_id: str, status: ReviewStatus) -> Review:
        row = await self._run(lambda: self._single(
            "MATCH (r:Review {id: $id}) SET r.status = $status RETURN r",
            id=review_id, status=status.value,
        ))
        if not row:
            raise NotFoundError(f"Review not found: {review_id}")
        review = _review_from_node(dict(row["r"]))
        await self.recompute_project_aggregates(review.project_id)
        return review

    async def record_ai_verdict(self, review_id: str, score: int, verdict: str) -> Review:
        row = await self._run(lambda: self._single(
            "MATCH (r:Review {id: $id}) SET r.aiScore = $score, r.aiVerdict = $verdict RETURN r",
            id=review_id, score=score, verdict=verdict,
        ))
        if not row:
            raise NotFoundError(f"Review not found: {review_id}")
        return _review_from_node(dict(row["r"]))

    # --- conditional verification primitives ---

    async def claim_review_verification(self, review_id: str, token: str,
                                        stale_after: float = 60.0) -> bool:
        now = time.time()
        row = await self._run(lambda: self._single(
            CLAIM_VERIFICATION, id=review_id, token=token,
            now=now, stale_before=now - stale_after,
        ))
        return bool(row)

    async def set_proof_hash_if_unset(self, review_id: str, tx_hash: str) -> Review:
        row = await self._run(lambda: self._single(SET_PROOF_IF_UNSET, id=review_id, tx_hash=tx_hash))
        if not row:
            raise NotFoundError(f"Review not found: {review_id}")
        return _review_from_node(dict(row["r"]))

    async def release_review_claim(self, review_id: str, token: str) -> None:
        await self._run(lambda: self._single(
            """
            MATCH (r:Review {id: $id}) WHERE r.verificationClaim = $token
            SET r.verificationClaim = null, r.verificationClaimedAt = null
            RETURN r.id AS id
            """,
            id=review_id, token=token,
        ))
