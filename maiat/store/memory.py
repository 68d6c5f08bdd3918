"""
Maiat — In-process review store.

Used for development and tests. One lock guards every mutation so review
creation, aggregate recompute and the conditional proof update are atomic.
"""
import threading
import time
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import structlog

from maiat.errors import NotFoundError
from maiat.models import Project, Review, ReviewStatus, Reviewer, utcnow
from maiat.store.base import ReviewStore, resolve_slug

logger = structlog.get_logger()


class MemoryReviewStore(ReviewStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._projects: Dict[str, Project] = {}
        self._reviews: Dict[str, Review] = {}
        self._reviewers: Dict[str, Reviewer] = {}
        self._claims: Dict[str, Tuple[str, float]] = {}

    # --- projects ---

    async def get_project(self, ref: str) -> Project:
        with self._lock:
            project = self._find_project(ref)
            if project is None:
                raise NotFoundError(f"Project not found: {ref}")
            return replace(project)

    def _find_project(self, ref: str) -> Optional[Project]:
        if ref in self._projects:
            return self._projects[ref]
        key = resolve_slug(ref)
        for project in self._projects.values():
            if project.slug == key:
                return project
        for project in self._projects.values():
            if project.name.lower() == key:
                return project
        return None

    async def list_projects(self) -> List[Project]:
        with self._lock:
            return [replace(p) for p in self._projects.values()]

    async def add_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = project
            return replace(project)

    async def recompute_project_aggregates(self, project_id: str) -> Project:
        with self._lock:
            return replace(self._recompute(project_id))

    def _recompute(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFoundError(f"Project not found: {project_id}")
        ratings = [
            r.rating for r in self._reviews.values()
            if r.project_id == project_id and r.is_active
        ]
        project.review_count = len(ratings)
        project.average_rating = sum(ratings) / len(ratings) if ratings else 0.0
        return project

    # --- reviewers ---

    async def add_reviewer(self, reviewer: Reviewer) -> Reviewer:
        with self._lock:
            self._reviewers[reviewer.id] = reviewer
            return replace(reviewer)

    async def get_reviewers(self, reviewer_ids: List[str]) -> List[Reviewer]:
        with self._lock:
            return [replace(self._reviewers[i]) for i in reviewer_ids if i in self._reviewers]

    async def get_or_create_reviewer(self, address: str) -> Reviewer:
        key = address.lower()
        with self._lock:
            for reviewer in self._reviewers.values():
                if reviewer.address == key:
                    return replace(reviewer)
            reviewer = Reviewer(id=uuid.uuid4().hex, address=key)
            self._reviewers[reviewer.id] = reviewer
            logger.info("reviewer_created", reviewer_id=reviewer.id)
            return replace(reviewer)

    # --- reviews ---

    def _review(self, review_id: str) -> Review:
        review = self._reviews.get(review_id)
        if review is None:
            raise NotFoundError(f"Review not found: {review_id}")
        return review

    async def get_review(self, review_id: str) -> Review:
        with self._lock:
            return replace(self._review(review_id))

    async def list_project_reviews(self, project_id: str) -> List[Review]:
        with self._lock:
            rows = [replace(r) for r in self._reviews.values() if r.project_id == project_id]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows

    async def add_review(self, review: Review) -> Review:
        """Insert a fully-formed review (seeding and tests)."""
        with self._lock:
            self._reviews[review.id] = review
            self._recompute(review.project_id)
            return replace(review)

    async def create_review(self, project_id: str, reviewer_id: str, rating: int,
                            content: str, title: str = "") -> Review:
        with self._lock:
            if project_id not in self._projects:
                raise NotFoundError(f"Project not found: {project_id}")
            review = Review(
                id=uuid.uuid4().hex,
                project_id=project_id,
                reviewer_id=reviewer_id,
                rating=rating,
                content=content,
                title=title,
                created_at=utcnow(),
            )
            self._reviews[review.id] = review
            self._recompute(project_id)
            return replace(review)

    async def set_review_status(self, review_id: str, status: ReviewStatus) -> Review:
        with self._lock:
            review = self._review(review_id)
            review.status = status
            self._recompute(review.project_id)
            return replace(review)

    async def record_ai_verdict(self, review_id: str, score: int, verdict: str) -> Review:
        with self._lock:
            review = self._review(review_id)
            review.ai_score = score
            review.ai_verdict = verdict
            return replace(review)

    # --- conditional verification primitives ---

    async def claim_review_verification(self, review_id: str, token: str,
                                        stale_after: float = 60.0) -> bool:
        now = time.monotonic()
        with self._lock:
            review = self._review(review_id)
            if review.on_chain_proof_hash:
                return False
            held = self._claims.get(review_id)
            if held and held[0] != token and now - held[1] < stale_after:
                return False
            self._claims[review_id] = (token, now)
            return True

    async def set_proof_hash_if_unset(self, review_id: str, tx_hash: str) -> Review:
        with self._lock:
            review = self._review(review_id)
            if not review.on_chain_proof_hash:
                review.on_chain_proof_hash = tx_hash
            self._claims.pop(review_id, None)
            return replace(review)

    async def release_review_claim(self, review_id: str, token: str) -> None:
        with self._lock:
            held = self._claims.get(review_id)
            if held and held[0] == token:
                del self._claims[review_id]
