"""
Maiat — Review store interface.

The persistent collaborator behind scoring and the review pipeline. Every
implementation must make review creation and the aggregate recompute
atomic with respect to each other, and must offer the conditional
"set proof hash only if unset" primitive the paid verification flow
relies on.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from maiat.models import Project, Review, ReviewStatus, Reviewer


class ReviewStore(ABC):

    # --- projects ---

    @abstractmethod
    async def get_project(self, ref: str) -> Project:
        """Look up by id, then slug, then case-insensitive name. Raises NotFoundError."""

    @abstractmethod
    async def list_projects(self) -> List[Project]:
        ...

    @abstractmethod
    async def add_project(self, project: Project) -> Project:
        ...

    @abstractmethod
    async def recompute_project_aggregates(self, project_id: str) -> Project:
        """Recompute averageRating/reviewCount from the active review rows."""

    # --- reviewers ---

    @abstractmethod
    async def get_reviewers(self, reviewer_ids: List[str]) -> List[Reviewer]:
        ...

    @abstractmethod
    async def get_or_create_reviewer(self, address: str) -> Reviewer:
        ...

    # --- reviews ---

    @abstractmethod
    async def get_review(self, review_id: str) -> Review:
        ...

    @abstractmethod
    async def list_project_reviews(self, project_id: str) -> List[Review]:
        """All reviews for a project regardless of status, newest first."""

    @abstractmethod
    async def create_review(self, project_id: str, reviewer_id: str, rating: int,
                            content: str, title: str = "") -> Review:
        """Insert an active review and recompute the project aggregates atomically."""

    @abstractmethod
    async def set_review_status(self, review_id: str, status: ReviewStatus) -> Review:
        ...

    @abstractmethod
    async def record_ai_verdict(self, review_id: str, score: int, verdict: str) -> Review:
        ...

    # --- conditional verification primitives ---

    @abstractmethod
    async def claim_review_verification(self, review_id: str, token: str,
                                        stale_after: float = 60.0) -> bool:
        """Claim the right to write the proof. False if verified or claimed by someone else."""

    @abstractmethod
    async def set_proof_hash_if_unset(self, review_id: str, tx_hash: str) -> Review:
        """Set onChainProofHash only if absent. Returns the review as stored afterwards."""

    @abstractmethod
    async def release_review_claim(self, review_id: str, token: str) -> None:
        ...

    async def close(self) -> None:
        return None


def latest(reviews: List[Review], limit: int = 5, active_only: bool = True) -> List[Review]:
    rows = [r for r in reviews if r.is_active] if active_only else list(reviews)
    rows.sort(key=lambda r: r.created_at, reverse=True)
    return rows[:limit]


def resolve_slug(ref: Optional[str]) -> str:
    return (ref or "").strip().lower()
