"""
Maiat — Community signal reader.

Aggregates the raw community facts for a project: total upvotes across
its reviews, the review count, and the mean reputation of the distinct
reviewers who wrote them.
"""
from typing import List, Optional

from maiat.models import CommunitySignal, Review


class CommunitySignalReader:

    def __init__(self, store):
        self.store = store

    async def read(self, project_id: str, reviews: Optional[List[Review]] = None) -> CommunitySignal:
        if reviews is None:
            reviews = await self.store.list_project_reviews(project_id)
        if not reviews:
            return CommunitySignal()

        reviewer_ids = sorted({r.reviewer_id for r in reviews})
        reviewers = await self.store.get_reviewers(reviewer_ids)
        reputation = (
            sum(r.reputation_score for r in reviewers) / len(reviewers)
            if reviewers else 0.0
        )
        return CommunitySignal(
            total_upvotes=sum(r.upvotes for r in reviews),
            total_reviews=len(reviews),
            avg_reviewer_reputation=reputation,
        )
