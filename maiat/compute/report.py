"""
Maiat — Paid trust report.

GetTrustReport: challenge when no payment is presented, otherwise verify
the payment, score the project and assemble the report.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import structlog

from maiat.models import Project, TrustScoreBreakdown, utcnow
from maiat.payments.x402 import PaymentAction, PaymentReceipt
from maiat.store.base import latest

logger = structlog.get_logger()

REPORT_PROTOCOL = "maiat-trust-v1"


@dataclass(frozen=True)
class PaymentChallenge:
    body: Dict[str, Any]


@dataclass
class TrustReport:
    project: Project
    breakdown: TrustScoreBreakdown
    simple_score: int
    reviews: Dict[str, Any]
    receipt: PaymentReceipt
    summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        trust = self.breakdown.to_dict()
        trust["simpleScore"] = self.simple_score
        return {
            "protocol": REPORT_PROTOCOL,
            "project": self.project.to_dict(),
            "trustScore": trust,
            "reviews": self.reviews,
            "aiAnalysis": self.summary,
            "payment": self.receipt.to_dict(),
            "generatedAt": utcnow().isoformat(),
        }


class TrustReportService:

    def __init__(self, store, engine, gate, summarizer=None):
        self.store = store
        self.engine = engine
        self.gate = gate
        self.summarizer = summarizer

    async def get_trust_report(
        self, slug: str, resource: str, payment_header: Optional[str] = None,
    ) -> Union[PaymentChallenge, TrustReport]:
        if not payment_header:
            return PaymentChallenge(self.gate.challenge(resource, PaymentAction.TRUST_QUERY))

        project = await self.store.get_project(slug)
        receipt = await self.gate.verify(payment_header, resource, PaymentAction.TRUST_QUERY)

        breakdown = await self.engine.compute(project.id)
        reviews = await self.store.list_project_reviews(project.id)

        summary = None
        if self.summarizer is not None:
            summary = await self.summarizer.summarize(project, breakdown)

        logger.info("trust_report_served",
                    project=project.slug, score=breakdown.score, demo=receipt.demo)
        return TrustReport(
            project=project,
            breakdown=breakdown,
            simple_score=self.engine.simple(project),
            reviews={
                "count": project.review_count,
                "avgRating": round(project.average_rating, 2),
                "verifiedCount": sum(1 for r in reviews if r.is_verified),
                "latest": [
                    {
                        "id": r.id,
                        "rating": r.rating,
                        "title": r.title,
                        "content": r.content[:280],
                        "verified": r.is_verified,
                        "createdAt": r.created_at.isoformat(),
                    }
                    for r in latest(reviews)
                ],
            },
            receipt=receipt,
            summary=summary,
        )
