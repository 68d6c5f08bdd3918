"""
Maiat — Reviews API

    POST /reviews                  - Submit a review (runs the verification pipeline)
    POST /reviews/{id}/verify      - Paid on-chain verification (verify price, x402)
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from maiat.api.deps import get_services
from maiat.compute.pipeline import ReviewSubmission
from maiat.errors import ValidationError
from maiat.payments.x402 import PaymentAction
from maiat.rate_limit import check_rate_limit
from maiat.services import Services

reviews_router = APIRouter(prefix="/reviews", tags=["Reviews"])


class ReviewRequest(BaseModel):
    project: Optional[str] = Field(None, description="Project id, slug or name")
    projectId: Optional[str] = None
    projectSlug: Optional[str] = None
    address: str = Field(..., description="Reviewer wallet address or handle")
    rating: Any = None
    content: str = ""
    title: str = ""

    @property
    def project_ref(self) -> str:
        ref = self.project or self.projectId or self.projectSlug
        if not ref:
            raise ValidationError("project, projectId or projectSlug is required", field="project")
        return ref


@reviews_router.post("", status_code=201)
async def submit_review(body: ReviewRequest, services: Services = Depends(get_services)):
    await check_rate_limit(
        services.redis, body.address, "review_submit",
        max_requests=services.settings.RATE_LIMIT_REVIEWS_PER_HOUR, window_seconds=3600,
    )
    result = await services.pipeline.submit(ReviewSubmission(
        project_ref=body.project_ref,
        address=body.address,
        rating=body.rating,
        content=body.content,
        title=body.title,
    ))
    return result.to_dict()


@reviews_router.post("/{review_id}/verify")
async def verify_review(
    review_id: str,
    request: Request,
    x_payment: Optional[str] = Header(None, alias="X-Payment"),
    services: Services = Depends(get_services),
):
    resource = request.url.path
    if not x_payment:
        return JSONResponse(
            status_code=402,
            content=services.gate.challenge(resource, PaymentAction.REVIEW_VERIFY),
        )

    review = await services.store.get_review(review_id)
    if not review.is_verified:
        services.verifier.ensure_available()
    await check_rate_limit(
        services.redis, review_id, "review_verify",
        max_requests=services.settings.RATE_LIMIT_VERIFY_PER_HOUR, window_seconds=3600,
    )
    receipt = await services.gate.verify(x_payment, resource, PaymentAction.REVIEW_VERIFY)
    outcome = await services.verifier.verify(review_id)
    body = outcome.to_dict()
    body["payment"] = receipt.to_dict()
    return body
