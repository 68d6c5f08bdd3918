"""
Maiat — Trust API

Paid endpoints (x402):
    GET  /trust/{slug}                      - Trust report (query price)

Public endpoints:
    GET  /x402/log                          - Recent verified payments
    GET  /attestations/{segment}            - Recent attestation entries
    GET  /attestations/{segment}/verify     - Recompute the segment hash chain
"""
import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from maiat.api.deps import get_services
from maiat.compute.report import PaymentChallenge
from maiat.services import Services

logger = structlog.get_logger()

trust_router = APIRouter(tags=["Trust"])


class PaymentLogResponse(BaseModel):
    entries: List[Dict[str, Any]]
    total: int


class ChainVerificationResponse(BaseModel):
    segment: str
    verified: bool
    entries_checked: int
    breaks: List[Dict[str, Any]]
    head: str


@trust_router.get("/trust/{slug}")
async def get_trust_report(
    slug: str,
    request: Request,
    x_payment: Optional[str] = Header(None, alias="X-Payment"),
    services: Services = Depends(get_services),
):
    """
    Trust report for one project. Without X-Payment, answers 402 with the
    payment requirement; with a valid payment, the full report.
    """
    result = await services.reports.get_trust_report(slug, request.url.path, x_payment)
    if isinstance(result, PaymentChallenge):
        return JSONResponse(status_code=402, content=result.body)
    return result.to_dict()


@trust_router.get("/x402/log", response_model=PaymentLogResponse)
async def payment_log(
    limit: int = Query(50, ge=1, le=100),
    services: Services = Depends(get_services),
):
    entries = await asyncio.to_thread(services.payment_log.recent, limit)
    return PaymentLogResponse(entries=entries, total=len(entries))


@trust_router.get("/attestations/{segment}")
async def attestation_history(
    segment: str,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
):
    entries = await asyncio.to_thread(services.attestation_log.history, segment, limit)
    return {"segment": segment, "entries": entries, "total": len(entries)}


@trust_router.get("/attestations/{segment}/verify", response_model=ChainVerificationResponse)
async def verify_attestations(segment: str, services: Services = Depends(get_services)):
    result = await asyncio.to_thread(services.attestation_log.verify_segment, segment)
    if not result["verified"]:
        logger.warning("attestation_chain_broken", segment=segment, breaks=len(result["breaks"]))
    return ChainVerificationResponse(segment=segment, **result)
