"""
Maiat — Service wiring.

Builds every collaborator from Settings once per app. Redis-backed
implementations are used when REDIS_URL is set, in-process ones otherwise.
"""
from dataclasses import dataclass
from typing import Any, Optional

import redis
import structlog

from maiat.chain.settlement import SettlementChain
from maiat.chain.trustchain import (
    AttestationLog, AttestationRecorder, MemoryAttestationLog, RedisAttestationLog,
)
from maiat.compute.pipeline import ReviewPipeline
from maiat.compute.report import TrustReportService
from maiat.compute.summary import TrustSummarizer
from maiat.compute.verification import ReviewVerifier
from maiat.config import Settings
from maiat.evidence.ai_probe import ReviewQualityChecker
from maiat.evidence.community import CommunitySignalReader
from maiat.evidence.usage_probe import UsageProbe
from maiat.payments.ledger import PaymentLogSink, RedisPaymentLog, RingBufferPaymentLog
from maiat.payments.nonces import MemoryNonceStore, NonceStore, RedisNonceStore
from maiat.payments.x402 import PaymentAction, PaymentGate
from maiat.store.base import ReviewStore
from maiat.trust.engine import TrustScoreEngine

logger = structlog.get_logger()


@dataclass
class Services:
    settings: Settings
    store: ReviewStore
    engine: TrustScoreEngine
    gate: PaymentGate
    reports: TrustReportService
    pipeline: ReviewPipeline
    verifier: ReviewVerifier
    payment_log: PaymentLogSink
    attestation_log: AttestationLog
    recorder: AttestationRecorder
    settlement: Optional[SettlementChain] = None
    redis: Any = None


def build_store(settings: Settings) -> ReviewStore:
    if settings.STORE_BACKEND == "neo4j":
        from maiat.store.graph import GraphReviewStore
        return GraphReviewStore()
    from maiat.store.memory import MemoryReviewStore
    return MemoryReviewStore()


def build_settlement(settings: Settings) -> Optional[SettlementChain]:
    if not settings.SETTLEMENT_RPC_URL:
        return None
    return SettlementChain(
        rpc_url=settings.SETTLEMENT_RPC_URL,
        private_key=settings.SETTLEMENT_PRIVATE_KEY,
        chain_id=settings.X402_CHAIN_ID,
        timeout=settings.SETTLEMENT_TIMEOUT_SECONDS,
        explorer_url=settings.SETTLEMENT_EXPLORER_URL,
    )


def build_services(
    settings: Settings,
    store: Optional[ReviewStore] = None,
    settlement: Optional[SettlementChain] = None,
    usage_probe: Optional[UsageProbe] = None,
    ai_checker: Optional[ReviewQualityChecker] = None,
    summarizer: Optional[TrustSummarizer] = None,
    redis_client: Any = None,
) -> Services:
    if redis_client is None and settings.REDIS_URL:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

    if redis_client is not None:
        nonces: NonceStore = RedisNonceStore(redis_client)
        payment_log: PaymentLogSink = RedisPaymentLog(redis_client, settings.PAYMENT_LOG_SIZE)
        attestation_log: AttestationLog = RedisAttestationLog(redis_client)
    else:
        nonces = MemoryNonceStore()
        payment_log = RingBufferPaymentLog(settings.PAYMENT_LOG_SIZE)
        attestation_log = MemoryAttestationLog()

    store = store or build_store(settings)
    settlement = settlement or build_settlement(settings)
    usage_probe = usage_probe or UsageProbe(
        settings.explorer_endpoints(), timeout=settings.PROBE_TIMEOUT_SECONDS,
    )
    ai_checker = ai_checker or ReviewQualityChecker(
        settings.AI_API_KEY, settings.AI_BASE_URL, settings.AI_MODEL,
        timeout=settings.AI_TIMEOUT_SECONDS,
    )
    summarizer = summarizer or TrustSummarizer(settings.GEMINI_API_KEY, timeout=settings.AI_TIMEOUT_SECONDS)

    engine = TrustScoreEngine(store, CommunitySignalReader(store))
    gate = PaymentGate(
        receiver=settings.X402_RECEIVER_ADDRESS,
        prices={
            PaymentAction.TRUST_QUERY: settings.X402_PRICE_QUERY,
            PaymentAction.REVIEW_VERIFY: settings.X402_PRICE_VERIFY,
        },
        nonces=nonces,
        payment_log=payment_log,
        network=settings.X402_NETWORK,
        chain_id=settings.X402_CHAIN_ID,
        currency=settings.X402_CURRENCY,
        deadline_seconds=settings.X402_DEADLINE_SECONDS,
        demo_mode=settings.X402_DEMO_MODE,
        settlement=settlement,
    )
    recorder = AttestationRecorder(attestation_log, settings.ATTESTATION_TOPIC_ID)

    services = Services(
        settings=settings,
        store=store,
        engine=engine,
        gate=gate,
        reports=TrustReportService(store, engine, gate, summarizer),
        pipeline=ReviewPipeline(
            store, engine,
            usage_probe=usage_probe,
            ai_checker=ai_checker,
            settlement=settlement,
            recorder=recorder,
            require_usage_proof=settings.REQUIRE_USAGE_PROOF,
            usage_timeout=settings.PROBE_TIMEOUT_SECONDS,
        ),
        verifier=ReviewVerifier(store, settlement, wait_seconds=settings.VERIFY_WAIT_SECONDS),
        payment_log=payment_log,
        attestation_log=attestation_log,
        recorder=recorder,
        settlement=settlement,
        redis=redis_client,
    )
    logger.info("services_built",
                store=type(store).__name__,
                redis=redis_client is not None,
                settlement=bool(settlement and settlement.can_write),
                attestation=recorder.enabled,
                demo_mode=settings.X402_DEMO_MODE)
    return services
