import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from maiat.chain.settlement import ChainPayment
from maiat.config import Settings
from maiat.errors import UpstreamDegraded
from maiat.main import create_app
from maiat.models import Project, ProjectCategory, Review, Reviewer, utcnow
from maiat.services import build_services
from maiat.store.memory import MemoryReviewStore

RECEIVER = "0x1111111111111111111111111111111111111111"
TOPIC = "0.0.4242"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSettlement:
    """Stands in for the settlement chain: records writes, serves canned payments."""

    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.writes: List[Dict[str, Any]] = []
        self.payments: Dict[str, Optional[ChainPayment]] = {}
        self.lookup_error: Optional[Exception] = None
        self.can_write = True

    async def send_self_attestation(self, payload: Dict[str, Any]) -> str:
        self.writes.append(payload)
        await asyncio.sleep(self.delay)
        if self.fail:
            raise UpstreamDegraded("rpc down")
        return "0x" + f"{len(self.writes):064x}"

    async def lookup_payment(self, tx_hash: str) -> Optional[ChainPayment]:
        if self.lookup_error:
            raise self.lookup_error
        return self.payments.get(tx_hash)

    def explorer_link(self, tx_hash: Optional[str]) -> Optional[str]:
        return f"https://testnet.kitescan.ai/tx/{tx_hash}" if tx_hash else None


def run(coro):
    return asyncio.run(coro)


async def seed_reviews(store: MemoryReviewStore, project: Project, ratings: List[int],
                       verified: int = 0, upvotes: Optional[List[int]] = None,
                       reputation: int = 0, age_days: int = 1) -> List[Review]:
    await store.add_project(project)
    upvotes = upvotes or [0] * len(ratings)
    reviews = []
    for i, rating in enumerate(ratings):
        reviewer = await store.add_reviewer(Reviewer(
            id=f"{project.id}-u{i}", address=f"0x{i + 1:040x}", reputation_score=reputation,
        ))
        reviews.append(await store.add_review(Review(
            id=f"{project.id}-r{i}",
            project_id=project.id,
            reviewer_id=reviewer.id,
            rating=rating,
            content=f"review {i} of {project.name}",
            created_at=utcnow() - timedelta(days=age_days),
            upvotes=upvotes[i],
            on_chain_proof_hash=f"0x{i:064x}" if i < verified else None,
        )))
    return reviews


@pytest.fixture
def settings() -> Settings:
    s = Settings()
    s.ENVIRONMENT = "test"
    s.X402_RECEIVER_ADDRESS = RECEIVER
    s.X402_DEMO_MODE = False
    s.SETTLEMENT_RPC_URL = ""
    s.SETTLEMENT_PRIVATE_KEY = ""
    s.REDIS_URL = ""
    s.STORE_BACKEND = "memory"
    s.SEED_DEMO_DATA = False
    s.ATTESTATION_TOPIC_ID = TOPIC
    s.AI_API_KEY = ""
    s.GEMINI_API_KEY = ""
    s.REQUIRE_USAGE_PROOF = False
    s.VERIFY_WAIT_SECONDS = 5
    return s


@pytest.fixture
def store() -> MemoryReviewStore:
    return MemoryReviewStore()


@pytest.fixture
def uniswap() -> Project:
    return Project(id="uniswap", slug="uniswap", name="Uniswap", category=ProjectCategory.DEFI,
                   address="0x1f9840a85d5af5bf1d1762f925bdaddc4201f984")


@pytest.fixture
def coffee() -> Project:
    return Project(id="jerrys-coffee", slug="jerrys-coffee", name="Jerry's Coffee",
                   category=ProjectCategory.MERCHANT)


@pytest.fixture
def settlement() -> FakeSettlement:
    return FakeSettlement()


@pytest.fixture
def services(settings, store, settlement):
    return build_services(settings, store=store, settlement=settlement)


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services=services))
