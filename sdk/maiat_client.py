"""
Maiat — Agent Trust SDK

Pay-per-query trust scores for autonomous agents. The client answers the
server's 402 challenge by signing an EIP-712 PaymentAuthorization with the
agent's key and retrying with the X-Payment header.

Install:
    pip install maiat-client

Usage:
    from maiat_client import TrustClient

    maiat = TrustClient(private_key=AGENT_KEY)

    result = maiat.score("uniswap")
    if result.is_safe:
        execute_transaction()

    # Paid on-chain verification of a review
    proof = maiat.verify_review(review_id)
    print(proof.tx_hash)
"""
import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_typed_data

__version__ = "1.0.0"
SDK_USER_AGENT = f"maiat-python/{__version__}"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


# =============================================
# RESULT TYPES
# =============================================

@dataclass
class TrustResult:
    """A paid trust report, flattened for agent decision logic."""
    slug: str
    name: str
    score: int                  # 0-100
    risk_level: str             # low, medium, high
    recommendation: str         # SAFE, CAUTION, AVOID
    simple_score: int = 0
    review_count: int = 0
    avg_rating: float = 0.0
    breakdown: Dict[str, int] = field(default_factory=dict)
    ai_analysis: Optional[str] = None
    payment: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_safe(self) -> bool:
        return self.recommendation == "SAFE"

    @property
    def needs_review(self) -> bool:
        return self.recommendation == "CAUTION"

    @property
    def should_reject(self) -> bool:
        return self.recommendation == "AVOID"

    @property
    def risk_summary(self) -> str:
        if self.score >= 80:
            return f"{self.name}: trusted (score {self.score})"
        if self.score >= 50:
            return f"{self.name}: moderate trust (score {self.score})"
        return f"{self.name}: HIGH RISK (score {self.score})"


@dataclass
class VerificationResult:
    review_id: str
    tx_hash: str
    already_verified: bool
    explorer: Optional[str] = None


# =============================================
# EXCEPTIONS
# =============================================

class TrustCheckError(Exception):
    def __init__(self, message: str, status_code: int = 0, detail: dict = None):
        self.status_code = status_code
        self.detail = detail or {}
        super().__init__(message)


class ProjectNotFound(TrustCheckError):
    pass


class PaymentRejected(TrustCheckError):
    def __init__(self, reason: str, **kwargs):
        self.reason = reason
        super().__init__(f"Payment rejected: {reason}", **kwargs)


class RateLimited(TrustCheckError):
    def __init__(self, retry_after: int = 60, **kwargs):
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Retry after {retry_after}s", **kwargs)


# =============================================
# PAYMENT SIGNING
# =============================================

def sign_requirement(private_key: str, requirement: Dict[str, Any]) -> str:
    """Sign a 402 requirement and return the X-Payment header value."""
    account = Account.from_key(private_key)
    message = {
        "from": account.address,
        "to": requirement["payTo"],
        "value": int(requirement["maxAmountRequired"]),
        "action": requirement["action"],
        "resource": requirement["resource"],
        "nonce": int(requirement["nonce"]),
        "deadline": int(requirement["deadline"]),
    }
    typed_data = {
        "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, **requirement["types"]},
        "primaryType": requirement.get("primaryType", "PaymentAuthorization"),
        "domain": requirement["domain"],
        "message": message,
    }
    signed = account.sign_message(encode_typed_data(full_message=typed_data))
    signature = signed.signature.hex()
    if not signature.startswith("0x"):
        signature = "0x" + signature
    body = {k: str(v) if isinstance(v, int) else v for k, v in message.items()}
    body["signature"] = signature
    return base64.b64encode(json.dumps(body).encode()).decode()


def _requirement(response: httpx.Response) -> Dict[str, Any]:
    body = response.json()
    accepts = body.get("accepts") or []
    if not accepts:
        raise TrustCheckError("402 without payment requirements", status_code=402, detail=body)
    return accepts[0]


def _parse_report(data: Dict[str, Any]) -> TrustResult:
    project = data.get("project", {})
    trust = data.get("trustScore", {})
    reviews = data.get("reviews", {})
    return TrustResult(
        slug=project.get("slug", ""),
        name=project.get("name", ""),
        score=trust.get("overall", 0),
        risk_level=trust.get("riskLevel", "high"),
        recommendation=trust.get("recommendation", "AVOID"),
        simple_score=trust.get("simpleScore", 0),
        review_count=reviews.get("count", 0),
        avg_rating=reviews.get("avgRating", 0.0),
        breakdown=trust.get("breakdown", {}),
        ai_analysis=data.get("aiAnalysis"),
        payment=data.get("payment", {}),
    )


def _parse_verification(data: Dict[str, Any]) -> VerificationResult:
    return VerificationResult(
        review_id=data["reviewId"],
        tx_hash=data["txHash"],
        already_verified=data.get("alreadyVerified", False),
        explorer=data.get("explorer"),
    )


def _handle_error(response: httpx.Response, target: str = ""):
    detail = {}
    if response.headers.get("content-type", "").startswith("application/json"):
        detail = response.json()
    if response.status_code == 404:
        raise ProjectNotFound(f"'{target}' not found", status_code=404, detail=detail)
    if response.status_code == 402:
        raise PaymentRejected(detail.get("reason", "unknown"), status_code=402, detail=detail)
    if response.status_code == 429:
        raise RateLimited(retry_after=int(response.headers.get("Retry-After", 60)), status_code=429)
    raise TrustCheckError(f"API error: {response.status_code}", status_code=response.status_code, detail=detail)


# =============================================
# SYNC CLIENT
# =============================================

class TrustClient:
    """
    Maiat trust client.

    Args:
        private_key: Agent wallet key used to sign x402 payments
        demo_id: Pay with the demo sentinel instead (servers in demo mode only)
        base_url: API base URL
        timeout: Request timeout in seconds
        client: Pre-built httpx.Client (tests, custom transports)
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        demo_id: Optional[str] = None,
        base_url: str = "http://localhost:8000",
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
    ):
        if not private_key and not demo_id:
            raise ValueError("Provide a private_key or a demo_id to pay for queries")
        self.private_key = private_key
        self.demo_id = demo_id
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"User-Agent": SDK_USER_AGENT},
            timeout=timeout,
        )

    @property
    def address(self) -> Optional[str]:
        return Account.from_key(self.private_key).address if self.private_key else None

    def _payment_header(self, response: httpx.Response) -> str:
        if self.private_key:
            return sign_requirement(self.private_key, _requirement(response))
        return f"demo:{self.demo_id}"

    def _paid(self, method: str, path: str, target: str) -> Dict[str, Any]:
        response = self._client.request(method, path)
        if response.status_code == 402:
            response = self._client.request(method, path, headers={"X-Payment": self._payment_header(response)})
        if response.status_code == 200:
            return response.json()
        _handle_error(response, target)

    def score(self, slug: str) -> TrustResult:
        """Paid trust report for a project slug."""
        return _parse_report(self._paid("GET", f"/trust/{slug}", slug))

    def verify_review(self, review_id: str) -> VerificationResult:
        """Paid on-chain verification of a review."""
        return _parse_verification(self._paid("POST", f"/reviews/{review_id}/verify", review_id))

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


# =============================================
# ASYNC CLIENT
# =============================================

class AsyncTrustClient:
    """Async version of TrustClient for async agent frameworks."""

    def __init__(
        self,
        private_key: Optional[str] = None,
        demo_id: Optional[str] = None,
        base_url: str = "http://localhost:8000",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not private_key and not demo_id:
            raise ValueError("Provide a private_key or a demo_id to pay for queries")
        self.private_key = private_key
        self.demo_id = demo_id
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"User-Agent": SDK_USER_AGENT},
            timeout=timeout,
        )

    def _payment_header(self, response: httpx.Response) -> str:
        if self.private_key:
            return sign_requirement(self.private_key, _requirement(response))
        return f"demo:{self.demo_id}"

    async def _paid(self, method: str, path: str, target: str) -> Dict[str, Any]:
        response = await self._client.request(method, path)
        if response.status_code == 402:
            response = await self._client.request(
                method, path, headers={"X-Payment": self._payment_header(response)},
            )
        if response.status_code == 200:
            return response.json()
        _handle_error(response, target)

    async def score(self, slug: str) -> TrustResult:
        return _parse_report(await self._paid("GET", f"/trust/{slug}", slug))

    async def verify_review(self, review_id: str) -> VerificationResult:
        return _parse_verification(await self._paid("POST", f"/reviews/{review_id}/verify", review_id))

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()
