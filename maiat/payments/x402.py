"""
Maiat — x402 Payment Gate

HTTP 402 challenge/response for paid endpoints.

    1. Client calls a paid resource without X-Payment
       -> 402 with a PaymentRequirement (price, receiver, nonce, deadline)
    2. Client signs an EIP-712 PaymentAuthorization over the requirement
       and retries with X-Payment: base64(JSON PaymentProof)
    3. Gate checks, in order: structure, deadline, signature, receiver,
       amount, resource binding, nonce freshness
    4. Settlement (a self-tx carrying the receipt) is attempted but never
       decides validity

X-Payment forms:
    base64(JSON)     signed PaymentProof
    demo:<id>        sentinel, accepted only when demo mode is enabled
    0x<64 hex>       hash of a payment tx already sent to the receiver
"""
import base64
import binascii
import json
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog
from eth_account import Account
from eth_account.messages import encode_typed_data

from maiat.config import ZERO_ADDRESS
from maiat.errors import PaymentInvalid, UpstreamDegraded
from maiat.models import is_evm_address
from maiat.payments.ledger import PaymentLogSink
from maiat.payments.nonces import NonceStore, binding, new_nonce

logger = structlog.get_logger()

DEMO_PREFIX = "demo:"
TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
NONCE_GRACE_SECONDS = 60
TX_REPLAY_TTL = 86400 * 30

DOMAIN_NAME = "Maiat Trust Protocol"
DOMAIN_VERSION = "1"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

PAYMENT_AUTHORIZATION_TYPE = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "action", "type": "string"},
    {"name": "resource", "type": "string"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


class PaymentAction(str, Enum):
    TRUST_QUERY   = "trust-query"
    REVIEW_VERIFY = "review-verify"


def eip712_domain(chain_id: int) -> Dict[str, Any]:
    return {
        "name": DOMAIN_NAME,
        "version": DOMAIN_VERSION,
        "chainId": chain_id,
        "verifyingContract": ZERO_ADDRESS,
    }


def build_typed_data(chain_id: int, message: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "PaymentAuthorization": PAYMENT_AUTHORIZATION_TYPE,
        },
        "primaryType": "PaymentAuthorization",
        "domain": eip712_domain(chain_id),
        "message": message,
    }


# =============================================
# WIRE TYPES
# =============================================

@dataclass(frozen=True)
class PaymentRequirement:
    network: str
    chain_id: int
    pay_to: str
    amount: str
    action: str
    resource: str
    nonce: str
    deadline: int
    currency: str = "KITE"
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentRequirement":
        return cls(
            network=data["network"],
            chain_id=int(data["chainId"]),
            pay_to=data["payTo"],
            amount=str(data["maxAmountRequired"]),
            action=data["action"],
            resource=data["resource"],
            nonce=str(data["nonce"]),
            deadline=int(data["deadline"]),
            currency=data.get("currency", "KITE"),
            description=data.get("description", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": "exact",
            "network": self.network,
            "chainId": self.chain_id,
            "maxAmountRequired": self.amount,
            "amount": self.amount,
            "currency": self.currency,
            "asset": "native",
            "payTo": self.pay_to,
            "receiver": self.pay_to,
            "action": self.action,
            "resource": self.resource,
            "description": self.description,
            "mimeType": "application/json",
            "nonce": self.nonce,
            "deadline": self.deadline,
            "domain": eip712_domain(self.chain_id),
            "types": {"PaymentAuthorization": PAYMENT_AUTHORIZATION_TYPE},
            "primaryType": "PaymentAuthorization",
        }


@dataclass(frozen=True)
class PaymentProof:
    payer: str
    to: str
    value: int
    action: str
    resource: str
    nonce: int
    deadline: int
    signature: str

    @classmethod
    def decode(cls, header: str) -> "PaymentProof":
        try:
            data = json.loads(base64.b64decode(header, validate=True).decode())
        except (binascii.Error, UnicodeDecodeError, ValueError):
            raise PaymentInvalid("Malformed payment")
        if not isinstance(data, dict):
            raise PaymentInvalid("Malformed payment")
        try:
            proof = cls(
                payer=str(data["from"]),
                to=str(data["to"]),
                value=int(str(data["value"])),
                action=str(data["action"]),
                resource=str(data["resource"]),
                nonce=int(str(data["nonce"])),
                deadline=int(str(data["deadline"])),
                signature=str(data["signature"]),
            )
        except (KeyError, TypeError, ValueError):
            raise PaymentInvalid("Malformed payment")
        if not (is_evm_address(proof.payer) and is_evm_address(proof.to)):
            raise PaymentInvalid("Malformed payment")
        if proof.value < 0 or proof.nonce < 0 or proof.deadline < 0:
            raise PaymentInvalid("Malformed payment")
        return proof

    def message(self) -> Dict[str, Any]:
        return {
            "from": self.payer,
            "to": self.to,
            "value": self.value,
            "action": self.action,
            "resource": self.resource,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }

    def encode(self) -> str:
        body = {k: str(v) if isinstance(v, int) else v for k, v in self.message().items()}
        body["signature"] = self.signature
        return base64.b64encode(json.dumps(body).encode()).decode()


@dataclass
class PaymentReceipt:
    payer: str
    amount: str
    action: str
    resource: str
    network: str
    currency: str = "KITE"
    demo: bool = False
    tx_hash: Optional[str] = None
    explorer: Optional[str] = None
    timestamp: int = field(default_factory=lambda: int(time.time()))

    @property
    def status(self) -> str:
        if self.demo:
            return "demo"
        return "settled" if self.tx_hash else "verified"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": "x402",
            "payer": self.payer,
            "amount": self.amount,
            "currency": self.currency,
            "network": self.network,
            "action": self.action,
            "resource": self.resource,
            "txHash": self.tx_hash,
            "explorer": self.explorer,
            "status": self.status,
            "demo": self.demo,
            "timestamp": self.timestamp,
        }


def sign_payment(private_key: str, requirement: PaymentRequirement) -> PaymentProof:
    """Sign a PaymentAuthorization for ``requirement`` (agent side)."""
    account = Account.from_key(private_key)
    proof = PaymentProof(
        payer=account.address,
        to=requirement.pay_to,
        value=int(requirement.amount),
        action=requirement.action,
        resource=requirement.resource,
        nonce=int(requirement.nonce),
        deadline=requirement.deadline,
        signature="",
    )
    signable = encode_typed_data(full_message=build_typed_data(requirement.chain_id, proof.message()))
    signed = account.sign_message(signable)
    signature = signed.signature.hex()
    if not signature.startswith("0x"):
        signature = "0x" + signature
    return replace(proof, signature=signature)


def recover_payer(chain_id: int, proof: PaymentProof) -> str:
    signable = encode_typed_data(full_message=build_typed_data(chain_id, proof.message()))
    sig = proof.signature[2:] if proof.signature.startswith("0x") else proof.signature
    return Account.recover_message(signable, signature=bytes.fromhex(sig))


# =============================================
# GATE
# =============================================

class PaymentGate:

    def __init__(
        self,
        receiver: str,
        prices: Dict[PaymentAction, str],
        nonces: NonceStore,
        payment_log: PaymentLogSink,
        network: str = "kite-testnet",
        chain_id: int = 2368,
        currency: str = "KITE",
        deadline_seconds: int = 300,
        demo_mode: bool = False,
        settlement=None,
        clock: Callable[[], float] = time.time,
    ):
        self.receiver = receiver
        self.prices = {PaymentAction(k): str(v) for k, v in prices.items()}
        self.nonces = nonces
        self.payment_log = payment_log
        self.network = network
        self.chain_id = chain_id
        self.currency = currency
        self.deadline_seconds = deadline_seconds
        self.demo_mode = demo_mode
        self.settlement = settlement
        self.clock = clock

    # --- challenge ---

    def challenge(self, resource: str, action: PaymentAction) -> Dict[str, Any]:
        """Issue a fresh requirement and build the 402 body around it."""
        now = int(self.clock())
        requirement = PaymentRequirement(
            network=self.network,
            chain_id=self.chain_id,
            pay_to=self.receiver,
            amount=self.prices[action],
            action=action.value,
            resource=resource,
            nonce=new_nonce(),
            deadline=now + self.deadline_seconds,
            currency=self.currency,
            description=f"Maiat {action.value} for {resource}",
        )
        self.nonces.issue(
            requirement.nonce,
            binding(action.value, resource),
            self.deadline_seconds + NONCE_GRACE_SECONDS,
        )
        return {
            "error": "Payment Required",
            "protocol": "x402",
            "version": "1",
            "timestamp": now,
            "accepts": [requirement.to_dict()],
            "payment": requirement.to_dict(),
        }

    # --- verification ---

    async def verify(self, header: str, resource: str, action: PaymentAction) -> PaymentReceipt:
        header = (header or "").strip()
        if header.startswith(DEMO_PREFIX):
            receipt = self._verify_demo(header, resource, action)
        elif TX_HASH_RE.match(header):
            receipt = await self._verify_tx_hash(header, resource, action)
        else:
            receipt = await self._verify_signed(header, resource, action)

        self.payment_log.append(receipt.to_dict())
        logger.info("payment_accepted",
                    payer=receipt.payer,
                    action=receipt.action,
                    resource=receipt.resource,
                    demo=receipt.demo,
                    tx_hash=receipt.tx_hash)
        return receipt

    def _receipt(self, payer: str, resource: str, action: PaymentAction, **kwargs) -> PaymentReceipt:
        return PaymentReceipt(
            payer=payer,
            amount=self.prices[action],
            action=action.value,
            resource=resource,
            network=self.network,
            currency=self.currency,
            timestamp=int(self.clock()),
            **kwargs,
        )

    def _verify_demo(self, header: str, resource: str, action: PaymentAction) -> PaymentReceipt:
        if not self.demo_mode:
            raise PaymentInvalid("Demo payments disabled")
        if not header[len(DEMO_PREFIX):].strip():
            raise PaymentInvalid("Malformed payment")
        return self._receipt(header, resource, action, demo=True)

    async def _verify_tx_hash(self, tx_hash: str, resource: str, action: PaymentAction) -> PaymentReceipt:
        tx_hash = tx_hash.lower()
        if self.settlement is None:
            if self.demo_mode:
                return self._receipt(tx_hash, resource, action, demo=True)
            raise PaymentInvalid("Payment not confirmed")

        try:
            payment = await self.settlement.lookup_payment(tx_hash)
        except UpstreamDegraded as e:
            logger.warning("payment_lookup_degraded", tx_hash=tx_hash, error=str(e))
            if self.demo_mode:
                return self._receipt(tx_hash, resource, action, demo=True)
            raise PaymentInvalid("Payment not confirmed")

        if payment is None or not payment.succeeded:
            raise PaymentInvalid("Payment not confirmed")
        if payment.receiver != self.receiver.lower():
            raise PaymentInvalid("Wrong receiver")
        if payment.value < int(self.prices[action]):
            raise PaymentInvalid("Insufficient amount")
        if not self.nonces.mark_used(f"tx:{tx_hash}", TX_REPLAY_TTL):
            raise PaymentInvalid("Nonce already used")

        return self._receipt(
            payment.sender, resource, action,
            tx_hash=tx_hash, explorer=self.settlement.explorer_link(tx_hash),
        )

    async def _verify_signed(self, header: str, resource: str, action: PaymentAction) -> PaymentReceipt:
        proof = PaymentProof.decode(header)

        if proof.deadline < int(self.clock()):
            raise PaymentInvalid("Payment expired")

        try:
            signer = recover_payer(self.chain_id, proof)
        except Exception as e:
            logger.info("payment_signature_unrecoverable", error=str(e))
            raise PaymentInvalid("Invalid signature")
        if signer.lower() != proof.payer.lower():
            raise PaymentInvalid("Invalid signature")

        if proof.to.lower() != self.receiver.lower():
            raise PaymentInvalid("Wrong receiver")

        if proof.value < int(self.prices[action]):
            raise PaymentInvalid("Insufficient amount")

        expected = binding(action.value, resource)
        if binding(proof.action, proof.resource) != expected:
            raise PaymentInvalid("Wrong resource")

        nonce = str(proof.nonce)
        bound = self.nonces.peek(nonce)
        if bound is None:
            if self.nonces.was_used(nonce):
                raise PaymentInvalid("Nonce already used")
            raise PaymentInvalid("Unknown nonce")
        if bound != expected:
            raise PaymentInvalid("Wrong resource")
        if not self.nonces.claim(nonce, self.deadline_seconds + NONCE_GRACE_SECONDS):
            raise PaymentInvalid("Nonce already used")

        tx_hash = await self._settle(proof)
        return self._receipt(
            proof.payer, resource, action,
            tx_hash=tx_hash,
            explorer=self.settlement.explorer_link(tx_hash) if self.settlement and tx_hash else None,
        )

    async def _settle(self, proof: PaymentProof) -> Optional[str]:
        """Best-effort on-chain receipt. Never affects validity."""
        if self.settlement is None or not self.settlement.can_write:
            return None
        try:
            return await self.settlement.send_self_attestation({
                "type": "maiat-x402-payment",
                "protocol": "x402",
                "from": proof.payer,
                "to": proof.to,
                "amount": str(proof.value),
                "action": proof.action,
                "resource": proof.resource,
                "timestamp": int(self.clock()),
            })
        except Exception as e:
            logger.warning("payment_settlement_failed", payer=proof.payer, error=str(e))
            return None
