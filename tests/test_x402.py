import base64
import json

import pytest
from eth_account import Account

from maiat.chain.settlement import ChainPayment
from maiat.errors import PaymentInvalid, UpstreamDegraded
from maiat.payments.ledger import RingBufferPaymentLog
from maiat.payments.nonces import MemoryNonceStore
from maiat.payments.x402 import (
    PaymentAction, PaymentGate, PaymentProof, PaymentRequirement, sign_payment,
)
from tests.conftest import RECEIVER, FakeClock, FakeSettlement

QUERY_PRICE = "1000000000000000"
VERIFY_PRICE = "5000000000000000"
RESOURCE = "/trust/uniswap"


def make_gate(clock=None, demo_mode=False, settlement=None, log=None):
    clock = clock or FakeClock()
    return PaymentGate(
        receiver=RECEIVER,
        prices={PaymentAction.TRUST_QUERY: QUERY_PRICE, PaymentAction.REVIEW_VERIFY: VERIFY_PRICE},
        nonces=MemoryNonceStore(clock=clock),
        payment_log=log or RingBufferPaymentLog(100),
        demo_mode=demo_mode,
        settlement=settlement,
        clock=clock,
    )


def requirement(gate, resource=RESOURCE, action=PaymentAction.TRUST_QUERY) -> PaymentRequirement:
    return PaymentRequirement.from_dict(gate.challenge(resource, action)["accepts"][0])


class TestChallenge:

    def test_requirement_fields(self):
        clock = FakeClock(1_700_000_000)
        body = make_gate(clock).challenge("/trust/jerrys-coffee", PaymentAction.TRUST_QUERY)
        req = body["accepts"][0]

        assert body["protocol"] == "x402"
        assert req["deadline"] == body["timestamp"] + 300
        assert req["payTo"] == RECEIVER
        assert req["maxAmountRequired"] == QUERY_PRICE
        assert req["resource"] == "/trust/jerrys-coffee"
        assert req["network"] == "kite-testnet"
        assert req["chainId"] == 2368
        assert req["domain"]["name"] == "Maiat Trust Protocol"
        assert int(req["nonce"]) > 0

    def test_verify_tier_is_priced_higher(self):
        req = make_gate().challenge("/reviews/r1/verify", PaymentAction.REVIEW_VERIFY)["accepts"][0]
        assert req["maxAmountRequired"] == VERIFY_PRICE

    def test_nonces_are_unique(self):
        gate = make_gate()
        nonces = {gate.challenge(RESOURCE, PaymentAction.TRUST_QUERY)["accepts"][0]["nonce"] for _ in range(20)}
        assert len(nonces) == 20


class TestSignedPayments:

    @pytest.mark.asyncio
    async def test_valid_payment_is_accepted_and_logged(self):
        log = RingBufferPaymentLog(100)
        gate = make_gate(log=log)
        agent = Account.create()
        proof = sign_payment(agent.key.hex(), requirement(gate))

        receipt = await gate.verify(proof.encode(), RESOURCE, PaymentAction.TRUST_QUERY)

        assert receipt.payer == agent.address
        assert receipt.demo is False
        assert receipt.amount == QUERY_PRICE
        assert log.recent(1)[0]["payer"] == agent.address

    @pytest.mark.asyncio
    async def test_expired_payment_rejected(self):
        clock = FakeClock()
        gate = make_gate(clock)
        proof = sign_payment(Account.create().key.hex(), requirement(gate))
        clock.now += 301

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(proof.encode(), RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Payment expired"

    @pytest.mark.asyncio
    async def test_expired_wins_over_forged_signer(self):
        clock = FakeClock()
        gate = make_gate(clock)
        proof = sign_payment(Account.create().key.hex(), requirement(gate))
        forged = PaymentProof(**{**proof.__dict__, "payer": Account.create().address})
        clock.now += 301

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(forged.encode(), RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Payment expired"

    @pytest.mark.asyncio
    async def test_signer_must_match_from(self):
        gate = make_gate()
        proof = sign_payment(Account.create().key.hex(), requirement(gate))
        forged = PaymentProof(**{**proof.__dict__, "payer": Account.create().address})

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(forged.encode(), RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Invalid signature"

    @pytest.mark.asyncio
    async def test_garbage_signature(self):
        gate = make_gate()
        proof = sign_payment(Account.create().key.hex(), requirement(gate))
        broken = PaymentProof(**{**proof.__dict__, "signature": "0x1234"})

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(broken.encode(), RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Invalid signature"

    @pytest.mark.asyncio
    async def test_wrong_receiver(self):
        gate = make_gate()
        req = requirement(gate)
        req = PaymentRequirement(**{**req.__dict__, "pay_to": Account.create().address})
        proof = sign_payment(Account.create().key.hex(), req)

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(proof.encode(), RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Wrong receiver"

    @pytest.mark.asyncio
    async def test_query_payment_cannot_buy_verification(self):
        gate = make_gate()
        proof = sign_payment(Account.create().key.hex(), requirement(gate))

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(proof.encode(), RESOURCE, PaymentAction.REVIEW_VERIFY)
        assert exc.value.reason == "Insufficient amount"

    @pytest.mark.asyncio
    async def test_payment_bound_to_resource(self):
        gate = make_gate()
        proof = sign_payment(Account.create().key.hex(), requirement(gate, "/trust/aave"))

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(proof.encode(), RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Wrong resource"

    @pytest.mark.asyncio
    async def test_replay_rejected(self):
        gate = make_gate()
        header = sign_payment(Account.create().key.hex(), requirement(gate)).encode()
        await gate.verify(header, RESOURCE, PaymentAction.TRUST_QUERY)

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(header, RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Nonce already used"

    @pytest.mark.asyncio
    async def test_unissued_nonce_rejected(self):
        gate = make_gate()
        req = PaymentRequirement(**{**requirement(gate).__dict__, "nonce": "12345"})
        proof = sign_payment(Account.create().key.hex(), req)

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(proof.encode(), RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Unknown nonce"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [
        "not-base64!!",
        base64.b64encode(b"[1, 2]").decode(),
        base64.b64encode(json.dumps({"from": "0x1"}).encode()).decode(),
    ])
    async def test_malformed_payment(self, header):
        with pytest.raises(PaymentInvalid) as exc:
            await make_gate().verify(header, RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Malformed payment"

    @pytest.mark.asyncio
    async def test_settlement_is_best_effort(self):
        settlement = FakeSettlement(fail=True)
        gate = make_gate(settlement=settlement)
        proof = sign_payment(Account.create().key.hex(), requirement(gate))

        receipt = await gate.verify(proof.encode(), RESOURCE, PaymentAction.TRUST_QUERY)

        assert receipt.tx_hash is None
        assert receipt.status == "verified"
        assert settlement.writes[0]["type"] == "maiat-x402-payment"

    @pytest.mark.asyncio
    async def test_settlement_hash_on_receipt(self):
        gate = make_gate(settlement=FakeSettlement())
        proof = sign_payment(Account.create().key.hex(), requirement(gate))

        receipt = await gate.verify(proof.encode(), RESOURCE, PaymentAction.TRUST_QUERY)

        assert receipt.tx_hash.startswith("0x")
        assert receipt.explorer.endswith(receipt.tx_hash)


class TestDemoPayments:

    @pytest.mark.asyncio
    async def test_demo_disabled_by_default(self):
        with pytest.raises(PaymentInvalid) as exc:
            await make_gate().verify("demo:agent-1", RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Demo payments disabled"

    @pytest.mark.asyncio
    async def test_demo_accepted_when_enabled(self):
        receipt = await make_gate(demo_mode=True).verify("demo:agent-1", RESOURCE, PaymentAction.TRUST_QUERY)
        assert receipt.demo is True
        assert receipt.tx_hash is None
        assert receipt.to_dict()["status"] == "demo"


class TestTxHashPayments:

    TX = "0x" + "ab" * 32

    @pytest.mark.asyncio
    async def test_confirmed_payment_accepted_once(self):
        settlement = FakeSettlement()
        settlement.payments[self.TX] = ChainPayment(self.TX, "0x" + "22" * 20, RECEIVER, int(QUERY_PRICE), True)
        gate = make_gate(settlement=settlement)

        receipt = await gate.verify(self.TX, RESOURCE, PaymentAction.TRUST_QUERY)
        assert receipt.tx_hash == self.TX
        assert receipt.demo is False

        with pytest.raises(PaymentInvalid) as exc:
            await gate.verify(self.TX, RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Nonce already used"

    @pytest.mark.asyncio
    async def test_unknown_tx_rejected(self):
        with pytest.raises(PaymentInvalid) as exc:
            await make_gate(settlement=FakeSettlement()).verify(self.TX, RESOURCE, PaymentAction.TRUST_QUERY)
        assert exc.value.reason == "Payment not confirmed"

    @pytest.mark.asyncio
    async def test_rpc_down_falls_back_to_demo_only_in_demo_mode(self):
        settlement = FakeSettlement()
        settlement.lookup_error = UpstreamDegraded("timeout")

        with pytest.raises(PaymentInvalid):
            await make_gate(settlement=settlement).verify(self.TX, RESOURCE, PaymentAction.TRUST_QUERY)

        receipt = await make_gate(settlement=settlement, demo_mode=True).verify(
            self.TX, RESOURCE, PaymentAction.TRUST_QUERY)
        assert receipt.demo is True
