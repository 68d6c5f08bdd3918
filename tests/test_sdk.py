import pytest
from eth_account import Account
from fastapi.testclient import TestClient

from maiat.main import create_app
from maiat_client import PaymentRejected, ProjectNotFound, TrustClient
from tests.conftest import run, seed_reviews


class TestTrustClient:

    def test_pays_and_scores(self, services, store, uniswap):
        run(seed_reviews(store, uniswap, [5, 5, 5, 4, 4, 4], verified=2,
                         upvotes=[2, 2, 2, 2, 1, 1], reputation=200))
        agent = Account.create()
        maiat = TrustClient(private_key=agent.key.hex(), client=TestClient(create_app(services=services)))

        result = maiat.score("uniswap")

        assert result.score == 57
        assert result.needs_review
        assert result.payment["payer"] == agent.address
        assert result.breakdown["aiQuality"] == 90

    def test_verify_review(self, services, store, uniswap):
        reviews = run(seed_reviews(store, uniswap, [4]))
        maiat = TrustClient(private_key=Account.create().key.hex(),
                            client=TestClient(create_app(services=services)))

        proof = maiat.verify_review(reviews[0].id)

        assert proof.tx_hash.startswith("0x")
        assert proof.already_verified is False

    def test_not_found(self, services):
        maiat = TrustClient(private_key=Account.create().key.hex(),
                            client=TestClient(create_app(services=services)))
        with pytest.raises(ProjectNotFound):
            maiat.score("ghost")

    def test_demo_rejected_by_strict_server(self, services, store, coffee):
        run(store.add_project(coffee))
        maiat = TrustClient(demo_id="agent-7", client=TestClient(create_app(services=services)))
        with pytest.raises(PaymentRejected) as exc:
            maiat.score("jerrys-coffee")
        assert exc.value.reason == "Demo payments disabled"

    def test_requires_a_way_to_pay(self):
        with pytest.raises(ValueError):
            TrustClient()
