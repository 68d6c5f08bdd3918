"""
Maiat — On-chain usage probe.

Answers "has this wallet interacted with this contract?" by asking block
explorers (Etherscan-family APIs) for the wallet's transaction history.

Per candidate chain, in table order:
    1. normal transaction list, matching `to` or `from` against the contract
    2. if nothing matched, token transfer list filtered by the contract

The first chain with a match wins. A chain whose explorer times out or
answers with a non-success status simply contributes no match.
"""
import asyncio
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
import structlog

from maiat.errors import ValidationError
from maiat.models import ProjectCategory, UsageProof, is_evm_address
from maiat.trust.tables import CHAIN_CANDIDATES, ChainCandidateTable

logger = structlog.get_logger()

NOT_FOUND_DETAILS = "No on-chain interaction found with this project"
BATCH_SIZE = 3


class UsageProbe:

    def __init__(
        self,
        endpoints: Dict[str, Tuple[str, str]],
        chains: ChainCandidateTable = CHAIN_CANDIDATES,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoints = endpoints
        self.chains = chains
        self.timeout = timeout
        self._transport = transport

    async def verify_usage(
        self,
        wallet: str,
        contract: str,
        category: ProjectCategory,
        deadline: Optional[float] = None,
    ) -> UsageProof:
        """
        Probe candidate chains for an interaction between ``wallet`` and ``contract``.

        ``deadline`` is an absolute ``time.monotonic()`` value; chains not yet
        probed when it passes are skipped.
        """
        if not is_evm_address(wallet):
            raise ValidationError("Invalid wallet address", field="wallet")
        if not is_evm_address(contract):
            raise ValidationError("Invalid contract address", field="contract")

        wallet = wallet.lower()
        contract = contract.lower()

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for chain in self.chains.for_category(category):
                if chain not in self.endpoints:
                    continue
                for action in ("txlist", "tokentx"):
                    budget = self._budget(deadline)
                    if budget <= 0:
                        logger.info("usage_probe_deadline_reached", chain=chain)
                        return UsageProof(verified=False, details=NOT_FOUND_DETAILS)
                    matches = await self._query(client, chain, action, wallet, contract, budget)
                    if matches:
                        return self._proof(chain, matches)

        return UsageProof(verified=False, details=NOT_FOUND_DETAILS)

    async def get_used_projects(self, wallet: str, projects: Iterable) -> List[Tuple[Any, UsageProof]]:
        """Every project (with an on-chain address) the wallet has interacted with."""
        candidates = [p for p in projects if is_evm_address(getattr(p, "address", None))]
        used = []
        for i in range(0, len(candidates), BATCH_SIZE):
            batch = candidates[i:i + BATCH_SIZE]
            proofs = await asyncio.gather(*[
                self.verify_usage(wallet, p.address, p.category) for p in batch
            ])
            used.extend((p, proof) for p, proof in zip(batch, proofs) if proof.verified)
        return used

    def _budget(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.timeout
        return min(self.timeout, deadline - time.monotonic())

    async def _query(
        self,
        client: httpx.AsyncClient,
        chain: str,
        action: str,
        wallet: str,
        contract: str,
        timeout: float,
    ) -> List[Dict[str, Any]]:
        url, api_key = self.endpoints[chain]
        params = {
            "module": "account",
            "action": action,
            "address": wallet,
            "startblock": 0,
            "endblock": 99999999,
            "sort": "desc",
            "apikey": api_key,
        }
        if action == "tokentx":
            params["contractaddress"] = contract

        try:
            resp = await asyncio.wait_for(client.get(url, params=params, timeout=timeout), timeout)
            data = resp.json()
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("usage_probe_chain_failed",
                           chain=chain, action=action, error=str(e) or type(e).__name__)
            return []

        if not isinstance(data, dict) or data.get("status") != "1" or not isinstance(data.get("result"), list):
            logger.debug("usage_probe_no_result", chain=chain, action=action,
                         message=data.get("message") if isinstance(data, dict) else None)
            return []

        if action == "txlist":
            return [
                tx for tx in data["result"]
                if (tx.get("to") or "").lower() == contract or (tx.get("from") or "").lower() == contract
            ]
        return [
            tx for tx in data["result"]
            if (tx.get("contractAddress") or "").lower() == contract
        ]

    @staticmethod
    def _proof(chain: str, matches: List[Dict[str, Any]]) -> UsageProof:
        latest = matches[0]
        try:
            timestamp = int(latest.get("timeStamp", 0)) * 1000
        except (TypeError, ValueError):
            timestamp = None
        count = len(matches)
        logger.info("usage_verified", chain=chain, interactions=count)
        return UsageProof(
            verified=True,
            chain=chain,
            tx_hash=latest.get("hash"),
            timestamp=timestamp,
            interaction_count=count,
            details=f"Found {count} interaction{'s' if count != 1 else ''} on {chain}",
        )
