"""
Maiat — Settlement chain client.

Writes self-addressed transactions whose calldata is a JSON attestation
(payment receipts, paid review verifications) and looks up payment
transactions presented as raw hashes. A write returns the tx hash as soon
as the node accepts the raw transaction; inclusion is not awaited. Nothing
here blocks a caller past its timeout; failures surface as UpstreamDegraded.
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from maiat.errors import ConfigurationMissing, UpstreamDegraded

logger = structlog.get_logger()


@dataclass(frozen=True)
class ChainPayment:
    tx_hash: str
    sender: str
    receiver: str
    value: int
    succeeded: bool


def encode_attestation(payload: Dict[str, Any]) -> str:
    return Web3.to_hex(text=json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))


class SettlementChain:

    def __init__(
        self,
        rpc_url: str,
        private_key: str = "",
        chain_id: Optional[int] = None,
        timeout: float = 10.0,
        explorer_url: str = "",
        w3: Optional[AsyncWeb3] = None,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout = timeout
        self.explorer_url = explorer_url
        self._account = Account.from_key(private_key) if private_key else None
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

    @property
    def can_write(self) -> bool:
        return self._account is not None

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def explorer_link(self, tx_hash: Optional[str]) -> Optional[str]:
        if not tx_hash or not self.explorer_url:
            return None
        return f"{self.explorer_url}{tx_hash}"

    async def send_self_attestation(self, payload: Dict[str, Any]) -> str:
        """Send a zero-value tx to our own address carrying ``payload`` as calldata."""
        if not self.can_write:
            raise ConfigurationMissing("Settlement signer is not configured")
        try:
            return await asyncio.wait_for(self._send(payload), self.timeout)
        except asyncio.TimeoutError:
            raise UpstreamDegraded("Settlement write timed out")
        except (ConfigurationMissing, UpstreamDegraded):
            raise
        except Exception as e:
            raise UpstreamDegraded(f"Settlement write failed: {e}")

    async def _send(self, payload: Dict[str, Any]) -> str:
        address = self._account.address
        tx = {
            "from": address,
            "to": address,
            "value": 0,
            "data": encode_attestation(payload),
            "nonce": await self._w3.eth.get_transaction_count(address, "pending"),
            "gasPrice": await self._w3.eth.gas_price,
            "chainId": self.chain_id or await self._w3.eth.chain_id,
        }
        tx["gas"] = await self._w3.eth.estimate_gas(tx)
        signed = self._account.sign_transaction(tx)
        tx_hash = Web3.to_hex(await self._w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info("settlement_tx_sent", tx_hash=tx_hash, kind=payload.get("type"))
        return tx_hash

    async def lookup_payment(self, tx_hash: str) -> Optional[ChainPayment]:
        """None if the chain does not know the transaction (yet)."""
        try:
            return await asyncio.wait_for(self._lookup(tx_hash), self.timeout)
        except TransactionNotFound:
            return None
        except asyncio.TimeoutError:
            raise UpstreamDegraded("Settlement RPC timed out")
        except Exception as e:
            raise UpstreamDegraded(f"Settlement RPC failed: {e}")

    async def _lookup(self, tx_hash: str) -> ChainPayment:
        receipt = await self._w3.eth.get_transaction_receipt(tx_hash)
        tx = await self._w3.eth.get_transaction(tx_hash)
        return ChainPayment(
            tx_hash=tx_hash,
            sender=(tx.get("from") or "").lower(),
            receiver=(tx.get("to") or "").lower(),
            value=int(tx.get("value") or 0),
            succeeded=receipt.get("status") == 1,
        )
