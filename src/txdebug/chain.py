"""
JSON-RPC chain provider: original transaction parameters by hash.
"""
import asyncio
import logging
from typing import Dict, Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound

from txdebug.client_protocol import UpstreamError
from txdebug.config import get_rpc_url
from txdebug.models import TxParams

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ChainClient:
    """Fetches tx + receipt through web3 HTTP providers, one per network."""

    def __init__(self, rpc_urls: Optional[Dict[str, str]] = None):
        self._rpc_urls = dict(rpc_urls or {})
        self._providers: Dict[str, Web3] = {}

    def _web3(self, network_id: str) -> Web3:
        if network_id not in self._providers:
            rpc_url = self._rpc_urls.get(network_id) or get_rpc_url(network_id)
            self._providers[network_id] = Web3(Web3.HTTPProvider(rpc_url))
        return self._providers[network_id]

    def _fetch(self, tx_hash: str, network_id: str) -> TxParams:
        w3 = self._web3(network_id)
        try:
            tx = w3.eth.get_transaction(tx_hash)
            receipt = w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as e:
            raise UpstreamError("chain", f"Transaction {tx_hash} not found on network {network_id}") from e

        raw_input = tx.get("input") or b""
        call_input = raw_input if isinstance(raw_input, str) else Web3.to_hex(raw_input)
        gas_price = tx.get("gasPrice") or tx.get("maxFeePerGas") or 0

        return TxParams(
            from_address=tx["from"],
            to_address=tx.get("to") or ZERO_ADDRESS,
            input=call_input,
            gas=int(tx["gas"]),
            gas_price=str(gas_price),
            value=int(tx.get("value") or 0),
            block_number=int(receipt["blockNumber"]),
            nonce=int(tx.get("nonce") or 0),
            on_chain_status=receipt.get("status") == 1,
            gas_used=int(receipt.get("gasUsed") or 0),
        )

    async def fetch_tx_params(self, tx_hash: str, network_id: str) -> TxParams:
        logger.info(f"Fetching tx {tx_hash} from network {network_id}")
        network_id = str(network_id)
        # unknown networks surface as ValueError before any RPC traffic
        self._web3(network_id)
        try:
            return await asyncio.to_thread(self._fetch, tx_hash, network_id)
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError("chain", f"RPC lookup failed for {tx_hash}: {e}") from e
