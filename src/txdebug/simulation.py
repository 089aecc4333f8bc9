"""
HTTP client for the Tenderly simulation API.
Runs full EVM simulations and returns call traces, asset changes and balance diffs.
"""
import httpx
import logging
from typing import Any, Dict, Optional

from txdebug.client_protocol import UpstreamError
from txdebug.config import ServiceConfig
from txdebug.models import TxParams

logger = logging.getLogger(__name__)

TENDERLY_BASE_URL = "https://api.tenderly.co/api/v1"


class TenderlyClient:
    """Client for POST /account/{account}/project/{project}/simulate."""

    def __init__(
        self,
        access_key: Optional[str] = None,
        account_slug: Optional[str] = None,
        project_slug: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the simulation client.

        Args:
            access_key: Tenderly access key (defaults to TENDERLY_ACCESS_KEY)
            account_slug: Account slug (defaults to TENDERLY_ACCOUNT_SLUG)
            project_slug: Project slug (defaults to TENDERLY_PROJECT_SLUG)
            http_client: Optional preconfigured httpx client
        """
        self.access_key = access_key or ServiceConfig.TENDERLY_ACCESS_KEY
        self.account_slug = account_slug or ServiceConfig.TENDERLY_ACCOUNT_SLUG
        self.project_slug = project_slug or ServiceConfig.TENDERLY_PROJECT_SLUG
        # no client-side timeout; a stalled simulation stalls the request
        self.client = http_client or httpx.AsyncClient(timeout=None)

    @property
    def simulate_url(self) -> str:
        return f"{TENDERLY_BASE_URL}/account/{self.account_slug}/project/{self.project_slug}/simulate"

    def _base_body(self, params: TxParams, network_id: str) -> Dict[str, Any]:
        return {
            "network_id": str(network_id),
            "block_number": params.block_number - 1,
            "from": params.from_address,
            "to": params.to_address,
            "input": params.input,
            "gas": params.gas,
            "gas_price": params.gas_price,
            "value": params.value,
            "simulation_type": "full",
            "generate_access_list": False,
        }

    async def _simulate(self, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Access-Key": self.access_key,
        }
        logger.info(f"Simulating tx from {body.get('from')} on network {body.get('network_id')} at block {body.get('block_number')}")

        try:
            response = await self.client.post(self.simulate_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamError("tenderly", f"Tenderly request failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError("tenderly", f"Tenderly API error {response.status_code}: {response.text}")

        data = response.json()
        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise UpstreamError("tenderly", f"Tenderly error: {error.get('message')} ({error.get('slug')})")
            raise UpstreamError("tenderly", f"Tenderly error: {error}")

        if not isinstance(data.get("transaction"), dict):
            raise UpstreamError("tenderly", "Tenderly response is missing the transaction payload")
        return data

    async def simulate_transaction(self, params: TxParams, network_id: str) -> Dict[str, Any]:
        """
        Simulate the original transaction against the state just before its block.

        Returns:
            Raw simulation response (``transaction.transaction_info.call_trace`` etc.)
        """
        body = self._base_body(params, network_id)
        body.update({"save": True, "save_if_fails": True})
        return await self._simulate(body)

    async def simulate_with_overrides(
        self,
        params: TxParams,
        network_id: str,
        gas_override: Optional[int],
        state_objects: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Re-simulate with a gas limit override and/or state_objects overrides
        (storage slots, balances).
        """
        body = self._base_body(params, network_id)
        body.update({"save": False, "save_if_fails": False})
        if gas_override is not None:
            body["gas"] = gas_override
        if state_objects:
            body["state_objects"] = state_objects
        return await self._simulate(body)

    async def close(self):
        await self.client.aclose()
