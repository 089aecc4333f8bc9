"""
Etherscan V2 client (single key, chainid parameter) for ABI and verified source lookups.
Lookup failures come back as descriptive text so the agent can carry on without them.
"""
import json
import httpx
import logging
from typing import Any, Dict, List, Optional, Union

from txdebug.config import ServiceConfig
from txdebug.models import ContractSource, SourceFile

logger = logging.getLogger(__name__)

ETHERSCAN_V2_URL = "https://api.etherscan.io/v2/api"


def _format_inputs(items: List[Dict[str, Any]]) -> str:
    return ", ".join(f"{i.get('type', '')} {i.get('name', '')}".strip() for i in items or [])


def format_abi(address: str, network_id: int, abi: List[Dict[str, Any]]) -> str:
    functions = []
    events = []
    for item in abi:
        if item.get("type") == "function":
            outputs = ", ".join(o.get("type", "") for o in item.get("outputs") or [])
            suffix = f" → ({outputs})" if outputs else ""
            functions.append(f"  {item.get('name')}({_format_inputs(item.get('inputs'))}){suffix}")
        elif item.get("type") == "event":
            events.append(f"  event {item.get('name')}({_format_inputs(item.get('inputs'))})")

    sections = [f"ABI for {address} (network {network_id}):"]
    if functions:
        sections.append("Functions:\n" + "\n".join(functions))
    if events:
        sections.append("Events:\n" + "\n".join(events))
    if not functions and not events:
        sections.append("No public functions or events found.")
    return "\n\n".join(sections)


def _sources_to_files(sources: Dict[str, Any]) -> List[SourceFile]:
    return [
        SourceFile(name=name, content=(entry or {}).get("content", ""))
        for name, entry in sources.items()
    ]


def parse_source_code(raw_source: str, contract_name: str) -> List[SourceFile]:
    """
    Split an Etherscan SourceCode field into files.

    Handles the double-brace Standard JSON wrapper ``{{...}}``, plain Standard JSON
    with a ``sources`` map, and single-file flattened source.
    """
    fallback = [SourceFile(name=f"{contract_name}.sol", content=raw_source)]

    if raw_source.startswith("{{"):
        try:
            parsed = json.loads(raw_source[1:-1])
            return _sources_to_files(parsed.get("sources") or {})
        except (ValueError, AttributeError):
            return fallback

    if raw_source.startswith("{"):
        try:
            parsed = json.loads(raw_source)
        except ValueError:
            return fallback
        if isinstance(parsed, dict) and parsed.get("sources"):
            return _sources_to_files(parsed["sources"])
        return fallback

    return fallback


class EtherscanClient:
    """Client for the Etherscan V2 unified API."""

    def __init__(self, api_key: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key if api_key is not None else ServiceConfig.ETHERSCAN_API_KEY
        self.client = http_client or httpx.AsyncClient(timeout=None)

    async def _get(self, network_id: int, action: str, address: str) -> Dict[str, Any]:
        params = {
            "chainid": str(network_id),
            "module": "contract",
            "action": action,
            "address": address,
            "apikey": self.api_key,
        }
        response = await self.client.get(ETHERSCAN_V2_URL, params=params)
        response.raise_for_status()
        return response.json()

    async def get_contract_abi(self, address: str, network_id: int) -> str:
        if not self.api_key:
            return "ETHERSCAN_API_KEY not configured, ABI lookup unavailable."

        try:
            data = await self._get(network_id, "getabi", address)
            if str(data.get("status")) != "1":
                return f"ABI not available for {address}: {data.get('message') or data.get('result')}"
            abi = json.loads(data.get("result") or "[]")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"ABI lookup failed for {address}: {e}")
            return f"Failed to fetch ABI for {address}: {e}"

        return format_abi(address, network_id, abi)

    async def get_contract_source(self, address: str, network_id: int) -> Union[ContractSource, str]:
        if not self.api_key:
            return "ETHERSCAN_API_KEY not configured, source lookup unavailable."

        try:
            data = await self._get(network_id, "getsourcecode", address)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Source lookup failed for {address}: {e}")
            return f"Failed to fetch source for {address}: {e}"

        result = data.get("result")
        if str(data.get("status")) != "1" or not isinstance(result, list) or not result:
            return f"Source not available for {address}: {data.get('message')} ({result})"

        entry = result[0]
        contract_name = entry.get("ContractName") or "Unknown"
        raw_source = entry.get("SourceCode") or ""
        if not raw_source:
            return f"No source code found for {address} (contract may not be verified)."

        return ContractSource(
            contract_name=contract_name,
            compiler_version=entry.get("CompilerVersion") or "",
            files=parse_source_code(raw_source, contract_name),
        )

    async def close(self):
        await self.client.aclose()
