"""
Protocol definitions for external collaborators.
Lets the analyzer run against the live HTTP/RPC clients or in-memory fakes interchangeably.
"""
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from txdebug.models import ContractSource, TxParams


class UpstreamError(RuntimeError):
    """An external service (chain, simulator, explorer, model) failed or refused the request."""

    def __init__(self, service: str, message: str):
        super().__init__(message)
        self.service = service


@runtime_checkable
class ChainClientProtocol(Protocol):
    """Protocol for JSON-RPC chain providers."""

    async def fetch_tx_params(self, tx_hash: str, network_id: str) -> TxParams:
        """Transaction + receipt lookup by hash."""
        ...


@runtime_checkable
class SimulationClientProtocol(Protocol):
    """Protocol for transaction simulation services."""

    async def simulate_transaction(self, params: TxParams, network_id: str) -> Dict[str, Any]:
        """Simulate the transaction as mined at block_number - 1."""
        ...

    async def simulate_with_overrides(
        self,
        params: TxParams,
        network_id: str,
        gas_override: Optional[int],
        state_objects: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Re-simulate with a gas override and/or state overrides."""
        ...


@runtime_checkable
class ExplorerClientProtocol(Protocol):
    """Protocol for contract explorers (ABI / verified source)."""

    async def get_contract_abi(self, address: str, network_id: int) -> str:
        """Formatted ABI listing, or a descriptive message when unavailable."""
        ...

    async def get_contract_source(self, address: str, network_id: int) -> Union[ContractSource, str]:
        """Verified source files, or a descriptive message when unavailable."""
        ...


@runtime_checkable
class FoundryClientProtocol(Protocol):
    """Protocol for the local cast executable."""

    async def cast_run(self, tx_hash: str, network_id: int) -> str:
        ...

    async def cast_call(
        self,
        address: str,
        function_signature: str,
        args: List[str],
        network_id: int,
        block_number: int,
    ) -> str:
        ...
