"""
Re-simulate a transaction with a hypothetical fix (gas, ETH balance, ERC20 allowance)
and report whether it would have succeeded.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Tuple

from eth_abi import encode
from eth_utils import keccak, to_checksum_address, to_hex

from txdebug.client_protocol import SimulationClientProtocol
from txdebug.models import (
    FixDescriptor,
    FixResult,
    IncreaseGasFix,
    SetErc20AllowanceFix,
    SetEthBalanceFix,
    TxParams,
)
from txdebug.normalizer import last_failed_call, normalize_call_trace

logger = logging.getLogger(__name__)

MAX_UINT256_HEX = "0x" + "f" * 64
WEI_PER_ETHER = Decimal(10) ** 18


def erc20_allowance_slot(owner: str, spender: str, mapping_slot: int = 1) -> str:
    """
    Storage slot of ``_allowances[owner][spender]``.

    OpenZeppelin ERC20 keeps the mapping at slot 1; older or custom tokens
    often use 0 or 2.
    """
    inner = keccak(encode(["address", "uint256"], [to_checksum_address(owner), mapping_slot]))
    return to_hex(keccak(encode(["address", "bytes32"], [to_checksum_address(spender), inner])))


def build_fix_overrides(
    params: TxParams, fix: FixDescriptor
) -> Tuple[Optional[int], Dict[str, Any], str]:
    """Translate a fix descriptor into (gas override, state_objects, description)."""
    if isinstance(fix, IncreaseGasFix):
        new_gas = int((Decimal(params.gas) * Decimal(str(fix.multiplier))).quantize(Decimal(1), rounding=ROUND_HALF_UP))
        return new_gas, {}, f"Gas limit increased {fix.multiplier:g}x: {params.gas:,} → {new_gas:,}"

    if isinstance(fix, SetEthBalanceFix):
        wei = int(Decimal(str(fix.amount_eth)) * WEI_PER_ETHER)
        state = {params.from_address: {"balance": hex(wei)}}
        return None, state, f"Sender ETH balance set to {fix.amount_eth:g} ETH"

    if isinstance(fix, SetErc20AllowanceFix):
        slot = erc20_allowance_slot(params.from_address, fix.spender, fix.mapping_slot)
        state = {fix.token_address: {"storage": {slot: MAX_UINT256_HEX}}}
        description = (
            f"ERC20 allowance set to MaxUint256 (token: {fix.token_address}, "
            f"owner: {params.from_address[:10]}..., spender: {fix.spender[:10]}..., slot {fix.mapping_slot})"
        )
        return None, state, description

    raise ValueError(f"Unknown fix type: {getattr(fix, 'type', fix)}")


async def simulate_with_fix(
    simulator: SimulationClientProtocol,
    params: TxParams,
    network_id: str,
    fix: FixDescriptor,
) -> FixResult:
    gas_override, state_objects, description = build_fix_overrides(params, fix)
    logger.info(f"Simulating fix: {description}")

    simulation = await simulator.simulate_with_overrides(params, network_id, gas_override, state_objects)
    tx = simulation.get("transaction") or {}
    succeeded = bool(tx.get("status"))

    revert_reason = None
    if not succeeded:
        call_trace = (tx.get("transaction_info") or {}).get("call_trace")
        failed = last_failed_call(normalize_call_trace(call_trace)) if call_trace else None
        error_info = tx.get("error_info") or {}
        revert_reason = (
            (failed.revert_reason if failed else None)
            or error_info.get("error_message")
            or "Unknown revert"
        )

    return FixResult(
        would_succeed=succeeded,
        gas_used=int(tx.get("gas_used") or 0),
        revert_reason=revert_reason,
        fix_description=description,
    )


def format_fix_result(result: FixResult) -> str:
    status = "✓ WOULD SUCCEED" if result.would_succeed else "✗ STILL FAILS"
    lines = [
        f"Fix applied: {result.fix_description}",
        f"Result: {status} (gas used: {result.gas_used:,})",
    ]
    if not result.would_succeed and result.revert_reason:
        lines.append(f'Revert reason: "{result.revert_reason}"')
    return "\n".join(lines)
