import re

import pytest

from conftest import FakeSimulator, ROUTER, TOKEN_A, USER, raw_call, simulation_payload
from txdebug.fix_simulator import (
    MAX_UINT256_HEX,
    build_fix_overrides,
    erc20_allowance_slot,
    format_fix_result,
    simulate_with_fix,
)
from txdebug.models import IncreaseGasFix, SetErc20AllowanceFix, SetEthBalanceFix


def test_allowance_slot_shape_and_inputs():
    slot = erc20_allowance_slot(USER, ROUTER)
    assert re.match(r"^0x[0-9a-f]{64}$", slot)
    assert slot == erc20_allowance_slot(USER, "0x" + ROUTER[2:].upper())
    assert slot != erc20_allowance_slot(USER, ROUTER, mapping_slot=0)
    assert slot != erc20_allowance_slot(ROUTER, USER)


def test_gas_override(tx_params):
    gas, state, description = build_fix_overrides(tx_params, IncreaseGasFix(multiplier=2))
    assert gas == 400000
    assert state == {}
    assert description == "Gas limit increased 2x: 200,000 → 400,000"


def test_gas_override_rounds_half_up(tx_params):
    gas, _, _ = build_fix_overrides(tx_params.model_copy(update={"gas": 3}), IncreaseGasFix(multiplier=1.5))
    assert gas == 5


def test_eth_balance_override(tx_params):
    gas, state, description = build_fix_overrides(tx_params, SetEthBalanceFix())
    assert gas is None
    assert state == {USER: {"balance": "0x56bc75e2d63100000"}}
    assert description == "Sender ETH balance set to 100 ETH"


def test_allowance_override(tx_params):
    fix = SetErc20AllowanceFix(token_address=TOKEN_A, spender=ROUTER)
    _, state, description = build_fix_overrides(tx_params, fix)
    slot = erc20_allowance_slot(USER, ROUTER, 1)
    assert state == {TOKEN_A: {"storage": {slot: MAX_UINT256_HEX}}}
    assert "slot 1" in description


async def test_fix_that_works(tx_params, swap_trace):
    simulator = FakeSimulator(simulation_payload(swap_trace))
    result = await simulate_with_fix(simulator, tx_params, "1", IncreaseGasFix())
    assert result.would_succeed is True
    assert result.revert_reason is None
    assert result.gas_used == 150000
    assert simulator.calls == [("override", 400000, {})]
    assert format_fix_result(result).splitlines()[1] == "Result: ✓ WOULD SUCCEED (gas used: 150,000)"


async def test_fix_that_still_fails(tx_params, failed_trace):
    simulator = FakeSimulator(simulation_payload(failed_trace, status=False))
    result = await simulate_with_fix(simulator, tx_params, "1", SetEthBalanceFix(amount_eth=5))
    assert result.would_succeed is False
    assert result.revert_reason == "ERC20: transfer amount exceeds allowance"
    assert 'Revert reason: "ERC20: transfer amount exceeds allowance"' in format_fix_result(result)


async def test_still_fails_without_trace_uses_error_info(tx_params):
    payload = {"transaction": {"status": False, "gas_used": 0, "error_info": {"error_message": "out of gas"}}}
    result = await simulate_with_fix(FakeSimulator(payload), tx_params, "1", IncreaseGasFix(multiplier=1.5))
    assert result.revert_reason == "out of gas"
    assert result.fix_description == "Gas limit increased 1.5x: 200,000 → 300,000"
