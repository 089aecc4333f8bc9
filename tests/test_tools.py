import pytest

from conftest import (
    FakeExplorer,
    FakeFoundry,
    FakeSimulator,
    ROUTER,
    TOKEN_A,
    TX_HASH,
    simulation_payload,
)
from txdebug.models import AgentState
from txdebug.normalizer import normalize_call_trace
from txdebug.tools import TOOL_HANDLERS, TOOLS, AgentContext, execute_tool

VAULT = "0x" + "c" * 40


def make_ctx(trace, tx_params, success=True, asset_changes=None, **clients):
    payload = simulation_payload(trace, status=success, asset_changes=asset_changes)
    return AgentContext(
        tx_hash=TX_HASH,
        network_id="1",
        success=success,
        gas_used=150000,
        block_number=19000000,
        call_tree=normalize_call_trace(trace),
        simulation=payload,
        tx_params=tx_params,
        **clients,
    )


def test_catalogue_matches_handlers():
    names = [t["function"]["name"] for t in TOOLS]
    assert sorted(names) == sorted(TOOL_HANDLERS)
    assert len(names) == 11


async def test_unknown_tool(swap_trace, tx_params):
    outcome = await execute_tool(make_ctx(swap_trace, tx_params), AgentState(), "nope", {})
    assert outcome.text == "Unknown tool: nope"
    assert outcome.delta == {}


async def test_flow_action_risk_chain(swap_trace, tx_params, swap_asset_changes):
    ctx = make_ctx(swap_trace, tx_params, asset_changes=swap_asset_changes)
    state = AgentState()

    flows = await execute_tool(ctx, state, "extract_token_flows", {})
    state = state.model_copy(update=flows.delta)
    assert len(state.token_flows) == 2
    assert flows.text.startswith("Transfer: 1.5 TKA")

    actions = await execute_tool(ctx, state, "detect_semantic_actions", {})
    state = state.model_copy(update=actions.delta)
    assert [a.type for a in state.semantic_actions] == ["Swap"]

    risks = await execute_tool(ctx, state, "detect_risks", {})
    assert risks.delta == {"risk_flags": []}
    assert risks.text == "No risk flags detected."


async def test_actions_without_flows_fall_back_to_empty_state(swap_trace, tx_params):
    outcome = await execute_tool(make_ctx(swap_trace, tx_params), AgentState(), "detect_semantic_actions", {})
    assert outcome.delta["semantic_actions"][0].involved_tokens == []


async def test_analyze_failure_tool(swap_trace, failed_trace, tx_params):
    ok = await execute_tool(make_ctx(swap_trace, tx_params), AgentState(), "analyze_failure", {})
    assert ok.text == "Transaction succeeded, no failure to analyze."
    assert ok.delta == {}

    failed = await execute_tool(make_ctx(failed_trace, tx_params, success=False), AgentState(), "analyze_failure", {})
    assert failed.delta["failure_reason"].root_call_id == "call-1"
    assert failed.text.startswith('Revert reason: "ERC20: transfer amount exceeds allowance"')


async def test_call_subtree(swap_trace, tx_params):
    ctx = make_ctx(swap_trace, tx_params)
    sub = await execute_tool(ctx, AgentState(), "get_call_subtree", {"callId": "call-2"})
    assert sub.text.splitlines()[0].startswith("CALL UniswapV2Pair")
    missing = await execute_tool(ctx, AgentState(), "get_call_subtree", {"callId": "call-99"})
    assert missing.text == "No call found with id: call-99"


async def test_external_lookups_use_context_defaults(swap_trace, tx_params):
    explorer, foundry = FakeExplorer(), FakeFoundry()
    ctx = make_ctx(swap_trace, tx_params, explorer=explorer, foundry=foundry)

    await execute_tool(ctx, AgentState(), "get_contract_abi", {"address": ROUTER, "networkId": 137})
    await execute_tool(ctx, AgentState(), "cast_call", {
        "address": TOKEN_A, "functionSignature": "balanceOf(address)", "args": [ROUTER],
    })
    run = await execute_tool(ctx, AgentState(), "cast_run", {})

    assert explorer.calls == [("abi", ROUTER, 137)]
    assert foundry.calls[0] == ("call", TOKEN_A, "balanceOf(address)", [ROUTER], 1, 19000000)
    assert foundry.calls[1] == ("run", TX_HASH, 1)
    assert run.text.startswith("Traces:")


async def test_missing_collaborators_degrade_to_text(swap_trace, tx_params):
    ctx = make_ctx(swap_trace, tx_params)
    assert "not available" in (await execute_tool(ctx, AgentState(), "cast_run", {})).text
    assert "not configured" in (await execute_tool(ctx, AgentState(), "get_contract_abi", {"address": ROUTER})).text


async def test_simulate_with_fix_tool(failed_trace, swap_trace, tx_params):
    simulator = FakeSimulator(simulation_payload(swap_trace))
    ctx = make_ctx(failed_trace, tx_params, success=False, simulator=simulator)

    outcome = await execute_tool(ctx, AgentState(), "simulate_with_fix", {"fix_type": "increase_gas", "gas_multiplier": 3})
    assert "WOULD SUCCEED" in outcome.text
    assert simulator.calls == [("override", 600000, {})]

    bad = await execute_tool(ctx, AgentState(), "simulate_with_fix", {"fix_type": "bribe"})
    assert bad.text == "Unknown fix_type: bribe"

    incomplete = await execute_tool(ctx, AgentState(), "simulate_with_fix", {"fix_type": "set_erc20_allowance"})
    assert "requires token_address and spender_address" in incomplete.text
    assert len(simulator.calls) == 1


@pytest.mark.parametrize("args, expected", [
    ({"functionName": "_payNative"}, "Pass the address"),
    ({"address": "0x123", "functionName": "_payNative"}, "not a valid 42-character"),
    ({"address": VAULT}, "Pass the name of the failing function"),
])
async def test_source_location_argument_checks(swap_trace, tx_params, sample_source, args, expected):
    explorer = FakeExplorer(sample_source)
    outcome = await execute_tool(make_ctx(swap_trace, tx_params, explorer=explorer), AgentState(),
                                 "get_revert_source_location", args)
    assert expected in outcome.text
    assert explorer.calls == []


async def test_source_location_finds_defining_file(swap_trace, tx_params, sample_source):
    ctx = make_ctx(swap_trace, tx_params, explorer=FakeExplorer(sample_source))
    found = await execute_tool(ctx, AgentState(), "get_revert_source_location",
                               {"address": VAULT, "functionName": "_payNative"})
    assert 'Found 1 file(s) defining function "_payNative"' in found.text
    assert "  • src/Vault.sol" in found.text
    assert "```solidity" in found.text
    assert "src/Lib.sol" not in found.text

    missing = await execute_tool(ctx, AgentState(), "get_revert_source_location",
                                 {"address": VAULT, "functionName": "payNative"})
    assert 'No file found containing a definition for function "payNative"' in missing.text
    assert "src/Lib.sol" in missing.text


async def test_source_location_passes_explorer_message_through(swap_trace, tx_params):
    ctx = make_ctx(swap_trace, tx_params, explorer=FakeExplorer("ETHERSCAN_API_KEY not configured, source lookup unavailable."))
    outcome = await execute_tool(ctx, AgentState(), "get_revert_source_location",
                                 {"address": VAULT, "functionName": "x"})
    assert outcome.text.startswith("ETHERSCAN_API_KEY not configured")
