from conftest import PAIR, ROUTER, TOKEN_A, USER, raw_call
from txdebug.models import SemanticAction, TokenFlow
from txdebug.normalizer import normalize_call_trace
from txdebug.risk import (
    MAX_UINT256,
    check_large_transfers,
    check_unlimited_approval,
    detect_risks,
)
from txdebug.normalizer import flatten_calls


def approve_tree(amount: str):
    return normalize_call_trace(raw_call(ROUTER, contract_name="Router", calls=[
        raw_call(TOKEN_A, "0x095ea7b3", frm=ROUTER, contract_name="TokenA", decoded_input=[
            {"name": "spender", "type": "address", "value": PAIR},
            {"name": "amount", "type": "uint256", "value": amount},
        ]),
    ]))


def native_flow(wei: int) -> TokenFlow:
    return TokenFlow(
        type="NativeTransfer", from_address=USER, to_address=PAIR,
        token_address="0x" + "e" * 40, token_symbol="ETH",
        raw_amount=str(wei), formatted_amount="x",
    )


def test_unlimited_approval_exact_max_only():
    flagged = check_unlimited_approval(flatten_calls(approve_tree(str(MAX_UINT256))))
    assert len(flagged) == 1
    assert flagged[0].level == "medium"
    assert flagged[0].type == "UNLIMITED_APPROVAL"
    assert flagged[0].call_id == "call-1"

    assert check_unlimited_approval(flatten_calls(approve_tree(str(MAX_UINT256 - 1)))) == []
    assert len(check_unlimited_approval(flatten_calls(approve_tree(hex(MAX_UINT256))))) == 1


def test_large_eth_threshold_is_inclusive():
    assert len(check_large_transfers([native_flow(10 * 10 ** 18)])) == 1
    assert check_large_transfers([native_flow(9_999_999 * 10 ** 12)]) == []


def test_large_usd_transfer():
    flow = TokenFlow(
        type="Transfer", from_address=USER, to_address=PAIR, token_address=TOKEN_A,
        token_symbol="TKA", dollar_value="$50,000.00",
    )
    flags = check_large_transfers([flow])
    assert [f.type for f in flags] == ["LARGE_TOKEN_TRANSFER"]

    small = flow.model_copy(update={"dollar_value": "49999.99"})
    assert check_large_transfers([small]) == []


def test_delegatecall_to_unnamed_contract_is_high():
    root = normalize_call_trace(raw_call(ROUTER, contract_name="Proxy", calls=[
        raw_call(TOKEN_A, frm=ROUTER, type="DELEGATECALL"),
        raw_call(PAIR, frm=ROUTER, type="DELEGATECALL", contract_name="Impl"),
    ]))
    flags = detect_risks(root, [], [])
    assert [(f.level, f.type, f.call_id) for f in flags] == [("high", "DELEGATECALL_TO_UNKNOWN", "call-1")]


def test_unverified_root_and_flashloan():
    root = normalize_call_trace(raw_call(ROUTER))
    flashloan = SemanticAction(type="Flashloan", protocol="Aave V2", call_id="call-0", description="Flashloan")
    flags = detect_risks(root, [], [flashloan])
    assert [f.type for f in flags] == ["FLASHLOAN_USAGE", "UNVERIFIED_CONTRACT"]
    assert flags[1].level == "low"


def test_clean_transaction_has_no_flags(swap_trace):
    assert detect_risks(normalize_call_trace(swap_trace), [], []) == []
