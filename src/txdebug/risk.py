import re
from typing import List, Optional

from txdebug.models import CallNode, RiskFlag, SemanticAction, TokenFlow
from txdebug.normalizer import flatten_calls
from txdebug.selectors import APPROVE_SELECTORS

MAX_UINT256 = 2 ** 256 - 1
ETH_LARGE_THRESHOLD_WEI = 10 * 10 ** 18
USD_LARGE_THRESHOLD = 50_000
APPROVAL_AMOUNT_PARAMS = ("amount", "value", "_value")


def _parse_amount(text: str) -> Optional[int]:
    try:
        return int(text, 0)
    except (TypeError, ValueError):
        return None


def _is_unlimited(value: str) -> bool:
    if value == "MaxUint256":
        return True
    return _parse_amount(value.strip()) == MAX_UINT256


def check_unlimited_approval(calls: List[CallNode]) -> List[RiskFlag]:
    flags: List[RiskFlag] = []
    for call in calls:
        if call.function_selector not in APPROVE_SELECTORS:
            continue
        amount = next((p for p in call.decoded_inputs if p.name in APPROVAL_AMOUNT_PARAMS), None)
        if amount is not None and _is_unlimited(amount.value):
            flags.append(RiskFlag(
                level="medium",
                type="UNLIMITED_APPROVAL",
                description=(
                    f"Unlimited ERC20 approval granted to {call.callee}. "
                    "This allows the spender to move all tokens at any time."
                ),
                call_id=call.id,
            ))
    return flags


def check_flashloan(actions: List[SemanticAction]) -> List[RiskFlag]:
    return [
        RiskFlag(
            level="medium",
            type="FLASHLOAN_USAGE",
            description=(
                f"Flashloan detected via {a.protocol or 'unknown protocol'}. Flashloans can be used "
                "for legitimate arbitrage but are also used in attack vectors."
            ),
            call_id=a.call_id,
        )
        for a in actions
        if a.type == "Flashloan"
    ]


def check_large_transfers(flows: List[TokenFlow]) -> List[RiskFlag]:
    flags: List[RiskFlag] = []
    for flow in flows:
        if flow.type == "NativeTransfer":
            wei = _parse_amount(flow.raw_amount)
            if wei is not None and wei >= ETH_LARGE_THRESHOLD_WEI:
                flags.append(RiskFlag(
                    level="medium",
                    type="LARGE_ETH_TRANSFER",
                    description=(
                        f"Large ETH transfer of {flow.formatted_amount} ETH "
                        f"from {flow.from_address} to {flow.to_address}."
                    ),
                ))

        if flow.dollar_value:
            try:
                usd = float(re.sub(r"[^0-9.]", "", flow.dollar_value))
            except ValueError:
                continue
            if usd >= USD_LARGE_THRESHOLD:
                flags.append(RiskFlag(
                    level="medium",
                    type="LARGE_TOKEN_TRANSFER",
                    description=(
                        f"Large token transfer of {flow.formatted_amount} {flow.token_symbol} (~${usd:,.2f})."
                    ),
                ))
    return flags


def check_delegatecall(calls: List[CallNode]) -> List[RiskFlag]:
    return [
        RiskFlag(
            level="high",
            type="DELEGATECALL_TO_UNKNOWN",
            description=(
                f"DELEGATECALL to unverified/unlabeled contract {c.callee}. "
                "This allows the callee to execute with the caller's storage context."
            ),
            call_id=c.id,
        )
        for c in calls
        if c.call_type == "DELEGATECALL" and not c.contract_name
    ]


def check_unverified_root(call_tree: CallNode) -> List[RiskFlag]:
    if call_tree.contract_name:
        return []
    return [RiskFlag(
        level="low",
        type="UNVERIFIED_CONTRACT",
        description=(
            f"The top-level call targets contract {call_tree.callee} which has no verified name. "
            "Verify this contract before trusting the transaction."
        ),
    )]


def detect_risks(
    call_tree: CallNode,
    token_flows: List[TokenFlow],
    actions: List[SemanticAction],
) -> List[RiskFlag]:
    calls = flatten_calls(call_tree)
    return (
        check_unlimited_approval(calls)
        + check_flashloan(actions)
        + check_large_transfers(token_flows)
        + check_delegatecall(calls)
        + check_unverified_root(call_tree)
    )
