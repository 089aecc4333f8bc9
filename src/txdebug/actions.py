"""
Semantic action detection.

Every node of the call tree (pre-order) runs through an ordered cascade of
predicates; the first match wins and a node yields at most one action.
"""
from typing import Callable, Iterable, List, Optional, Set, Tuple

from txdebug.models import CallNode, SemanticAction, TokenFlow
from txdebug.normalizer import flatten_calls
from txdebug.selectors import (
    APPROVE_SELECTORS,
    BRIDGE_ADDRESSES,
    FLASHLOAN_SELECTORS,
    LIQUIDATION_SELECTORS,
    MULTICALL_SELECTORS,
    SWAP_SELECTORS,
)

AMM_NAME_HINTS = ("router", "swap", "pool", "pair")
LENDING_NAME_HINTS = ("lending", "aave", "compound", "pool")


def _unique(items: Iterable[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen


def _addresses(call: CallNode) -> List[str]:
    return _unique([call.caller, call.callee])


def _subtree_callees(call: CallNode) -> Set[str]:
    return {node.callee for node in flatten_calls(call)}


def _subtree_transfers(call: CallNode, flows: List[TokenFlow]) -> List[TokenFlow]:
    """Transfer flows whose token contract is invoked inside this call's subtree."""
    callees = _subtree_callees(call)
    return [f for f in flows if f.type == "Transfer" and f.token_address in callees]


def detect_flashloan(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    if call.function_selector not in FLASHLOAN_SELECTORS:
        return None
    return SemanticAction(
        type="Flashloan",
        protocol=call.protocol,
        call_id=call.id,
        description=f"Flashloan via {call.protocol or call.contract_name or call.callee}",
        involved_addresses=_addresses(call),
    )


def detect_swap(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    selector = call.function_selector
    if selector in SWAP_SELECTORS:
        attributed = _subtree_transfers(call, flows) or flows
        return SemanticAction(
            type="Swap",
            protocol=call.protocol,
            call_id=call.id,
            description=f"{call.protocol or 'Unknown'} swap via {call.function_name or selector}",
            involved_tokens=_unique(f.token_symbol for f in attributed),
            involved_addresses=_addresses(call),
        )

    name = (call.contract_name or "").lower()
    if not any(hint in name for hint in AMM_NAME_HINTS):
        return None

    transfers = _subtree_transfers(call, flows)
    if len({f.token_address for f in transfers}) < 2:
        return None
    return SemanticAction(
        type="Swap",
        protocol=call.protocol or call.contract_name,
        call_id=call.id,
        description=f"Token swap on {call.contract_name or call.callee}",
        involved_tokens=_unique(f.token_symbol for f in transfers),
        involved_addresses=_addresses(call),
    )


def detect_approve(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    if call.function_selector not in APPROVE_SELECTORS:
        return None

    spender = next(
        (p.value for p in call.decoded_inputs if p.name == "spender" or p.type == "address"),
        None,
    ) or call.callee
    amount = next(
        (p.value for p in call.decoded_inputs if p.name in ("amount", "value")),
        None,
    ) or "unknown"

    return SemanticAction(
        type="Approve",
        protocol="ERC20",
        call_id=call.id,
        description=f"Token approval to {spender} for amount {amount}",
        involved_addresses=_unique([call.caller, call.callee, spender]),
    )


def detect_multicall(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    if call.function_selector not in MULTICALL_SELECTORS:
        return None
    return SemanticAction(
        type="Multicall",
        protocol=call.protocol,
        call_id=call.id,
        description=f"Multicall with {len(call.children)} sub-calls",
        involved_addresses=_addresses(call),
    )


def detect_bridge(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    name = (call.contract_name or "").lower()
    fn = (call.function_name or "").lower()
    named_bridge = "bridge" in name and ("bridge" in fn or "deposit" in fn)

    if call.callee not in BRIDGE_ADDRESSES and not named_bridge:
        return None
    return SemanticAction(
        type="Bridge",
        protocol=call.contract_name,
        call_id=call.id,
        description=f"Cross-chain bridge operation via {call.contract_name or call.callee}",
        involved_addresses=_addresses(call),
    )


def detect_liquidation(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    fn = (call.function_name or "").lower()
    if "liquidat" not in fn and call.function_selector not in LIQUIDATION_SELECTORS:
        return None
    return SemanticAction(
        type="Liquidation",
        protocol=call.protocol or call.contract_name,
        call_id=call.id,
        description=f"Liquidation on {call.contract_name or call.callee}",
        involved_addresses=_addresses(call),
    )


def detect_deposit_withdraw(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    name = (call.contract_name or "").lower()
    if not any(hint in name for hint in LENDING_NAME_HINTS):
        return None

    fn = (call.function_name or "").lower()
    target = call.contract_name or call.callee
    if "deposit" in fn or "supply" in fn:
        action_type, description = "Deposit", f"Deposit/supply to {target}"
    elif "withdraw" in fn or "redeem" in fn:
        action_type, description = "Withdraw", f"Withdrawal from {target}"
    else:
        return None

    return SemanticAction(
        type=action_type,
        protocol=call.protocol or call.contract_name,
        call_id=call.id,
        description=description,
        involved_tokens=_unique(f.token_symbol for f in flows),
        involved_addresses=_addresses(call),
    )


# Order is precedence.
DETECTORS: Tuple[Callable[[CallNode, List[TokenFlow]], Optional[SemanticAction]], ...] = (
    detect_flashloan,
    detect_swap,
    detect_approve,
    detect_multicall,
    detect_bridge,
    detect_liquidation,
    detect_deposit_withdraw,
)


def classify_call(call: CallNode, flows: List[TokenFlow]) -> Optional[SemanticAction]:
    for detector in DETECTORS:
        action = detector(call, flows)
        if action is not None:
            return action
    return None


def detect_semantic_actions(call_tree: CallNode, token_flows: List[TokenFlow]) -> List[SemanticAction]:
    actions: List[SemanticAction] = []
    seen: Set[Tuple[Optional[str], Optional[str], int]] = set()

    for call in flatten_calls(call_tree):
        key = (call.protocol, call.function_selector, call.depth)
        if key in seen:
            continue
        action = classify_call(call, token_flows)
        if action is not None:
            actions.append(action)
            seen.add(key)

    if not actions:
        transfers = [f for f in token_flows if f.type == "Transfer"]
        if transfers:
            actions.append(SemanticAction(
                type="Transfer",
                protocol="ERC20",
                call_id=call_tree.id,
                description=f"Token transfer of {', '.join(f.token_symbol for f in transfers)}",
                involved_tokens=_unique(f.token_symbol for f in transfers),
                involved_addresses=_unique(
                    addr for f in transfers for addr in (f.from_address, f.to_address)
                ),
            ))

    return actions
