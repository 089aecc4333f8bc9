"""
Trace normalization: raw simulator call trace -> CallNode tree.

Nodes are allocated into a request-local arena during a single pre-order walk;
the arena index is the node id, so there is no module-level counter.
"""
import json
from typing import Any, Dict, List, Optional

from txdebug.models import CallNode, DecodedParam
from txdebug.selectors import lookup_selector

CALL_TYPES = {"CALL", "DELEGATECALL", "STATICCALL", "CREATE", "CREATE2"}


def extract_selector(call_input: Optional[str]) -> Optional[str]:
    if call_input and len(call_input) >= 10:
        return call_input[:10].lower()
    return None


def serialize_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def _map_params(params: Optional[List[Dict[str, Any]]]) -> List[DecodedParam]:
    if not params:
        return []
    return [
        DecodedParam(
            name=p.get("name") or "",
            type=p.get("type") or "",
            value=serialize_value(p.get("value")),
        )
        for p in params
        if isinstance(p, dict)
    ]


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _make_node(raw: Dict[str, Any], index: int, depth: int) -> CallNode:
    selector = extract_selector(raw.get("input"))
    info = lookup_selector(selector)
    call_type = str(raw.get("type") or "CALL").upper()
    error = raw.get("error")
    value = raw.get("value")

    return CallNode(
        id=f"call-{index}",
        depth=depth,
        call_type=call_type if call_type in CALL_TYPES else "CALL",
        caller=(raw.get("from") or "").lower(),
        callee=(raw.get("to") or "").lower(),
        contract_name=raw.get("contract_name") or None,
        function_name=raw.get("function_name") or (info.function_signature if info else None),
        function_selector=selector,
        decoded_inputs=_map_params(raw.get("decoded_input")),
        decoded_outputs=_map_params(raw.get("decoded_output")),
        gas_used=_to_int(raw.get("gas_used")),
        value_wei=serialize_value(value) if value is not None else "0x0",
        success=not error,
        revert_reason=raw.get("error_reason") or error or None,
        protocol=info.protocol if info else None,
        action=info.action if info else None,
    )


def build_call_arena(raw_trace: Dict[str, Any]) -> List[CallNode]:
    """
    Walk the raw trace in pre-order and return the node arena.
    arena[0] is the root; arena[i].id == f"call-{i}".
    """
    arena: List[CallNode] = []
    # (raw record, depth, parent arena index)
    stack = [(raw_trace, 0, None)]

    while stack:
        raw, depth, parent_index = stack.pop()
        index = len(arena)
        node = _make_node(raw, index, depth)
        arena.append(node)
        if parent_index is not None:
            arena[parent_index].children.append(node)

        children = raw.get("calls") or []
        for child in reversed(children):
            if isinstance(child, dict):
                stack.append((child, depth + 1, index))

    return arena


def normalize_call_trace(raw_trace: Dict[str, Any]) -> CallNode:
    if not isinstance(raw_trace, dict):
        raise ValueError("Call trace must be a JSON object")
    return build_call_arena(raw_trace)[0]


# ─── Tree helpers ─────────────────────────────────────────────────────────────

def flatten_calls(root: CallNode) -> List[CallNode]:
    """Pre-order list of every node in the tree."""
    ordered: List[CallNode] = []
    stack = [root]
    while stack:
        node = stack.pop()
        ordered.append(node)
        stack.extend(reversed(node.children))
    return ordered


def find_call_by_id(root: CallNode, call_id: str) -> Optional[CallNode]:
    for node in flatten_calls(root):
        if node.id == call_id:
            return node
    return None


def last_failed_call(root: CallNode) -> Optional[CallNode]:
    """Last failed node carrying a non-empty revert reason, in pre-order."""
    found = None
    for node in flatten_calls(root):
        if not node.success and node.revert_reason:
            found = node
    return found
