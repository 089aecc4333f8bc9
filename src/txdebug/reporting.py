"""
Text renderings of analysis artefacts, for the model transcript, the CLI and run logs.
"""
import json
from typing import Any, Dict, List, Optional, Set

from txdebug.models import (
    AnalysisResult,
    CallNode,
    FailureReason,
    RiskFlag,
    SemanticAction,
    TokenFlow,
)

SECTION_WIDTH = 76
BANNER_WIDTH = 80


# ─── Call tree ────────────────────────────────────────────────────────────────

def find_revert_path(node: CallNode, current: Optional[List[str]] = None) -> List[str]:
    """Ids from the root down to the deepest failed call, or [] if nothing failed."""
    path = (current or []) + [node.id]
    for child in node.children:
        deeper = find_revert_path(child, path)
        if deeper:
            return deeper
    return path if not node.success else []


def format_call_line(node: CallNode, indent: int, origin_id: str = "") -> str:
    contract = f"{node.contract_name} [{node.callee}]" if node.contract_name else node.callee
    if node.function_name:
        fn = "." + node.function_name.split("(")[0]
    elif node.function_selector:
        fn = f"[{node.function_selector}]"
    else:
        fn = ""
    protocol = f" [{node.protocol}]" if node.protocol else ""
    status = "✓" if node.success else "✗ REVERT"
    revert = f' — "{node.revert_reason.strip()}"' if not node.success and node.revert_reason else ""
    marker = " ◄ REVERT ORIGIN" if node.id == origin_id else ""
    return (
        f"{'  ' * indent}{node.call_type} {contract}{fn}{protocol} | "
        f"{node.gas_used:,} gas | {status}{revert}{marker}"
    )


def _render(
    node: CallNode,
    depth: int,
    lines: List[str],
    max_depth: int,
    max_lines: int,
    revert_path: Set[str],
    origin_id: str,
):
    on_path = node.id in revert_path
    if not on_path and len(lines) >= max_lines:
        return

    lines.append(format_call_line(node, depth, origin_id))

    if depth < max_depth or on_path:
        for child in node.children:
            if child.id not in revert_path and not on_path and len(lines) >= max_lines:
                lines.append(f"{'  ' * (depth + 1)}... (truncated)")
                break
            _render(child, depth + 1, lines, max_depth, max_lines, revert_path, origin_id)
    elif node.children:
        lines.append(f"{'  ' * (depth + 1)}... ({len(node.children)} more calls)")


def build_call_tree_text(
    root: CallNode,
    max_depth: int = 6,
    max_lines: int = 80,
    highlight_revert: bool = True,
) -> str:
    """
    Indented call tree. Nodes on the revert path (and their direct children)
    ignore the depth and line caps.
    """
    revert_path = find_revert_path(root) if highlight_revert else []
    origin_id = revert_path[-1] if revert_path else ""
    lines: List[str] = []
    _render(root, 0, lines, max_depth, max_lines, set(revert_path), origin_id)
    return "\n".join(lines)


# ─── Collections ──────────────────────────────────────────────────────────────

def format_token_flows(flows: List[TokenFlow]) -> str:
    if not flows:
        return "No token flows detected."
    lines = []
    for f in flows:
        line = f"{f.type}: {f.formatted_amount} {f.token_symbol} from {f.from_address} to {f.to_address}"
        if f.dollar_value:
            line += f" (~${f.dollar_value})"
        lines.append(line)
    return "\n".join(lines)


def format_actions(actions: List[SemanticAction]) -> str:
    if not actions:
        return "No high-level DeFi actions detected."
    return "\n".join(
        f"{a.type}{f' via {a.protocol}' if a.protocol else ''}: {a.description}"
        for a in actions
    )


def format_risks(flags: List[RiskFlag]) -> str:
    if not flags:
        return "No risk flags detected."
    return "\n".join(f"[{r.level.upper()}] {r.type}: {r.description}" for r in flags)


def format_failure(reason: FailureReason) -> str:
    return f'Revert reason: "{reason.reason}"\nExplanation: {reason.explanation}'


def first_line(text: str, limit: int = 120) -> str:
    for line in text.split("\n"):
        if line.strip():
            return line[:limit]
    return ""


def build_summary_text(result: AnalysisResult) -> str:
    """
    Human-readable summary of an analysis, used by the CLI.
    """
    status = "SUCCESS" if result.success else "FAILED"
    summary = f"Tx {result.tx_hash} on network {result.network_id}: {status}\n"
    summary += f"Block: {result.block_number}  Gas used: {result.gas_used:,}\n"

    summary += "\nActions:\n" + format_actions(result.semantic_actions) + "\n"
    summary += "\nToken flows:\n" + format_token_flows(result.token_flows) + "\n"
    summary += "\nRisks:\n" + format_risks(result.risk_flags) + "\n"
    if result.failure_reason:
        summary += "\nFailure:\n" + format_failure(result.failure_reason) + "\n"
    return summary


# ─── Transcript log ───────────────────────────────────────────────────────────

def _section(title: str) -> str:
    head = f"─── {title} "
    return head + "─" * max(0, SECTION_WIDTH - len(head))


def _format_call_args(raw_args: Any) -> str:
    try:
        parsed = json.loads(raw_args or "{}") if isinstance(raw_args, str) else (raw_args or {})
        parts = [f"{k}={json.dumps(v)}" for k, v in parsed.items()]
        return f"({', '.join(parts)})"
    except (ValueError, AttributeError):
        return f"({raw_args})"


def format_conversation_log(messages: List[Dict[str, Any]]) -> str:
    lines: List[str] = []
    turn = 0
    i = 0
    while i < len(messages):
        msg = messages[i]
        role = msg.get("role")
        content = msg.get("content")
        text = content if isinstance(content, str) else json.dumps(content)

        if role == "system":
            lines += [_section("SYSTEM PROMPT"), text, ""]
        elif role == "user":
            lines += [_section("TURN 0: USER"), text, ""]
        elif role == "assistant":
            turn += 1
            tool_calls = msg.get("tool_calls") or []
            suffix = "" if tool_calls else " (FINAL)"
            lines.append(_section(f"TURN {turn}: ASSISTANT{suffix}"))

            names = {}
            if tool_calls:
                plural = "s" if len(tool_calls) > 1 else ""
                lines.append(f"[calls {len(tool_calls)} tool{plural}]")
                for tc in tool_calls:
                    fn = tc.get("function") or {}
                    names[tc.get("id")] = fn.get("name")
                    lines.append(f"  → {fn.get('name')}{_format_call_args(fn.get('arguments'))}")
                if content:
                    lines += ["", str(content)]
            else:
                lines.append(content or "")
            lines.append("")

            results: List[str] = []
            while i + 1 < len(messages) and messages[i + 1].get("role") == "tool":
                i += 1
                tool_msg = messages[i]
                results.append(f"[{names.get(tool_msg.get('tool_call_id'), 'unknown')}]")
                results += [f"  {line}" for line in str(tool_msg.get("content") or "").split("\n")]
                results.append("")
            if results:
                lines.append(_section(f"TURN {turn}: TOOL RESULTS"))
                lines += results
        i += 1

    return "\n".join(lines)


def build_log_document(
    tx_hash: str,
    timestamp: str,
    model: str,
    messages: List[Dict[str, Any]],
) -> str:
    turns = sum(1 for m in messages if m.get("role") == "assistant")
    return "\n".join([
        "═" * BANNER_WIDTH,
        f"TX:        {tx_hash}",
        f"TIMESTAMP: {timestamp}",
        f"MODEL:     {model}",
        f"TURNS:     {turns}",
        "═" * BANNER_WIDTH,
        "",
        format_conversation_log(messages),
    ])
