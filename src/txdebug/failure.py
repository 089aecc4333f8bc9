"""
Root-cause selection and revert-reason classification for failed transactions.
"""
from typing import Optional

from txdebug.models import CallNode, FailureReason
from txdebug.normalizer import last_failed_call

GENERIC_REVERT = "Generic revert (no message)"
CONTRACT_REVERTED = "Contract reverted"

# Ordered; first match wins.
REVERT_CATEGORIES = (
    ("Insufficient balance", ("insufficient", "balance")),
    ("Slippage exceeded", ("slippage", "too little received", "min amount")),
    ("Transaction deadline expired", ("expired", "deadline")),
    ("Insufficient token allowance", ("allowance", "approve", "exceeds")),
    ("Access control violation", ("access", "owner", "unauthorized", "forbidden", "not allowed")),
    ("Arithmetic error", ("overflow", "underflow", "arithmetic")),
    ("Out of gas", ("out of gas", "gas")),
    ("Reentrancy guard triggered", ("reentrant", "reentrancy")),
    ("Contract is paused", ("paused",)),
    ("Insufficient liquidity", ("liquidity", "reserves")),
    ("Health factor / collateral violation", ("health", "collateral")),
    ("Price oracle issue", ("price", "oracle")),
    ("Token transfer failed", ("transfer",)),
)

EXPLANATION_TEMPLATES = {
    "Insufficient balance":
        "{contract} rejected the call to {fn} because an account lacked sufficient token or ETH balance.",
    "Slippage exceeded":
        "The swap in {contract} failed because the received amount fell below the minimum threshold. "
        "The price moved unfavorably between submission and execution.",
    "Transaction deadline expired":
        "{contract} rejected the transaction because the deadline timestamp had already passed. "
        "Resubmit with a fresh deadline.",
    "Insufficient token allowance":
        "{contract}.{fn} tried to spend tokens on behalf of a user but the ERC20 allowance was too low. "
        "An approve() call is needed first.",
    "Access control violation":
        "The caller does not have the required role or ownership to call {fn} on {contract}.",
    "Arithmetic error":
        "{contract}.{fn} hit an arithmetic overflow or underflow. An input amount is likely larger "
        "than the contract can handle or larger than an available balance.",
    "Out of gas":
        "The call to {contract}.{fn} ran out of gas. Increase the gas limit for this transaction.",
    "Reentrancy guard triggered":
        "{contract} rejected a reentrant call to {fn}. A nonReentrant modifier blocked re-entry into the contract.",
    "Contract is paused":
        "{contract} is currently paused and not accepting calls to {fn}.",
    "Insufficient liquidity":
        "{contract} could not fulfill the operation because the pool or market does not have enough liquidity.",
    "Health factor / collateral violation":
        "The operation was blocked by {contract} because it would leave the position undercollateralized "
        "(health factor would drop below 1).",
    "Price oracle issue":
        "{contract} rejected the call due to a stale or invalid price feed response.",
    "Token transfer failed":
        "A token transfer inside {contract}.{fn} failed. The recipient may have a transfer hook that reverted, "
        "or the token balance was insufficient.",
    GENERIC_REVERT:
        "{contract}.{fn} reverted without a reason string. This is often a low-level assembly revert, "
        "an out-of-gas condition, or a custom error that was not decoded.",
}


def categorize_revert_reason(reason: Optional[str]) -> str:
    text = (reason or "").lower().strip()
    for category, needles in REVERT_CATEGORIES:
        if any(needle in text for needle in needles):
            return category
    if text in ("", "execution reverted"):
        return GENERIC_REVERT
    return CONTRACT_REVERTED


def _function_label(call: CallNode) -> str:
    if call.function_name:
        return call.function_name.split("(")[0]
    return call.function_selector or "unknown function"


def build_explanation(reason: str, call: CallNode) -> str:
    category = categorize_revert_reason(reason)
    contract = call.contract_name or call.callee
    fn = _function_label(call)
    template = EXPLANATION_TEMPLATES.get(category)
    if template is None:
        return f'{contract}.{fn} reverted with: "{reason.strip()}"'
    return template.format(contract=contract, fn=fn)


def analyze_failure(call_tree: CallNode) -> Optional[FailureReason]:
    """
    Pick the presumed root cause of a failed transaction.

    The last failing node (with a reason) in pre-order is taken as the cause.
    This is positional: a sibling that fails after the true innermost revert
    will be chosen instead.
    """
    if call_tree.success:
        return None

    root_cause = last_failed_call(call_tree)
    if root_cause is None:
        reason = call_tree.revert_reason or "Unknown revert"
        return FailureReason(
            root_call_id=call_tree.id,
            reason=reason,
            category=categorize_revert_reason(call_tree.revert_reason),
            explanation="The transaction reverted without a decodable reason string.",
        )

    reason = root_cause.revert_reason or ""
    return FailureReason(
        root_call_id=root_cause.id,
        reason=reason,
        category=categorize_revert_reason(reason),
        explanation=build_explanation(reason, root_cause),
    )
