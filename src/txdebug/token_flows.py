from typing import Any, Dict, List, Optional

from txdebug.models import TokenFlow

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_TOKEN_ADDRESS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"
WEI_PER_ETHER = 10 ** 18


def parse_int(value: Any) -> int:
    """Parse a decimal or 0x-hex quantity; unparseable values count as zero."""
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text)
    except ValueError:
        return 0


def format_ether(wei: int) -> str:
    """Exact decimal ether string, e.g. 10**19 -> "10.0"."""
    sign = "-" if wei < 0 else ""
    whole, frac = divmod(abs(wei), WEI_PER_ETHER)
    frac_text = str(frac).rjust(18, "0").rstrip("0") or "0"
    return f"{sign}{whole}.{frac_text}"


def _flows_from_asset_changes(asset_changes: List[Dict[str, Any]]) -> List[TokenFlow]:
    flows: List[TokenFlow] = []
    for change in asset_changes:
        sender = (change.get("from") or "").lower()
        recipient = (change.get("to") or "").lower()
        token_info = change.get("token_info") or {}

        if change.get("type") == "Mint" or not sender or sender == ZERO_ADDRESS:
            flow_type = "Mint"
        elif change.get("type") == "Burn" or not recipient or recipient == ZERO_ADDRESS:
            flow_type = "Burn"
        else:
            flow_type = "Transfer"

        dollar_value = change.get("dollar_value")
        flows.append(TokenFlow(
            type=flow_type,
            from_address=sender or ZERO_ADDRESS,
            to_address=recipient or ZERO_ADDRESS,
            token_address=(token_info.get("contract_address") or "").lower(),
            token_symbol=token_info.get("symbol") or "",
            token_name=token_info.get("name") or "",
            decimals=int(token_info.get("decimals") or 0),
            raw_amount=str(change.get("raw_amount") or "0"),
            formatted_amount=str(change.get("amount") or "0"),
            dollar_value=str(dollar_value) if dollar_value is not None else None,
        ))
    return flows


def _flows_from_balance_diffs(balance_diffs: List[Dict[str, Any]]) -> List[TokenFlow]:
    # dicts keep first-seen order, which fixes the gainer/loser pairing order
    net_changes: Dict[str, int] = {}
    for diff in balance_diffs:
        if diff.get("is_miner"):
            continue
        address = (diff.get("address") or "").lower()
        delta = parse_int(diff.get("dirty")) - parse_int(diff.get("original"))
        net_changes[address] = net_changes.get(address, 0) + delta

    gainers = [addr for addr, delta in net_changes.items() if delta > 0]
    losers = [(addr, -delta) for addr, delta in net_changes.items() if delta < 0]

    flows: List[TokenFlow] = []
    if not gainers:
        return flows
    # one loser -> first gainer; not a ledger-accurate reconstruction
    for loser, amount in losers:
        flows.append(TokenFlow(
            type="NativeTransfer",
            from_address=loser,
            to_address=gainers[0],
            token_address=NATIVE_TOKEN_ADDRESS,
            token_symbol="ETH",
            token_name="Ether",
            decimals=18,
            raw_amount=str(amount),
            formatted_amount=format_ether(amount),
        ))
    return flows


def extract_token_flows(
    asset_changes: Optional[List[Dict[str, Any]]],
    balance_diffs: Optional[List[Dict[str, Any]]],
) -> List[TokenFlow]:
    """
    Flatten simulator asset changes and balance diffs into TokenFlow events.
    Either input may be missing.
    """
    flows: List[TokenFlow] = []
    if asset_changes:
        flows.extend(_flows_from_asset_changes(asset_changes))
    if balance_diffs:
        flows.extend(_flows_from_balance_diffs(balance_diffs))
    return flows
