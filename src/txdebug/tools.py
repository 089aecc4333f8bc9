"""
Agent tools.

Each tool is ``async (ctx, state, args) -> ToolOutcome``: it reads the immutable
request context and the current state snapshot and returns a state delta plus
the observation text shown to the model. The orchestrator applies deltas.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from txdebug.actions import detect_semantic_actions
from txdebug.client_protocol import (
    ExplorerClientProtocol,
    FoundryClientProtocol,
    SimulationClientProtocol,
)
from txdebug.failure import analyze_failure
from txdebug.fix_simulator import format_fix_result, simulate_with_fix
from txdebug.models import (
    AgentState,
    CallNode,
    ContractSource,
    IncreaseGasFix,
    SetErc20AllowanceFix,
    SetEthBalanceFix,
    TxParams,
)
from txdebug.normalizer import find_call_by_id
from txdebug.reporting import (
    build_call_tree_text,
    format_actions,
    format_failure,
    format_risks,
    format_token_flows,
)
from txdebug.risk import detect_risks
from txdebug.token_flows import extract_token_flows

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class AgentContext:
    """Read-only facts and collaborators for one analysis run."""
    tx_hash: str
    network_id: str
    success: bool
    gas_used: int
    block_number: int
    call_tree: CallNode
    simulation: Dict[str, Any]
    tx_params: TxParams
    simulator: Optional[SimulationClientProtocol] = None
    explorer: Optional[ExplorerClientProtocol] = None
    foundry: Optional[FoundryClientProtocol] = None

    @property
    def transaction_info(self) -> Dict[str, Any]:
        tx = self.simulation.get("transaction") or {}
        return tx.get("transaction_info") or {}


@dataclass
class ToolOutcome:
    text: str
    delta: Dict[str, Any] = field(default_factory=dict)


ToolFn = Callable[[AgentContext, AgentState, Dict[str, Any]], Awaitable[ToolOutcome]]


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# ─── Trace analysis tools ─────────────────────────────────────────────────────

async def get_call_tree(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    return ToolOutcome(build_call_tree_text(ctx.call_tree))


async def get_call_subtree(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    call_id = str(args.get("callId") or "")
    node = find_call_by_id(ctx.call_tree, call_id)
    if node is None:
        return ToolOutcome(f"No call found with id: {call_id}")
    return ToolOutcome(build_call_tree_text(node, max_depth=4, max_lines=40, highlight_revert=False))


async def extract_flows(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    info = ctx.transaction_info
    flows = extract_token_flows(info.get("asset_changes"), info.get("balance_diff"))
    return ToolOutcome(format_token_flows(flows), {"token_flows": flows})


async def detect_actions(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    actions = detect_semantic_actions(ctx.call_tree, state.token_flows)
    return ToolOutcome(format_actions(actions), {"semantic_actions": actions})


async def analyze_failure_tool(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    if ctx.success:
        return ToolOutcome("Transaction succeeded, no failure to analyze.")
    reason = analyze_failure(ctx.call_tree)
    if reason is None:
        return ToolOutcome("Transaction failed but no revert reason could be decoded.")
    return ToolOutcome(format_failure(reason), {"failure_reason": reason})


async def detect_risks_tool(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    flags = detect_risks(ctx.call_tree, state.token_flows, state.semantic_actions)
    return ToolOutcome(format_risks(flags), {"risk_flags": flags})


# ─── External lookups ─────────────────────────────────────────────────────────

async def get_contract_abi(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    if ctx.explorer is None:
        return ToolOutcome("Contract explorer not configured, ABI lookup unavailable.")
    address = str(args.get("address") or "")
    network_id = int(_number(args.get("networkId"), int(ctx.network_id)))
    return ToolOutcome(await ctx.explorer.get_contract_abi(address, network_id))


async def cast_call(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    if ctx.foundry is None:
        return ToolOutcome("cast CLI not available. Install Foundry: https://getfoundry.sh")
    call_args = args.get("args")
    text = await ctx.foundry.cast_call(
        str(args.get("address") or ""),
        str(args.get("functionSignature") or ""),
        [str(a) for a in call_args] if isinstance(call_args, list) else [],
        int(_number(args.get("networkId"), int(ctx.network_id))),
        int(_number(args.get("blockNumber"), ctx.block_number)),
    )
    return ToolOutcome(text)


async def cast_run(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    if ctx.foundry is None:
        return ToolOutcome("cast CLI not available. Install Foundry: https://getfoundry.sh")
    return ToolOutcome(await ctx.foundry.cast_run(ctx.tx_hash, int(ctx.network_id)))


async def simulate_fix(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    if ctx.simulator is None:
        return ToolOutcome("Simulation service not configured, cannot test fixes.")

    fix_type = str(args.get("fix_type") or "")
    if fix_type == "increase_gas":
        fix = IncreaseGasFix(multiplier=_number(args.get("gas_multiplier"), 2))
    elif fix_type == "set_eth_balance":
        fix = SetEthBalanceFix(amount_eth=_number(args.get("eth_amount"), 100))
    elif fix_type == "set_erc20_allowance":
        token = str(args.get("token_address") or "")
        spender = str(args.get("spender_address") or "")
        if not token or not spender:
            return ToolOutcome("set_erc20_allowance requires token_address and spender_address.")
        fix = SetErc20AllowanceFix(
            token_address=token,
            spender=spender,
            mapping_slot=int(_number(args.get("mapping_slot"), 1)),
        )
    else:
        return ToolOutcome(f"Unknown fix_type: {fix_type}")

    result = await simulate_with_fix(ctx.simulator, ctx.tx_params, ctx.network_id, fix)
    return ToolOutcome(format_fix_result(result))


def find_function_definitions(source: ContractSource, function_name: str) -> List[Any]:
    pattern = re.compile(rf"\bfunction\s+{re.escape(function_name)}\s*\(")
    return [f for f in source.files if pattern.search(f.content)]


async def get_revert_source_location(ctx: AgentContext, state: AgentState, args: Dict[str, Any]) -> ToolOutcome:
    address = str(args.get("address") or "").strip()
    function_name = str(args.get("functionName") or "").strip()

    if not address:
        return ToolOutcome(
            'Pass the address of the reverting contract explicitly, e.g. '
            'get_revert_source_location(address="0x...", functionName="myFunc").'
        )
    if not ADDRESS_RE.match(address):
        return ToolOutcome(f'"{address}" is not a valid 42-character Ethereum address.')
    if not function_name:
        return ToolOutcome('Pass the name of the failing function as functionName, e.g. functionName="_payNative".')
    if ctx.explorer is None:
        return ToolOutcome("Contract explorer not configured, source lookup unavailable.")

    source = await ctx.explorer.get_contract_source(address, int(ctx.network_id))
    if isinstance(source, str):
        return ToolOutcome(source)
    if not source.files:
        return ToolOutcome(f"No source files returned for {address}.")

    header = [
        f"Contract: {source.contract_name} ({address})",
        f"Compiler: {source.compiler_version}",
    ]
    matches = find_function_definitions(source, function_name)
    if not matches:
        names = "\n  ".join(f.name for f in source.files)
        return ToolOutcome("\n".join(header + [
            f"Total files: {len(source.files)}",
            "",
            f'No file found containing a definition for function "{function_name}".',
            "",
            "All files in the compilation unit:",
            f"  {names}",
        ]))

    sections = header + [f'Found {len(matches)} file(s) defining function "{function_name}":']
    sections += [f"  • {f.name}" for f in matches]
    for f in matches:
        sections += ["", f"─── {f.name} ───", "```solidity", f.content, "```"]
    return ToolOutcome("\n".join(sections))


TOOL_HANDLERS: Dict[str, ToolFn] = {
    "get_call_tree": get_call_tree,
    "get_call_subtree": get_call_subtree,
    "extract_token_flows": extract_flows,
    "detect_semantic_actions": detect_actions,
    "analyze_failure": analyze_failure_tool,
    "detect_risks": detect_risks_tool,
    "get_contract_abi": get_contract_abi,
    "cast_call": cast_call,
    "cast_run": cast_run,
    "simulate_with_fix": simulate_fix,
    "get_revert_source_location": get_revert_source_location,
}


async def execute_tool(ctx: AgentContext, state: AgentState, name: str, args: Dict[str, Any]) -> ToolOutcome:
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return ToolOutcome(f"Unknown tool: {name}")
    return await handler(ctx, state, args)


# ─── Tool Definitions (OpenAI function calling format) ────────────────────────

def _no_args(name: str, description: str) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": {}, "required": []},
        },
    }


TOOLS = [
    _no_args(
        "get_call_tree",
        "Get an indented text representation of the full call tree, showing contract calls, depth, gas, "
        "success/failure status, revert reasons, and protocols. Always call this first.",
    ),
    _no_args(
        "extract_token_flows",
        "Extract all token transfers from the transaction: ERC20, ERC721, ERC1155, and native ETH. "
        "Returns amounts, symbols, from/to addresses, and dollar values.",
    ),
    _no_args(
        "detect_semantic_actions",
        "Detect high-level DeFi actions: swaps, approvals, deposits, withdrawals, bridge transfers, "
        "liquidations, flashloans, multicalls.",
    ),
    _no_args(
        "analyze_failure",
        "Analyze the root cause of a failed transaction. Returns the revert reason and a human-readable "
        "explanation. Only meaningful for failed transactions.",
    ),
    _no_args(
        "detect_risks",
        "Detect security risk patterns: unlimited token approvals, flashloan usage, large ETH/token transfers, "
        "DELEGATECALL to unknown contracts, unverified destinations.",
    ),
    {
        "type": "function",
        "function": {
            "name": "get_call_subtree",
            "description": "Get detailed info for a specific call and its sub-calls, identified by callId. "
                           "Use to drill into a specific part of the call tree.",
            "parameters": {
                "type": "object",
                "properties": {
                    "callId": {"type": "string", "description": "The id of the call node to inspect (e.g. call-3)"}
                },
                "required": ["callId"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "get_contract_abi",
            "description": "Look up the verified ABI for a contract address from the block explorer. "
                           "Use when you encounter an unrecognized contract to understand its functions.",
            "parameters": {
                "type": "object",
                "properties": {
                    "address": {"type": "string", "description": "Contract address (0x...)"},
                    "networkId": {
                        "type": "number",
                        "description": "Network ID (1=Ethereum, 56=BSC, 137=Polygon, 10=Optimism, 42161=Arbitrum, "
                                       "8453=Base, 43114=Avalanche, 59144=Linea, 324=zkSync, 81457=Blast, "
                                       "534352=Scroll, 250=Fantom, 100=Gnosis, 80094=Berachain)"
                    }
                },
                "required": ["address", "networkId"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "cast_call",
            "description": "Execute a read-only (static) call to a contract at a specific block using Foundry cast. "
                           "Useful for querying on-chain state at the exact block the transaction occurred, "
                           "e.g. checking token allowances or balances at the time of failure.",
            "parameters": {
                "type": "object",
                "properties": {
                    "address": {"type": "string", "description": "Contract address to call"},
                    "functionSignature": {
                        "type": "string",
                        "description": 'Function signature e.g. "allowance(address,address)" or "balanceOf(address)"'
                    },
                    "args": {"type": "array", "items": {"type": "string"}, "description": "Function arguments as strings"},
                    "networkId": {"type": "number", "description": "Network ID"},
                    "blockNumber": {"type": "number", "description": "Block number at which to query"}
                },
                "required": ["address", "functionSignature", "args", "networkId", "blockNumber"]
            }
        }
    },
    _no_args(
        "cast_run",
        "Replay the transaction with Foundry cast run to get a low-level execution trace. Use only when you "
        "need opcode-level detail beyond what the call tree shows.",
    ),
    {
        "type": "function",
        "function": {
            "name": "simulate_with_fix",
            "description": "Re-simulate the original transaction with a specific fix applied to determine if it "
                           "would have succeeded: more gas, sufficient ETH balance, or a pre-existing token approval.",
            "parameters": {
                "type": "object",
                "properties": {
                    "fix_type": {
                        "type": "string",
                        "enum": ["increase_gas", "set_eth_balance", "set_erc20_allowance"],
                        "description": "increase_gas: multiply gas limit. set_eth_balance: give sender ETH. "
                                       "set_erc20_allowance: set token allowance to MaxUint256."
                    },
                    "gas_multiplier": {"type": "number", "description": "For increase_gas: factor to multiply the original gas by (default 2)."},
                    "eth_amount": {"type": "number", "description": "For set_eth_balance: ETH amount to set (default 100)."},
                    "token_address": {"type": "string", "description": "For set_erc20_allowance: the ERC20 token contract address."},
                    "spender_address": {"type": "string", "description": "For set_erc20_allowance: the address being approved to spend."},
                    "mapping_slot": {
                        "type": "number",
                        "description": "For set_erc20_allowance: storage slot of the _allowances mapping "
                                       "(default 1 for OpenZeppelin tokens; try 0 or 2 for non-standard tokens)."
                    }
                },
                "required": ["fix_type"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "get_revert_source_location",
            "description": "Fetch verified Solidity source and return every file that defines a specific function "
                           "(matches `function <functionName>(`). Use this to locate the exact code that reverted.",
            "parameters": {
                "type": "object",
                "properties": {
                    "address": {"type": "string", "description": "Full 42-character contract address (0x...) of the contract to look up."},
                    "functionName": {
                        "type": "string",
                        "description": 'Name of the failing function (e.g. "_payNative", "transfer"). '
                                       "No parentheses or arguments."
                    }
                },
                "required": ["address", "functionName"]
            }
        }
    },
]
