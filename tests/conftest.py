import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import pytest
from agents import set_tracing_disabled
from openai import APIConnectionError

from txdebug.models import ContractSource, SourceFile, TxParams

set_tracing_disabled(True)


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


USER = addr(0x1)
ROUTER = addr(0x7A25)
TOKEN_A = addr(0xA)
TOKEN_B = addr(0xB)
PAIR = addr(0xBEEF)
TX_HASH = "0x" + "ab" * 32


def raw_call(
    to: str,
    selector: str = "",
    frm: str = USER,
    calls: Optional[List[Dict[str, Any]]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    call = {
        "type": "CALL",
        "from": frm,
        "to": to,
        "input": selector + "00" * 32 if selector else "0x",
        "gas_used": 21000,
        "value": "0x0",
        "calls": calls or [],
    }
    call.update(extra)
    return call


@pytest.fixture
def swap_trace() -> Dict[str, Any]:
    """Router swap: pull TokenA from the user, pair pays out TokenB."""
    return raw_call(
        ROUTER, "0x38ed1739", contract_name="UniswapV2Router02", gas_used=150000,
        calls=[
            raw_call(TOKEN_A, "0x23b872dd", frm=ROUTER, contract_name="TokenA"),
            raw_call(PAIR, "0x022c0d9f", frm=ROUTER, contract_name="UniswapV2Pair", calls=[
                raw_call(TOKEN_B, "0xa9059cbb", frm=PAIR, contract_name="TokenB"),
            ]),
        ],
    )


@pytest.fixture
def failed_trace() -> Dict[str, Any]:
    return raw_call(
        ROUTER, "0x38ed1739", contract_name="UniswapV2Router02",
        error="execution reverted",
        calls=[
            raw_call(
                TOKEN_A, "0x23b872dd", frm=ROUTER, contract_name="TokenA",
                error="execution reverted",
                error_reason="ERC20: transfer amount exceeds allowance",
            ),
        ],
    )


def asset_change(token: str, symbol: str, frm: str, to: str, amount: str = "1.5", dollar: Optional[str] = None):
    return {
        "token_info": {"contract_address": token, "symbol": symbol, "name": symbol, "decimals": 18},
        "type": "Transfer",
        "from": frm,
        "to": to,
        "amount": amount,
        "raw_amount": "1500000000000000000",
        "dollar_value": dollar,
    }


@pytest.fixture
def swap_asset_changes() -> List[Dict[str, Any]]:
    return [
        asset_change(TOKEN_A, "TKA", USER, PAIR),
        asset_change(TOKEN_B, "TKB", PAIR, USER),
    ]


def simulation_payload(call_trace: Dict[str, Any], status: bool = True, asset_changes=None, balance_diff=None):
    return {
        "transaction": {
            "status": status,
            "gas_used": 150000,
            "block_number": 19000000,
            "transaction_info": {
                "call_trace": call_trace,
                "asset_changes": asset_changes,
                "balance_diff": balance_diff,
            },
            "error_info": None if status else {"error_message": "execution reverted"},
        }
    }


@pytest.fixture
def tx_params() -> TxParams:
    return TxParams(
        from_address=USER,
        to_address=ROUTER,
        input="0x38ed1739",
        gas=200000,
        gas_price="1000000000",
        value=0,
        block_number=19000000,
        nonce=7,
        on_chain_status=True,
        gas_used=150000,
    )


# ─── Collaborator fakes ───────────────────────────────────────────────────────

class FakeChain:
    def __init__(self, params: TxParams):
        self.params = params
        self.calls: List[tuple] = []

    async def fetch_tx_params(self, tx_hash: str, network_id: str) -> TxParams:
        self.calls.append((tx_hash, network_id))
        return self.params


class FakeSimulator:
    def __init__(self, payload: Dict[str, Any], override_payload: Optional[Dict[str, Any]] = None):
        self.payload = payload
        self.override_payload = override_payload or payload
        self.calls: List[tuple] = []

    async def simulate_transaction(self, params, network_id):
        self.calls.append(("simulate", network_id))
        return self.payload

    async def simulate_with_overrides(self, params, network_id, gas_override, state_objects):
        self.calls.append(("override", gas_override, state_objects))
        return self.override_payload


class FakeExplorer:
    def __init__(self, source: Any = None):
        self.source = source
        self.calls: List[tuple] = []

    async def get_contract_abi(self, address, network_id):
        self.calls.append(("abi", address, network_id))
        return f"ABI for {address} (network {network_id}):"

    async def get_contract_source(self, address, network_id):
        self.calls.append(("source", address, network_id))
        return self.source


class FakeFoundry:
    def __init__(self):
        self.calls: List[tuple] = []

    async def cast_run(self, tx_hash, network_id):
        self.calls.append(("run", tx_hash, network_id))
        return "Traces:\n  [21000] root"

    async def cast_call(self, address, function_signature, args, network_id, block_number):
        self.calls.append(("call", address, function_signature, list(args), network_id, block_number))
        return "0x0"


@pytest.fixture
def sample_source() -> ContractSource:
    return ContractSource(
        contract_name="Vault",
        compiler_version="v0.8.20",
        files=[
            SourceFile(name="src/Vault.sol", content="contract Vault {\n  function _payNative(address to) internal {}\n}"),
            SourceFile(name="src/Lib.sol", content="library Lib { function other() {} }"),
        ],
    )


# ─── Scripted model ───────────────────────────────────────────────────────────

def tool_call(name: str, args: Any = None, call_id: Optional[str] = None):
    arguments = args if isinstance(args, str) else json.dumps(args or {})
    return SimpleNamespace(
        id=call_id or f"call_{name}",
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def model_reply(content: Optional[str] = None, tool_calls: Optional[list] = None):
    message = SimpleNamespace(role="assistant", content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason="tool_calls" if tool_calls else "stop")],
        usage=None,
    )


class ScriptedOpenAI:
    """Stands in for AsyncOpenAI: returns the scripted replies in order, then repeats the last one.
    A reply that is an exception is raised instead.
    """

    def __init__(self, replies: List[Any]):
        self.replies = list(replies)
        self.requests: List[Dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def unreachable(message: str = "reasoning engine unreachable") -> APIConnectionError:
    return APIConnectionError(message=message, request=httpx.Request("POST", "https://llm.invalid/chat/completions"))
