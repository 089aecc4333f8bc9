from typing import List, Optional, Literal, Union
from pydantic import BaseModel, Field, ConfigDict

CallType = Literal["CALL", "DELEGATECALL", "STATICCALL", "CREATE", "CREATE2"]
FlowType = Literal["Transfer", "Mint", "Burn", "NativeTransfer"]
ActionType = Literal[
    "Swap", "Approve", "Bridge", "Deposit", "Withdraw",
    "Liquidation", "Flashloan", "Transfer", "Multicall", "Unknown",
]
RiskLevel = Literal["low", "medium", "high"]


class DecodedParam(BaseModel):
    name: str = ""
    type: str = ""
    value: str = ""


class CallNode(BaseModel):
    id: str
    depth: int
    call_type: CallType = "CALL"
    caller: str = ""
    callee: str = ""
    contract_name: Optional[str] = None
    function_name: Optional[str] = None
    function_selector: Optional[str] = None
    decoded_inputs: List[DecodedParam] = Field(default_factory=list)
    decoded_outputs: List[DecodedParam] = Field(default_factory=list)
    gas_used: int = 0
    value_wei: str = "0x0"
    success: bool = True
    revert_reason: Optional[str] = None
    protocol: Optional[str] = None
    action: Optional[str] = None
    children: List["CallNode"] = Field(default_factory=list)


class TokenFlow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: FlowType
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    token_address: str
    token_symbol: str = ""
    token_name: str = ""
    decimals: int = 18
    raw_amount: str = "0"
    formatted_amount: str = "0"
    dollar_value: Optional[str] = None


class SemanticAction(BaseModel):
    type: ActionType
    protocol: Optional[str] = None
    call_id: str
    description: str
    involved_tokens: List[str] = Field(default_factory=list)
    involved_addresses: List[str] = Field(default_factory=list)


class RiskFlag(BaseModel):
    level: RiskLevel
    type: str
    description: str
    call_id: Optional[str] = None


class FailureReason(BaseModel):
    root_call_id: str
    reason: str
    category: str
    explanation: str


class TxParams(BaseModel):
    """Original transaction parameters as seen on chain."""
    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    input: str = "0x"
    gas: int
    gas_price: str = "0"
    value: int = 0
    block_number: int
    nonce: int = 0
    on_chain_status: bool = True
    gas_used: int = 0


# ─── Fix descriptors ──────────────────────────────────────────────────────────

class IncreaseGasFix(BaseModel):
    type: Literal["increase_gas"] = "increase_gas"
    multiplier: float = 2


class SetEthBalanceFix(BaseModel):
    type: Literal["set_eth_balance"] = "set_eth_balance"
    amount_eth: float = 100


class SetErc20AllowanceFix(BaseModel):
    type: Literal["set_erc20_allowance"] = "set_erc20_allowance"
    token_address: str
    spender: str
    mapping_slot: int = 1


FixDescriptor = Union[IncreaseGasFix, SetEthBalanceFix, SetErc20AllowanceFix]


class FixResult(BaseModel):
    would_succeed: bool
    gas_used: int = 0
    revert_reason: Optional[str] = None
    fix_description: str


class SourceFile(BaseModel):
    name: str
    content: str


class ContractSource(BaseModel):
    contract_name: str = "Unknown"
    compiler_version: str = ""
    files: List[SourceFile] = Field(default_factory=list)


class ProgressEvent(BaseModel):
    type: Literal["tool_call", "tool_result", "final_answer"]
    turn: int
    tool_names: Optional[List[str]] = None
    tool_name: Optional[str] = None
    summary: Optional[str] = None


class AnalysisResult(BaseModel):
    tx_hash: str
    network_id: str
    success: bool
    gas_used: int
    block_number: int
    call_tree: CallNode
    token_flows: List[TokenFlow] = Field(default_factory=list)
    semantic_actions: List[SemanticAction] = Field(default_factory=list)
    risk_flags: List[RiskFlag] = Field(default_factory=list)
    failure_reason: Optional[FailureReason] = None
    llm_explanation: str = ""
    analyzed_at: str
    agent_status: str = "DONE"
    agent_turns: int = 0

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, by_alias=True)


class AgentState(BaseModel):
    """Accumulated tool results for one analysis run; replaced, never mutated."""
    token_flows: List[TokenFlow] = Field(default_factory=list)
    semantic_actions: List[SemanticAction] = Field(default_factory=list)
    failure_reason: Optional[FailureReason] = None
    risk_flags: List[RiskFlag] = Field(default_factory=list)
