"""
Analysis service: fetch, simulate, normalize, then hand the trace to the agent.
Also answers follow-up questions about a finished analysis.
"""
import re
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from openai import APIError, AsyncOpenAI
from agents import gen_trace_id, trace, generation_span

from txdebug.chain import ChainClient
from txdebug.client_protocol import (
    ChainClientProtocol,
    ExplorerClientProtocol,
    FoundryClientProtocol,
    SimulationClientProtocol,
    UpstreamError,
)
from txdebug.config import ModelConfig, ServiceConfig
from txdebug.explorer import EtherscanClient
from txdebug.foundry import FoundryClient
from txdebug.models import AnalysisResult
from txdebug.normalizer import normalize_call_trace
from txdebug.orchestrator import AgentOrchestrator, ProgressCallback
from txdebug.simulation import TenderlyClient
from txdebug.tools import AgentContext

logger = logging.getLogger("analyzer")

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
NETWORK_ID_RE = re.compile(r"^\d+$")


def validate_request(tx_hash: str, network_id: str) -> Tuple[str, str]:
    if not isinstance(tx_hash, str) or not TX_HASH_RE.match(tx_hash):
        raise ValueError("Invalid transaction hash (must be 0x + 64 hex chars)")
    network_id = str(network_id)
    if not NETWORK_ID_RE.match(network_id):
        raise ValueError("networkId must be a numeric string")
    return tx_hash, network_id


class AnalysisCache:
    """In-memory results keyed by (lowercased tx hash, network id). Last write wins, nothing is evicted."""

    def __init__(self):
        self._results: Dict[Tuple[str, str], AnalysisResult] = {}

    @staticmethod
    def _key(tx_hash: str, network_id: str) -> Tuple[str, str]:
        return tx_hash.lower(), str(network_id)

    def get(self, tx_hash: str, network_id: str) -> Optional[AnalysisResult]:
        return self._results.get(self._key(tx_hash, network_id))

    def set(self, tx_hash: str, network_id: str, result: AnalysisResult):
        self._results[self._key(tx_hash, network_id)] = result

    def get_by_hash(self, tx_hash: str) -> Optional[AnalysisResult]:
        wanted = tx_hash.lower()
        for (cached_hash, _), result in self._results.items():
            if cached_hash == wanted:
                return result
        return None

    def __len__(self) -> int:
        return len(self._results)


def build_qa_context(result: AnalysisResult) -> str:
    flows = "; ".join(
        f"{f.formatted_amount} {f.token_symbol} from {f.from_address} to {f.to_address}"
        for f in result.token_flows
    )
    lines = [
        "Transaction context:",
        f"- Hash: {result.tx_hash}",
        f"- Status: {'success' if result.success else 'failed'}",
        f"- Actions: {'; '.join(a.description for a in result.semantic_actions)}",
        f"- Token flows: {flows}",
        f"- Risks: {'; '.join(r.description for r in result.risk_flags) or 'none'}",
        f"- Gas used: {result.gas_used}",
        f"- Block: {result.block_number}",
    ]
    if result.failure_reason:
        lines.append(f"- Failure reason: {result.failure_reason.reason}")
    lines += ["", "Previous explanation:", result.llm_explanation]
    return "\n".join(lines)


def write_prompt_log(
    tx_hash: str,
    system_prompt: str,
    user_prompt: str,
    answer: str,
    logs_dir: Optional[str] = None,
) -> Optional[Path]:
    now = datetime.now(timezone.utc)
    path = Path(logs_dir or ServiceConfig.LOGS_DIR) / f"{now.strftime('%Y-%m-%dT%H-%M-%S-%f')[:-3]}_{tx_hash[:10]}_qa.txt"
    body = "\n".join([
        "=== SYSTEM ===", system_prompt, "",
        "=== USER ===", user_prompt, "",
        "=== ANSWER ===", answer, "",
    ])
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not write QA log: {e}")
        return None
    return path


class TransactionAnalyzer:
    """
    One analyzer per process. Collaborators are injectable; anything left out is
    built from ServiceConfig/ModelConfig on first use.
    """

    def __init__(
        self,
        chain: Optional[ChainClientProtocol] = None,
        simulator: Optional[SimulationClientProtocol] = None,
        explorer: Optional[ExplorerClientProtocol] = None,
        foundry: Optional[FoundryClientProtocol] = None,
        openai_client: Optional[AsyncOpenAI] = None,
        cache: Optional[AnalysisCache] = None,
        model: Optional[str] = None,
        logs_dir: Optional[str] = None,
    ):
        self.chain = chain or ChainClient()
        self._simulator = simulator
        self.explorer = explorer or EtherscanClient()
        self.foundry = foundry or FoundryClient()
        self._openai_client = openai_client
        self.cache = cache if cache is not None else AnalysisCache()
        self.model = model or ModelConfig.ORCHESTRATOR_MODEL
        self.logs_dir = logs_dir

    @property
    def simulator(self) -> SimulationClientProtocol:
        if self._simulator is None:
            self._simulator = TenderlyClient()
        return self._simulator

    @property
    def openai_client(self) -> AsyncOpenAI:
        if self._openai_client is None:
            self._openai_client = AsyncOpenAI(base_url=ModelConfig.BASE_URL, api_key=ModelConfig.API_KEY)
        return self._openai_client

    async def analyze(
        self,
        tx_hash: str,
        network_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AnalysisResult:
        tx_hash, network_id = validate_request(tx_hash, network_id)

        cached = self.cache.get(tx_hash, network_id)
        if cached is not None:
            logger.info(f"Cache hit for {tx_hash} on network {network_id}")
            return cached

        logger.info(f"Analyzing tx {tx_hash} on network {network_id}")
        params = await self.chain.fetch_tx_params(tx_hash, network_id)

        logger.info("Simulating transaction...")
        simulation = await self.simulator.simulate_transaction(params, network_id)
        transaction = simulation.get("transaction") or {}
        call_trace = (transaction.get("transaction_info") or {}).get("call_trace")
        if not call_trace:
            raise UpstreamError("simulation", "Simulation response contained no call trace")

        logger.info("Normalizing call trace...")
        call_tree = normalize_call_trace(call_trace)
        success = bool(transaction.get("status"))
        ctx = AgentContext(
            tx_hash=tx_hash,
            network_id=network_id,
            success=success,
            gas_used=int(transaction.get("gas_used") or params.gas_used),
            block_number=int(transaction.get("block_number") or params.block_number),
            call_tree=call_tree,
            simulation=simulation,
            tx_params=params,
            simulator=self.simulator,
            explorer=self.explorer,
            foundry=self.foundry,
        )

        trace_id = gen_trace_id()
        logger.info(f"View trace: https://platform.openai.com/traces/trace?trace_id={trace_id}")
        with trace(workflow_name="EVM Transaction Debugger", trace_id=trace_id):
            orchestrator = AgentOrchestrator(self.openai_client, model=self.model, logs_dir=self.logs_dir)
            run = await orchestrator.run(ctx, on_progress=on_progress)

        result = AnalysisResult(
            tx_hash=tx_hash,
            network_id=network_id,
            success=success,
            gas_used=ctx.gas_used,
            block_number=ctx.block_number,
            call_tree=call_tree,
            token_flows=run.state.token_flows,
            semantic_actions=run.state.semantic_actions,
            risk_flags=run.state.risk_flags,
            failure_reason=run.state.failure_reason,
            llm_explanation=run.narrative,
            analyzed_at=datetime.now(timezone.utc).isoformat(),
            agent_status=run.status.value,
            agent_turns=run.turns,
        )
        self.cache.set(tx_hash, network_id, result)
        return result

    async def answer_question(self, question: str, context: AnalysisResult) -> str:
        system_prompt = (Path(__file__).parent / "prompts" / "qa_system.md").read_text(encoding="utf-8").strip()
        user_prompt = f"{build_qa_context(context)}\n\nQuestion: {question}"
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        with generation_span(input=messages, model=self.model, model_config={"purpose": "qa"}):
            try:
                response = await self.openai_client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=ModelConfig.QA_TEMPERATURE,
                    max_tokens=ModelConfig.QA_MAX_TOKENS,
                )
            except APIError as e:
                raise UpstreamError("model", f"Model request failed: {e}") from e

        answer = "Unable to answer question."
        if response.choices and response.choices[0].message.content:
            answer = response.choices[0].message.content
        write_prompt_log(context.tx_hash, system_prompt, user_prompt, answer, self.logs_dir)
        return answer

    async def close(self):
        for client in (self._simulator, self.explorer):
            close = getattr(client, "close", None)
            if close is not None:
                await close()
