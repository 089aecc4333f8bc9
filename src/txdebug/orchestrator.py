"""
Tool-calling agent loop.
The model picks tools, tools fold their results into AgentState, and the loop
ends on a plain-text answer or after MAX_TURNS model calls.
"""
import json
import uuid
import logging
import time
from enum import Enum
from pathlib import Path
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Callable, Tuple

from agents import generation_span, function_span
from openai import APIError

from txdebug.client_protocol import UpstreamError
from txdebug.config import ModelConfig, ServiceConfig, NETWORK_NAMES
from txdebug.models import AgentState, ProgressEvent
from txdebug.reporting import build_log_document, first_line
from txdebug.tools import TOOLS, AgentContext, execute_tool

logger = logging.getLogger("agent")
logger.setLevel(logging.DEBUG)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[AGENT] %(message)s"))
    logger.addHandler(handler)


# ─── Constants ────────────────────────────────────────────────────────────────
MAX_TURNS = 12
FALLBACK_NARRATIVE = "Analysis could not be completed."
SPAN_INPUT_LIMIT = 2000

ProgressCallback = Callable[[ProgressEvent], None]


class AgentStatus(str, Enum):
    INIT = "INIT"
    AWAITING_MODEL = "AWAITING_MODEL"
    TOOL_DISPATCH = "TOOL_DISPATCH"
    DONE = "DONE"
    TURN_LIMIT_EXCEEDED = "TURN_LIMIT_EXCEEDED"


@dataclass
class AgentRunResult:
    status: AgentStatus
    narrative: str
    state: AgentState
    turns: int
    messages: List[Dict[str, Any]] = field(default_factory=list)
    log_path: Optional[Path] = None


def load_system_prompt() -> str:
    prompt_path = Path(__file__).parent / "prompts" / "agent_system.md"
    if not prompt_path.exists():
        raise FileNotFoundError(f"Prompt not found: {prompt_path}")
    return prompt_path.read_text(encoding="utf-8")


def build_initial_message(ctx: AgentContext) -> str:
    status = "SUCCESS ✅" if ctx.success else "FAILED ❌"
    try:
        network = NETWORK_NAMES.get(int(ctx.network_id), f"Network {ctx.network_id}")
    except ValueError:
        network = f"Network {ctx.network_id}"
    return (
        "Analyze this EVM transaction:\n\n"
        f"Transaction hash: {ctx.tx_hash}\n"
        f"Network: {network} (id: {ctx.network_id})\n"
        f"Status: {status}\n"
        f"Gas used: {ctx.gas_used:,}\n"
        f"Block: {ctx.block_number}\n\n"
        "Use your tools to investigate. Start with get_call_tree."
    )


def write_agent_log(
    tx_hash: str,
    messages: List[Dict[str, Any]],
    model: str,
    logs_dir: Optional[str] = None,
) -> Optional[Path]:
    """Write the transcript to <logs_dir>/<timestamp>_<hash prefix>.txt. Failures only warn."""
    now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3]
    path = Path(logs_dir or ServiceConfig.LOGS_DIR) / f"{stamp}_{tx_hash[:10]}.txt"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(build_log_document(tx_hash, now.isoformat(), model, messages), encoding="utf-8")
    except OSError as e:
        logger.warning(f"⚠️ Could not write agent log: {e}")
        return None
    logger.info(f"📝 Log saved: {path}")
    return path


def _normalize_usage(usage_obj: Any) -> Dict[str, int]:
    usage = usage_obj.model_dump() if hasattr(usage_obj, "model_dump") else usage_obj
    if not isinstance(usage, dict):
        usage = {}
    return {
        "input_tokens": int(usage.get("prompt_tokens") or usage.get("input_tokens") or 0),
        "output_tokens": int(usage.get("completion_tokens") or usage.get("output_tokens") or 0),
    }


def _tool_call_to_dict(tool_call: Any) -> Dict[str, Any]:
    if isinstance(tool_call, dict):
        fn = tool_call.get("function") or {}
        name, args, call_id = fn.get("name"), fn.get("arguments"), tool_call.get("id")
    else:
        fn = getattr(tool_call, "function", None)
        name = getattr(fn, "name", None)
        args = getattr(fn, "arguments", None)
        call_id = getattr(tool_call, "id", None)
    if isinstance(args, dict):
        args = json.dumps(args)
    return {
        "id": call_id or f"call_{uuid.uuid4().hex[:8]}",
        "type": "function",
        "function": {"name": name, "arguments": args or "{}"},
    }


def _emit(on_progress: Optional[ProgressCallback], event: ProgressEvent):
    if on_progress is None:
        return
    try:
        on_progress(event)
    except Exception as e:
        logger.warning(f"⚠️ Progress observer failed on {event.type}: {e}")


class AgentOrchestrator:
    """
    Drives the model through the investigation tools.

    Tool calls within a turn run sequentially in request order. Each tool sees
    the state left by the previous one.
    """

    def __init__(
        self,
        openai_client: Any,
        model: Optional[str] = None,
        max_turns: int = MAX_TURNS,
        logs_dir: Optional[str] = None,
    ):
        self.openai_client = openai_client
        self.model = model or ModelConfig.ORCHESTRATOR_MODEL
        self.max_turns = max_turns
        self.logs_dir = logs_dir
        self.status = AgentStatus.INIT

    async def _call_model(self, messages: List[Dict[str, Any]]) -> Any:
        with generation_span(
            input=messages,
            model=self.model,
            model_config={"tool_choice": "auto", "temperature": ModelConfig.ORCHESTRATOR_TEMPERATURE},
        ) as gen_span:
            try:
                response = await self.openai_client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    tools=TOOLS,
                    tool_choice="auto",
                    temperature=ModelConfig.ORCHESTRATOR_TEMPERATURE,
                    max_tokens=ModelConfig.ORCHESTRATOR_MAX_TOKENS,
                )
            except APIError as e:
                logger.error(f"❌ Model request failed: {e}")
                raise UpstreamError("model", f"Model request failed: {e}") from e
            try:
                if hasattr(gen_span, "span_data") and hasattr(response.choices[0].message, "model_dump"):
                    gen_span.span_data.output = [response.choices[0].message.model_dump()]
                    gen_span.span_data.usage = _normalize_usage(getattr(response, "usage", None))
            except Exception:
                pass
        return response

    async def _dispatch(
        self,
        ctx: AgentContext,
        state: AgentState,
        tool_name: str,
        raw_args: Any,
    ) -> Tuple[AgentState, str]:
        try:
            arguments = json.loads(raw_args) if raw_args else {}
            if not isinstance(arguments, dict):
                arguments = {}
        except (TypeError, ValueError):
            logger.warning(f"Invalid tool arguments for {tool_name}. Using empty args.")
            arguments = {}

        tool_input = json.dumps(arguments, ensure_ascii=False)[:SPAN_INPUT_LIMIT]
        with function_span(tool_name, input=tool_input) as tool_span:
            try:
                outcome = await execute_tool(ctx, state, tool_name, arguments)
            except Exception as e:
                logger.error(f"❌ Tool error in {tool_name}: {e}")
                try:
                    tool_span.set_error({"message": str(e), "data": {"tool": tool_name}})
                except Exception:
                    pass
                return state, f"Tool execution error: {e}"
            try:
                if hasattr(tool_span, "span_data"):
                    tool_span.span_data.output = outcome.text[:SPAN_INPUT_LIMIT]
            except Exception:
                pass

        if outcome.delta:
            state = state.model_copy(update=outcome.delta)
        return state, outcome.text

    async def run(
        self,
        ctx: AgentContext,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AgentRunResult:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": load_system_prompt()},
            {"role": "user", "content": build_initial_message(ctx)},
        ]
        state = AgentState()
        narrative = FALLBACK_NARRATIVE
        self.status = AgentStatus.INIT
        turns = 0

        logger.info(f"🚀 Starting analysis of {ctx.tx_hash} on network {ctx.network_id}")
        started = time.time()

        try:
            for turn in range(1, self.max_turns + 1):
                self.status = AgentStatus.AWAITING_MODEL
                turns = turn
                logger.info(f"⏳ Turn {turn}: Waiting for model decision...")

                response = await self._call_model(messages)
                choice = response.choices[0]
                message = choice.message
                tool_calls = [_tool_call_to_dict(tc) for tc in (getattr(message, "tool_calls", None) or [])]

                if not tool_calls:
                    narrative = message.content or narrative
                    messages.append({"role": "assistant", "content": message.content or ""})
                    self.status = AgentStatus.DONE
                    _emit(on_progress, ProgressEvent(type="final_answer", turn=turn))
                    logger.info(f"🎉 Analysis completed in {turn} turn(s), {time.time() - started:.1f}s")
                    break

                self.status = AgentStatus.TOOL_DISPATCH
                tool_names = [tc["function"]["name"] for tc in tool_calls]
                logger.info(f"🔧 Model requesting {len(tool_names)} tool(s): {', '.join(tool_names)}")
                messages.append({"role": "assistant", "content": message.content, "tool_calls": tool_calls})
                _emit(on_progress, ProgressEvent(type="tool_call", turn=turn, tool_names=tool_names))

                for tc in tool_calls:
                    tool_name = tc["function"]["name"]
                    state, text = await self._dispatch(ctx, state, tool_name, tc["function"]["arguments"])
                    _emit(on_progress, ProgressEvent(
                        type="tool_result", turn=turn, tool_name=tool_name, summary=first_line(text),
                    ))
                    messages.append({"role": "tool", "tool_call_id": tc["id"], "content": text})
            else:
                self.status = AgentStatus.TURN_LIMIT_EXCEEDED
                logger.warning(f"⚠️ Turn limit ({self.max_turns}) reached without a final answer")
        finally:
            log_path = write_agent_log(ctx.tx_hash, messages, self.model, self.logs_dir)

        return AgentRunResult(
            status=self.status,
            narrative=narrative,
            state=state,
            turns=turns,
            messages=messages,
            log_path=log_path,
        )
