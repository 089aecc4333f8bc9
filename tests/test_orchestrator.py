import pytest

from conftest import ScriptedOpenAI, TX_HASH, model_reply, simulation_payload, tool_call, unreachable
from txdebug.client_protocol import UpstreamError
from txdebug.normalizer import normalize_call_trace
from txdebug.orchestrator import (
    FALLBACK_NARRATIVE,
    MAX_TURNS,
    AgentOrchestrator,
    AgentStatus,
    build_initial_message,
)
from txdebug.tools import TOOL_HANDLERS, AgentContext


@pytest.fixture
def ctx(swap_trace, swap_asset_changes, tx_params):
    return AgentContext(
        tx_hash=TX_HASH,
        network_id="1",
        success=True,
        gas_used=150000,
        block_number=19000000,
        call_tree=normalize_call_trace(swap_trace),
        simulation=simulation_payload(swap_trace, asset_changes=swap_asset_changes),
        tx_params=tx_params,
    )


def test_initial_message(ctx):
    text = build_initial_message(ctx)
    assert "Network: Ethereum Mainnet (id: 1)" in text
    assert "Status: SUCCESS ✅" in text
    assert "Gas used: 150,000" in text
    assert text.endswith("Start with get_call_tree.")


async def test_immediate_answer(ctx, tmp_path):
    client = ScriptedOpenAI([model_reply("All good.")])
    events = []
    run = await AgentOrchestrator(client, model="m", logs_dir=str(tmp_path)).run(ctx, on_progress=events.append)

    assert run.status == AgentStatus.DONE
    assert run.narrative == "All good."
    assert run.turns == 1
    assert [e.type for e in events] == ["final_answer"]
    assert client.requests[0]["tool_choice"] == "auto"
    assert client.requests[0]["messages"][0]["role"] == "system"


async def test_tools_run_in_request_order_and_share_state(ctx, tmp_path):
    client = ScriptedOpenAI([
        model_reply(tool_calls=[
            tool_call("extract_token_flows", call_id="a"),
            tool_call("detect_semantic_actions", call_id="b"),
        ]),
        model_reply(tool_calls=[tool_call("detect_risks", call_id="c")]),
        model_reply("**Summary**: a swap."),
    ])
    events = []
    run = await AgentOrchestrator(client, logs_dir=str(tmp_path)).run(ctx, on_progress=events.append)

    assert run.status == AgentStatus.DONE
    assert run.turns == 3
    assert run.narrative == "**Summary**: a swap."
    assert len(run.state.token_flows) == 2
    assert [a.type for a in run.state.semantic_actions] == ["Swap"]
    assert run.state.semantic_actions[0].involved_tokens == ["TKA", "TKB"]

    assert [(e.type, e.turn) for e in events] == [
        ("tool_call", 1), ("tool_result", 1), ("tool_result", 1),
        ("tool_call", 2), ("tool_result", 2),
        ("final_answer", 3),
    ]
    assert events[0].tool_names == ["extract_token_flows", "detect_semantic_actions"]
    assert events[1].summary == "Transfer: 1.5 TKA from " + run.state.token_flows[0].from_address + \
        " to " + run.state.token_flows[0].to_address

    tool_messages = [m for m in run.messages if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["a", "b", "c"]


async def test_turn_limit(ctx, tmp_path):
    client = ScriptedOpenAI([model_reply(tool_calls=[tool_call("get_call_tree")])])
    run = await AgentOrchestrator(client, logs_dir=str(tmp_path)).run(ctx)

    assert run.status == AgentStatus.TURN_LIMIT_EXCEEDED
    assert run.narrative == FALLBACK_NARRATIVE
    assert run.turns == MAX_TURNS
    assert len(client.requests) == MAX_TURNS


async def test_bad_arguments_and_tool_errors_become_observations(ctx, tmp_path, monkeypatch):
    async def explode(*args):
        raise RuntimeError("kaboom")

    monkeypatch.setitem(TOOL_HANDLERS, "cast_run", explode)
    client = ScriptedOpenAI([
        model_reply(tool_calls=[
            tool_call("get_call_subtree", "{not json", call_id="x"),
            tool_call("cast_run", call_id="y"),
            tool_call("made_up", call_id="z"),
        ]),
        model_reply("done"),
    ])
    run = await AgentOrchestrator(client, logs_dir=str(tmp_path)).run(ctx)

    results = {m["tool_call_id"]: m["content"] for m in run.messages if m["role"] == "tool"}
    assert results["x"] == "No call found with id: "
    assert results["y"] == "Tool execution error: kaboom"
    assert results["z"] == "Unknown tool: made_up"
    assert run.status == AgentStatus.DONE


async def test_failing_observer_does_not_stop_the_run(ctx, tmp_path):
    def observer(event):
        raise RuntimeError("client went away")

    client = ScriptedOpenAI([model_reply(tool_calls=[tool_call("get_call_tree")]), model_reply("ok")])
    run = await AgentOrchestrator(client, logs_dir=str(tmp_path)).run(ctx, on_progress=observer)
    assert run.status == AgentStatus.DONE
    assert run.narrative == "ok"


async def test_transcript_log_written(ctx, tmp_path):
    client = ScriptedOpenAI([model_reply(tool_calls=[tool_call("get_call_tree")]), model_reply("ok")])
    run = await AgentOrchestrator(client, model="test-model", logs_dir=str(tmp_path)).run(ctx)

    assert run.log_path is not None
    assert run.log_path.name.endswith(f"_{TX_HASH[:10]}.txt")
    text = run.log_path.read_text(encoding="utf-8")
    assert f"TX:        {TX_HASH}" in text
    assert "MODEL:     test-model" in text
    assert "[get_call_tree]" in text


async def test_unwritable_log_dir_is_not_fatal(ctx, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    client = ScriptedOpenAI([model_reply("ok")])
    run = await AgentOrchestrator(client, logs_dir=str(blocker / "logs")).run(ctx)
    assert run.status == AgentStatus.DONE
    assert run.log_path is None


async def test_model_failure_is_upstream_error_and_still_logged(ctx, tmp_path):
    client = ScriptedOpenAI([model_reply(tool_calls=[tool_call("get_call_tree")]), unreachable()])

    with pytest.raises(UpstreamError) as excinfo:
        await AgentOrchestrator(client, logs_dir=str(tmp_path)).run(ctx)

    assert excinfo.value.service == "model"
    assert "reasoning engine unreachable" in str(excinfo.value)
    logs = list(tmp_path.iterdir())
    assert len(logs) == 1
    assert "get_call_tree" in logs[0].read_text(encoding="utf-8")
