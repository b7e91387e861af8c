import json

import pytest

from coach.cancellation import CancellationToken
from coach.models import Message, ToolResultEvent, ToolStartEvent
from coach.planner import INVALID_JSON_MESSAGE, STEP_LIMIT_BLOCK, STEP_LIMIT_TEXT, TurnOrchestrator
from providers.base import ToolCallFragment
from providers.exceptions import CallError

USER_ID = "user_1"

HISTORY = [Message(role="user", content="10 pushups")]

def _orchestrator(backend, registry, **kwargs) -> TurnOrchestrator:
    return TurnOrchestrator(backend, registry, **kwargs)

@pytest.mark.asyncio
async def test_text_only_round_finishes_the_turn(scripted_backend, registry, make_context):
    backend = scripted_backend([[scripted_backend.text("  Keep it up! ")]])

    result = await _orchestrator(backend, registry).run(HISTORY, make_context())

    assert result.kind == "ok"
    assert result.assistant_text == "Keep it up!"
    assert result.tools_used == []
    assert result.rounds == 1
    first_call = backend.calls[0]
    assert first_call[0]["role"] == "system"
    assert first_call[-1] == {"role": "user", "content": "10 pushups"}

@pytest.mark.asyncio
async def test_tool_round_then_answer(scripted_backend, registry, make_context, activity):
    backend = scripted_backend([
        [scripted_backend.tool_call("call_1", "log_set", {"exercise_name": "push-ups", "reps": 10})],
        [scripted_backend.text("Logged 10 push-ups.")],
    ])
    events = []

    result = await _orchestrator(backend, registry).run(HISTORY, make_context(), events.append)

    assert result.kind == "ok"
    assert result.tools_used == ["log_set"]
    assert result.assistant_text == "Logged 10 push-ups."
    assert result.blocks[0].title == "Logged 10 push-ups"
    assert len(await activity.list_sets(USER_ID)) == 1

    assert events[0] == ToolStartEvent(tool_name="log_set")
    assert all(isinstance(event, ToolResultEvent) for event in events[1:])
    streamed = [block for event in events[1:] for block in event.blocks]
    assert streamed == result.blocks

    # the second round sees the assistant tool call and the tool's model-facing output
    second_call = backend.calls[1]
    assistant, tool_message = second_call[-2], second_call[-1]
    assert assistant["tool_calls"][0]["id"] == "call_1"
    assert assistant["tool_calls"][0]["function"]["name"] == "log_set"
    assert tool_message["role"] == "tool"
    assert tool_message["tool_call_id"] == "call_1"
    assert json.loads(tool_message["content"])["status"] == "ok"

@pytest.mark.asyncio
async def test_step_limit_stops_after_max_rounds(scripted_backend, registry, make_context):
    summary = lambda index: [scripted_backend.tool_call(f"call_{index}", "get_today_summary", {})]
    backend = scripted_backend([summary(index) for index in range(6)])

    result = await _orchestrator(backend, registry, max_tool_rounds=5).run(HISTORY, make_context())

    assert result.kind == "ok"
    assert len(backend.calls) == 5
    assert result.rounds == 5
    assert result.hit_tool_limit
    assert result.tools_used == ["get_today_summary"] * 5
    assert result.assistant_text == STEP_LIMIT_TEXT
    assert result.blocks[-1] == STEP_LIMIT_BLOCK
    assert result.blocks[-1].title == "Step limit reached"

@pytest.mark.asyncio
async def test_fragments_with_the_same_id_form_one_call(scripted_backend, registry, make_context, activity):
    backend = scripted_backend([
        [
            ToolCallFragment(call_id="call_1", name="log_set", arguments_delta='{"exercise_name": "pu'),
            ToolCallFragment(call_id="call_1", name="log_set", arguments_delta='sh-ups", '),
            ToolCallFragment(call_id="call_1", arguments_delta='"reps": 12}'),
        ],
        [scripted_backend.text("Done.")],
    ])
    events = []

    result = await _orchestrator(backend, registry).run(HISTORY, make_context(), events.append)

    assert result.tools_used == ["log_set"]
    assert [event for event in events if isinstance(event, ToolStartEvent)] == [ToolStartEvent(tool_name="log_set")]
    sets = await activity.list_sets(USER_ID)
    assert [record.reps for record in sets] == [12]

@pytest.mark.asyncio
async def test_calls_in_one_round_run_in_order(scripted_backend, registry, make_context):
    backend = scripted_backend([
        [
            scripted_backend.tool_call("call_a", "log_set", {"exercise_name": "squats", "reps": 5}),
            scripted_backend.tool_call("call_b", "get_today_summary", {}),
        ],
        [scripted_backend.text("Done.")],
    ])
    events = []

    result = await _orchestrator(backend, registry).run(HISTORY, make_context(), events.append)

    assert result.tools_used == ["log_set", "get_today_summary"]
    result_tools = [event.tool_name for event in events if isinstance(event, ToolResultEvent)]
    assert result_tools.index("get_today_summary") > max(
        index for index, name in enumerate(result_tools) if name == "log_set"
    )
    tool_messages = [message for message in backend.calls[1] if message["role"] == "tool"]
    assert [message["tool_call_id"] for message in tool_messages] == ["call_a", "call_b"]

@pytest.mark.asyncio
async def test_invalid_json_arguments_become_an_error_block(scripted_backend, registry, make_context, activity):
    backend = scripted_backend([
        [ToolCallFragment(call_id="call_1", name="log_set", arguments_delta='{"exercise_name": ')],
        [scripted_backend.text("Sorry about that.")],
    ])
    events = []

    result = await _orchestrator(backend, registry).run(HISTORY, make_context(), events.append)

    assert result.kind == "ok"
    assert result.blocks[0].tone == "error"
    assert INVALID_JSON_MESSAGE in result.blocks[0].description
    assert "(tool: log_set)" in result.blocks[0].description
    assert await activity.list_sets(USER_ID) == []
    tool_message = backend.calls[1][-1]
    assert json.loads(tool_message["content"])["error"] == INVALID_JSON_MESSAGE
    assert isinstance(events[-1], ToolResultEvent)

@pytest.mark.asyncio
async def test_empty_arguments_are_treated_as_an_empty_object(scripted_backend, registry, make_context):
    backend = scripted_backend([
        [ToolCallFragment(call_id="call_1", name="get_focus_suggestions")],
        [scripted_backend.text("Here is your plan.")],
    ])

    result = await _orchestrator(backend, registry).run(HISTORY, make_context())

    assert result.kind == "ok"
    assert result.blocks[0].title == "No major training gaps detected"

@pytest.mark.asyncio
async def test_unknown_tool_is_contained(scripted_backend, registry, make_context):
    backend = scripted_backend([
        [scripted_backend.tool_call("call_1", "wipe_history", {})],
        [scripted_backend.text("I can't do that.")],
    ])

    result = await _orchestrator(backend, registry).run(HISTORY, make_context())

    assert result.kind == "ok"
    assert result.blocks[0].title == "Unsupported action"
    assert json.loads(backend.calls[1][-1]["content"])["error"] == "unsupported_tool"

@pytest.mark.asyncio
async def test_cancel_during_tool_round_runs_no_tools(scripted_backend, registry, make_context, activity):
    cancel = CancellationToken()
    backend = scripted_backend([
        [
            scripted_backend.tool_call("call_1", "log_set", {"exercise_name": "push-ups", "reps": 10}),
            lambda: cancel.cancel("Client disconnected."),
        ],
    ])

    result = await _orchestrator(backend, registry).run(HISTORY, make_context(), cancel=cancel)

    assert result.kind == "error"
    assert result.error_message == "Client disconnected."
    assert await activity.list_sets(USER_ID) == []
    assert len(backend.calls) == 1

@pytest.mark.asyncio
async def test_already_cancelled_turn_never_calls_the_model(scripted_backend, registry, make_context):
    cancel = CancellationToken()
    cancel.cancel("Turn aborted.")
    backend = scripted_backend([[scripted_backend.text("unused")]])

    result = await _orchestrator(backend, registry).run(HISTORY, make_context(), cancel=cancel)

    assert result.kind == "error"
    assert result.error_message == "Turn aborted."
    assert backend.calls == []

@pytest.mark.asyncio
async def test_backend_failure_keeps_earlier_blocks(scripted_backend, registry, make_context):
    backend = scripted_backend([
        [scripted_backend.tool_call("call_1", "log_set", {"exercise_name": "push-ups", "reps": 10})],
        CallError("upstream returned 502"),
    ])

    result = await _orchestrator(backend, registry).run(HISTORY, make_context())

    assert result.kind == "error"
    assert result.tools_used == ["log_set"]
    assert result.blocks[0].title == "Logged 10 push-ups"
    assert "upstream returned 502" in result.error_message
    assert result.rounds == 2

@pytest.mark.asyncio
async def test_round_timeout(scripted_backend, registry, make_context):
    backend = scripted_backend([[scripted_backend.text("too late")]], delay=1.0)

    result = await _orchestrator(backend, registry, round_timeout_seconds=0.05).run(HISTORY, make_context())

    assert result.kind == "error"
    assert result.error_message == "Model round timed out."
