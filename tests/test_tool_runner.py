from __future__ import annotations

import asyncio
import json
import sqlite3
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from conftest import (
    SYSTEM_PROMPT,
    Pause,
    ScriptedModelClient,
    assert_tool_results_follow_calls,
    end,
    tool_call,
)
from travel_chat.ai.conversation import ContextMessage, build_context
from travel_chat.ai.fragments import TextFragment
from travel_chat.errors import ModelStreamError, ToolLoopLimitError, TurnCancelledError
from travel_chat.output.base import OutputSink
from travel_chat.output.models import EventKind
from travel_chat.output.queue_sink import QueueSink
from travel_chat.storage.models import ToolCallRequest


async def _history(store, session_id):
    return await store.list_by_session(session_id)


def _roles(history) -> list[str]:
    return [m.role for m in history]


@pytest_asyncio.fixture
async def session_id(session_manager):
    session, _ = await session_manager.ensure("s1")
    return session.id


@pytest.mark.asyncio
async def test_plain_reply_streams_and_persists(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("Hello"), TextFragment(" there"), end()]])
    sink = QueueSink()

    outcome = await make_runner(client).run(session_id, "hi", sink)

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant"]
    assert history[0].content == SYSTEM_PROMPT
    assert history[-1].content == "Hello there"
    assert outcome.text == "Hello there"
    assert outcome.model_calls == 1
    assert outcome.tool_calls == 0

    events = sink.drain()
    assert [e.kind for e in events] == [EventKind.CHUNK, EventKind.CHUNK, EventKind.END_OF_TURN]
    assert "".join(e.text for e in events if e.kind is EventKind.CHUNK) == "Hello there"


@pytest.mark.asyncio
async def test_single_tool_round_trip(make_runner, registry, store, session_id):
    hotels = AsyncMock(return_value=[{"name": "Ubud Villa", "stars": 5}])
    registry.bind_providers({"find_hotels": hotels})
    client = ScriptedModelClient(
        [
            [*tool_call(0, "a1", "find_hotels", '{"city": "Bali", "stars": 5}', parts=4), end("tool_calls")],
            [TextFragment("Ubud Villa is lovely."), end()],
        ]
    )
    sink = QueueSink()

    outcome = await make_runner(client).run(session_id, "Find me a hotel in Bali", sink)

    hotels.assert_awaited_once_with({"city": "Bali", "stars": 5})
    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant", "tool", "assistant"]
    assert history[2].tool_calls == [
        ToolCallRequest(id="a1", name="find_hotels", arguments={"city": "Bali", "stars": 5})
    ]
    assert history[3].tool_call_id == "a1"
    assert json.loads(history[3].content) == [{"name": "Ubud Villa", "stars": 5}]
    assert history[4].content == "Ubud Villa is lovely."
    assert outcome.model_calls == 2
    assert outcome.tool_calls == 1
    assert_tool_results_follow_calls(history)

    # Second call sees the persisted history exactly
    assert client.calls[1] == build_context(history[:-1])
    assert client.tools_seen[0] == ["find_hotels"]


@pytest.mark.asyncio
async def test_interleaved_calls_are_answered_in_readiness_order(make_runner, registry, store, session_id):
    async def weather(arguments):
        return f"Weather in {arguments['city']}: sunny"

    registry.bind_providers({"get_weather": weather})
    client = ScriptedModelClient(
        [
            [
                *tool_call(0, "a1", "get_weather", "")[:1],
                *tool_call(1, "a2", "get_weather", "")[:1],
                *tool_call(0, "a1", "get_weather", '{"city":')[1:],
                *tool_call(1, "a2", "get_weather", '{"city": "Oslo"}')[1:],
                *tool_call(0, "a1", "get_weather", ' "Lima"}')[1:],
                end("tool_calls"),
            ],
            [TextFragment("Both sunny."), end()],
        ]
    )

    await make_runner(client).run(session_id, "Weather in Lima and Oslo?", QueueSink())

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant", "tool", "tool", "assistant"]
    assert [c.id for c in history[2].tool_calls] == ["a2", "a1"]
    assert history[3].tool_call_id == "a2"
    assert history[3].content == "Weather in Oslo: sunny"
    assert history[4].tool_call_id == "a1"
    assert history[4].content == "Weather in Lima: sunny"
    assert_tool_results_follow_calls(history)


@pytest.mark.asyncio
async def test_failing_tool_becomes_error_message_and_turn_continues(make_runner, registry, store, session_id):
    registry.bind_providers({"search_flights": AsyncMock(side_effect=RuntimeError("no seats"))})
    client = ScriptedModelClient(
        [
            [*tool_call(0, "f1", "search_flights", '{"origin": "JFK"}'), end("tool_calls")],
            [TextFragment("Sorry, no flights found."), end()],
        ]
    )

    outcome = await make_runner(client).run(session_id, "Flights from JFK", QueueSink())

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant", "tool", "assistant"]
    assert "no seats" in json.loads(history[3].content)["error"]
    assert outcome.text == "Sorry, no flights found."


@pytest.mark.asyncio
async def test_unknown_tool_gets_not_implemented_result(make_runner, store, session_id):
    client = ScriptedModelClient(
        [
            [*tool_call(0, "x1", "teleport", "{}"), end("tool_calls")],
            [TextFragment("I can't do that."), end()],
        ]
    )

    await make_runner(client).run(session_id, "Beam me up", QueueSink())

    history = await _history(store, session_id)
    assert json.loads(history[3].content) == {"error": "Function teleport not implemented."}


@pytest.mark.asyncio
async def test_text_after_tool_fragment_is_not_shown_or_stored(make_runner, registry, store, session_id):
    registry.bind_providers({"get_weather": AsyncMock(return_value="Sunny")})
    client = ScriptedModelClient(
        [
            [
                TextFragment("Checking. "),
                *tool_call(0, "w1", "get_weather", '{"city": "Bali"}'),
                TextFragment("hidden"),
                end("tool_calls"),
            ],
            [TextFragment("It's sunny."), end()],
        ]
    )
    sink = QueueSink()

    await make_runner(client).run(session_id, "Weather?", sink)

    history = await _history(store, session_id)
    assert history[2].content == "Checking. "
    chunks = [e.text for e in sink.drain() if e.kind is EventKind.CHUNK]
    assert chunks == ["Checking. ", "It's sunny."]


@pytest.mark.asyncio
async def test_incomplete_tool_call_is_dropped(make_runner, registry, store, session_id):
    provider = AsyncMock(return_value="unused")
    registry.bind_providers({"find_hotels": provider})
    client = ScriptedModelClient(
        [[TextFragment("Let me look."), *tool_call(0, "a1", "find_hotels", '{"city": "Ba'), end("length")]]
    )

    outcome = await make_runner(client).run(session_id, "Hotels?", QueueSink())

    provider.assert_not_awaited()
    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant"]
    assert history[-1].tool_calls is None
    assert outcome.model_calls == 1


@pytest.mark.asyncio
async def test_existing_history_is_not_reseeded(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("One"), end()], [TextFragment("Two"), end()]])
    runner = make_runner(client)

    await runner.run(session_id, "first", QueueSink())
    await runner.run(session_id, "second", QueueSink())

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant", "user", "assistant"]
    assert client.calls[1][-1] == ContextMessage.user("second")


@pytest.mark.asyncio
async def test_model_failure_commits_nothing_for_the_round(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("Hel"), RuntimeError("connection reset")]])
    sink = QueueSink()

    with pytest.raises(ModelStreamError, match="connection reset"):
        await make_runner(client).run(session_id, "hi", sink)

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user"]
    kinds = [e.kind for e in sink.drain()]
    assert EventKind.END_OF_TURN not in kinds


@pytest.mark.asyncio
async def test_stalled_stream_times_out(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("Hel"), Pause(10), TextFragment("lo")]])

    with pytest.raises(ModelStreamError, match="stalled"):
        await make_runner(client, stream_idle_timeout=0.05).run(session_id, "hi", QueueSink())

    assert _roles(await _history(store, session_id)) == ["system", "user"]


@pytest.mark.asyncio
async def test_failure_after_tool_round_keeps_completed_rounds(make_runner, registry, store, session_id):
    registry.bind_providers({"get_weather": AsyncMock(return_value="Sunny")})
    client = ScriptedModelClient(
        [
            [*tool_call(0, "w1", "get_weather", '{"city": "Bali"}'), end("tool_calls")],
            [RuntimeError("rate limited")],
        ]
    )

    with pytest.raises(ModelStreamError):
        await make_runner(client).run(session_id, "Weather?", QueueSink())

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant", "tool"]
    assert_tool_results_follow_calls(history)


@pytest.mark.asyncio
async def test_tool_loop_limit(make_runner, registry, store, session_id):
    registry.bind_providers({"get_weather": AsyncMock(return_value="Sunny")})
    client = ScriptedModelClient(
        [
            [*tool_call(0, f"w{i}", "get_weather", '{"city": "Bali"}'), end("tool_calls")]
            for i in range(3)
        ]
    )

    with pytest.raises(ToolLoopLimitError) as exc_info:
        await make_runner(client, max_tool_rounds=2).run(session_id, "Weather forever", QueueSink())

    assert exc_info.value.max_rounds == 2
    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant", "tool", "assistant", "tool"]
    assert len(client.calls) == 3
    assert_tool_results_follow_calls(history)


@pytest.mark.asyncio
async def test_cancel_before_model_call(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("never"), end()]])
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(TurnCancelledError):
        await make_runner(client).run(session_id, "hi", QueueSink(), cancel)

    assert client.calls == []
    assert _roles(await _history(store, session_id)) == ["system", "user"]


@pytest.mark.asyncio
async def test_cancel_during_tool_dispatch(make_runner, registry, store, session_id):
    started = asyncio.Event()

    async def slow_hotels(arguments):
        started.set()
        await asyncio.sleep(10)

    registry.bind_providers({"find_hotels": slow_hotels})
    client = ScriptedModelClient(
        [[*tool_call(0, "a1", "find_hotels", '{"city": "Bali"}'), end("tool_calls")]]
    )
    cancel = asyncio.Event()

    turn = asyncio.create_task(make_runner(client).run(session_id, "Hotels?", QueueSink(), cancel))
    await asyncio.wait_for(started.wait(), timeout=1)
    cancel.set()

    with pytest.raises(TurnCancelledError):
        await asyncio.wait_for(turn, timeout=1)

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user"]


@pytest.mark.asyncio
async def test_cancel_during_stream(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("Thinking"), Pause(10), TextFragment("...")]])
    cancel = asyncio.Event()
    sink = QueueSink()

    turn = asyncio.create_task(make_runner(client).run(session_id, "hi", sink, cancel))
    first = await asyncio.wait_for(sink.queue.get(), timeout=1)
    cancel.set()

    with pytest.raises(TurnCancelledError):
        await asyncio.wait_for(turn, timeout=1)

    assert first.text == "Thinking"
    assert _roles(await _history(store, session_id)) == ["system", "user"]


@pytest.mark.asyncio
async def test_greeting_for_new_session(make_runner, registry, store, session_id):
    provider = AsyncMock(return_value="unused")
    registry.bind_providers({"get_weather": provider})
    client = ScriptedModelClient(
        [[TextFragment("Welcome! "), *tool_call(0, "w1", "get_weather", '{"city": "Bali"}'), end()]]
    )
    sink = QueueSink()

    outcome = await make_runner(client).run(session_id, None, sink)

    provider.assert_not_awaited()
    history = await _history(store, session_id)
    assert _roles(history) == ["system", "assistant"]
    assert history[1].content == "Welcome! "
    assert history[1].tool_calls is None
    assert outcome.tool_calls == 0
    assert client.calls[0] == [ContextMessage.system(SYSTEM_PROMPT)]
    assert sink.drain()[-1].kind is EventKind.END_OF_TURN


@pytest.mark.asyncio
async def test_greeting_requires_new_session(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("Hi"), end()]])
    runner = make_runner(client)
    await runner.run(session_id, None, QueueSink())

    with pytest.raises(ValueError):
        await runner.run(session_id, None, QueueSink())

    assert _roles(await _history(store, session_id)) == ["system", "assistant"]


class BrokenSink(OutputSink):
    async def send_chunk(self, session_id: str, text: str) -> None:
        raise ConnectionError("client went away")

    async def end_turn(self, session_id: str) -> None:
        raise ConnectionError("client went away")


@pytest.mark.asyncio
async def test_broken_sink_does_not_fail_the_turn(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("Still saved"), end()]])

    outcome = await make_runner(client).run(session_id, "hi", BrokenSink())

    assert outcome.text == "Still saved"
    assert _roles(await _history(store, session_id)) == ["system", "user", "assistant"]


@pytest.mark.asyncio
async def test_sessions_run_concurrently_without_mixing(make_runner, session_manager, store):
    await session_manager.ensure("s-a")
    await session_manager.ensure("s-b")
    runner_a = make_runner(ScriptedModelClient([[TextFragment("A1"), Pause(0.02), TextFragment("A2"), end()]]))
    runner_b = make_runner(ScriptedModelClient([[TextFragment("B1"), Pause(0.01), TextFragment("B2"), end()]]))
    sink_a, sink_b = QueueSink(), QueueSink()

    await asyncio.gather(runner_a.run("s-a", "from a", sink_a), runner_b.run("s-b", "from b", sink_b))

    history_a = await _history(store, "s-a")
    history_b = await _history(store, "s-b")
    assert [m.content for m in history_a[1:]] == ["from a", "A1A2"]
    assert [m.content for m in history_b[1:]] == ["from b", "B1B2"]
    assert {e.session_id for e in sink_a.drain()} == {"s-a"}
    assert {e.session_id for e in sink_b.drain()} == {"s-b"}


@pytest.mark.asyncio
async def test_reads_are_idempotent(make_runner, store, session_id):
    client = ScriptedModelClient([[TextFragment("Hello"), end()]])
    await make_runner(client).run(session_id, "hi", QueueSink())

    first = await _history(store, session_id)
    second = await _history(store, session_id)

    assert first == second


@pytest.mark.asyncio
async def test_store_error_mid_round_commits_nothing(make_runner, registry, store, session_id, monkeypatch):
    registry.bind_providers({"get_weather": AsyncMock(return_value="Sunny")})
    write_round = store.append_round

    async def corrupt_last_row(sid, records):
        # The tool row violates the role CHECK after the assistant row is inserted
        await write_round(sid, records[:-1] + [replace(records[-1], role="bogus")])

    monkeypatch.setattr(store, "append_round", corrupt_last_row)
    client = ScriptedModelClient(
        [[*tool_call(0, "a1", "get_weather", '{"city": "Bali"}'), end("tool_calls")]]
    )

    with pytest.raises(sqlite3.IntegrityError):
        await make_runner(client).run(session_id, "Weather?", QueueSink())

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user"]
    assert_tool_results_follow_calls(history)


@pytest.mark.asyncio
async def test_cancel_during_round_commit_still_lands_whole_round(
    make_runner, registry, store, session_id, monkeypatch
):
    registry.bind_providers({"get_weather": AsyncMock(return_value="Sunny")})
    write_round = store.append_round
    entered, release, written = asyncio.Event(), asyncio.Event(), asyncio.Event()

    async def gated(sid, records):
        entered.set()
        await release.wait()
        await write_round(sid, records)
        written.set()

    monkeypatch.setattr(store, "append_round", gated)
    client = ScriptedModelClient(
        [[*tool_call(0, "a1", "get_weather", '{"city": "Bali"}'), end("tool_calls")]]
    )

    turn = asyncio.create_task(make_runner(client).run(session_id, "Weather?", QueueSink()))
    await asyncio.wait_for(entered.wait(), timeout=1)
    turn.cancel()
    release.set()

    with pytest.raises(asyncio.CancelledError):
        await turn
    await asyncio.wait_for(written.wait(), timeout=1)

    history = await _history(store, session_id)
    assert _roles(history) == ["system", "user", "assistant", "tool"]
    assert_tool_results_follow_calls(history)
