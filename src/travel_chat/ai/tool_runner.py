"""Streaming turn loop: model call -> tool dispatch -> model call ... -> final answer."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Optional

import structlog

from travel_chat.ai.aggregator import DeltaAggregator
from travel_chat.ai.client import ModelClient
from travel_chat.ai.conversation import ContextMessage, build_context, to_record
from travel_chat.ai.dispatcher import ToolDispatcher, ToolInvocationResult
from travel_chat.ai.fragments import Fragment
from travel_chat.ai.tools.base import Tool
from travel_chat.config import AIConfig
from travel_chat.core.types import TurnState
from travel_chat.errors import ModelStreamError, ToolLoopLimitError, TurnCancelledError
from travel_chat.log import get_logger
from travel_chat.output.base import OutputSink
from travel_chat.storage.message_repo import MessageStore
from travel_chat.storage.models import ToolCallRequest

logger = get_logger(__name__)


@dataclass
class TurnOutcome:
    session_id: str
    text: str  # Final assistant message content
    model_calls: int = 0
    tool_calls: int = 0


class _Turn:
    """Mutable state of one in-flight turn. Never shared between turns."""

    def __init__(
        self,
        session_id: str,
        sink: OutputSink,
        cancel_event: Optional[asyncio.Event],
    ):
        self.session_id = session_id
        self.sink = sink
        self.cancel_event = cancel_event
        self.state = TurnState.LOADING_HISTORY
        self.context: list[ContextMessage] = []
        self.model_calls = 0
        self.tool_calls = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def transition(self, state: TurnState) -> None:
        logger.debug("turn_state", from_state=self.state.value, to_state=state.value)
        self.state = state


@dataclass
class _Round:
    text: str
    calls: list[ToolCallRequest]
    tasks: list[asyncio.Task[ToolInvocationResult]]


class TurnRunner:
    """Drives one session's turn to completion.

    Text fragments are forwarded to the sink as they arrive. Tool calls are
    dispatched as soon as their arguments complete, concurrently with the rest
    of the stream. Once the model call ends, the assistant message (with its
    tool calls) and one tool message per call are persisted together, in the
    order the calls became ready, so history never holds an unanswered call.

    A failed, stalled, or cancelled model call commits nothing for that round;
    everything persisted before it stays valid.
    """

    def __init__(
        self,
        client: ModelClient,
        message_store: MessageStore,
        dispatcher: ToolDispatcher,
        tools: list[Tool],
        ai_config: AIConfig,
        system_prompt: Optional[str] = None,
    ):
        self._client = client
        self._store = message_store
        self._dispatcher = dispatcher
        self._tools = tools
        self._config = ai_config
        self._system_prompt = (
            system_prompt if system_prompt is not None else ai_config.load_system_prompt()
        )

    async def run(
        self,
        session_id: str,
        user_text: Optional[str],
        sink: OutputSink,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TurnOutcome:
        """Run a turn. ``user_text=None`` asks a brand-new session for its greeting."""
        turn = _Turn(session_id, sink, cancel_event)
        with structlog.contextvars.bound_contextvars(session_id=session_id):
            try:
                return await self._run(turn, user_text)
            except BaseException:
                turn.transition(TurnState.ERROR)
                raise

    async def _run(self, turn: _Turn, user_text: Optional[str]) -> TurnOutcome:
        history = await self._store.list_by_session(turn.session_id)
        turn.context = build_context(history)
        is_new = not turn.context

        if user_text is None and not is_new:
            raise ValueError(
                f"User text is required to continue existing session {turn.session_id}"
            )

        if is_new:
            turn.transition(TurnState.SEEDING_SYSTEM)
            await self._persist(turn, ContextMessage.system(self._system_prompt))

        if user_text is None:
            return await self._greet(turn)

        await self._persist(turn, ContextMessage.user(user_text))

        rounds = 0
        while True:
            turn.transition(TurnState.AWAITING_MODEL)
            result = await self._stream_round(turn, dispatch=True)

            if not result.calls:
                return await self._finalize(turn, result.text)

            if rounds >= self._config.max_tool_rounds:
                await _cancel_all(result.tasks)
                logger.error("tool_loop_limit", max_rounds=self._config.max_tool_rounds)
                raise ToolLoopLimitError(turn.session_id, self._config.max_tool_rounds)

            turn.transition(TurnState.DISPATCHING_TOOLS)
            results = await self._collect(turn, result.tasks)

            await self._commit_round(
                turn,
                [ContextMessage.assistant(result.text, result.calls)]
                + [ContextMessage.tool(r.content, r.call_id) for r in results],
            )

            turn.tool_calls += len(results)
            rounds += 1
            logger.info(
                "tool_round_complete",
                round=rounds,
                tools=[c.name for c in result.calls],
                errors=sum(1 for r in results if r.is_error),
            )

    async def _greet(self, turn: _Turn) -> TurnOutcome:
        """Opening message for a new session; tool calls are never dispatched here."""
        turn.transition(TurnState.AWAITING_MODEL)
        result = await self._stream_round(turn, dispatch=False)
        return await self._finalize(turn, result.text)

    async def _finalize(self, turn: _Turn, text: str) -> TurnOutcome:
        turn.transition(TurnState.FINALIZING)
        await self._persist(turn, ContextMessage.assistant(text))
        await self._deliver(turn, turn.sink.end_turn(turn.session_id))
        turn.transition(TurnState.DONE)
        logger.info(
            "turn_complete",
            model_calls=turn.model_calls,
            tool_calls=turn.tool_calls,
            chars=len(text),
        )
        return TurnOutcome(
            session_id=turn.session_id,
            text=text,
            model_calls=turn.model_calls,
            tool_calls=turn.tool_calls,
        )

    async def _stream_round(self, turn: _Turn, dispatch: bool) -> _Round:
        if turn.cancelled:
            raise TurnCancelledError(turn.session_id)

        aggregator = DeltaAggregator()
        tasks: list[asyncio.Task[ToolInvocationResult]] = []
        turn.model_calls += 1
        stream = self._client.stream(
            list(turn.context),
            self._tools,
            model=self._config.model,
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
        )
        iterator = stream.__aiter__()
        turn.transition(TurnState.STREAMING)

        try:
            while True:
                fragment = await self._next_fragment(turn, iterator)
                if fragment is None:
                    break
                output = aggregator.feed(fragment)
                if isinstance(output, str):
                    await self._deliver(turn, turn.sink.send_chunk(turn.session_id, output))
                elif output is not None:
                    if dispatch:
                        tasks.append(asyncio.create_task(self._dispatcher.invoke(output)))
                    else:
                        logger.info("tool_call_ignored", call_id=output.id, tool=output.name)
        except BaseException:
            await _cancel_all(tasks)
            raise
        finally:
            await _aclose(iterator)

        aggregator.finish()
        logger.debug(
            "model_call_complete",
            finish_reason=aggregator.finish_reason,
            ready_calls=len(aggregator.ready_calls),
        )
        return _Round(
            text=aggregator.text,
            calls=aggregator.ready_calls if dispatch else [],
            tasks=tasks,
        )

    async def _next_fragment(
        self, turn: _Turn, iterator: AsyncIterator[Fragment]
    ) -> Optional[Fragment]:
        """Next fragment, or None at end of stream. Model failures become ModelStreamError."""
        timeout = self._config.stream_idle_timeout
        try:
            return await self._await_or_cancel(turn, anext(iterator), timeout)
        except StopAsyncIteration:
            return None
        except TurnCancelledError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("model_stream_stalled", timeout=timeout)
            raise ModelStreamError(
                turn.session_id, f"Model stream stalled for more than {timeout} seconds"
            ) from e
        except Exception as e:
            logger.error("model_stream_failed", error=str(e))
            raise ModelStreamError(turn.session_id, f"Model call failed: {e}") from e

    async def _collect(
        self, turn: _Turn, tasks: list[asyncio.Task[ToolInvocationResult]]
    ) -> list[ToolInvocationResult]:
        """Wait for every dispatched call; results keep readiness order."""
        return await self._await_or_cancel(turn, asyncio.gather(*tasks), timeout=None)

    async def _await_or_cancel(
        self, turn: _Turn, awaitable: Awaitable[Any], timeout: Optional[float]
    ) -> Any:
        """Await ``awaitable`` unless the turn's cancel event fires or ``timeout`` elapses."""
        if turn.cancel_event is None:
            return await asyncio.wait_for(awaitable, timeout=timeout)

        task = asyncio.ensure_future(awaitable)
        cancel_waiter = asyncio.ensure_future(turn.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if turn.cancelled:
            logger.info("turn_cancelled", state=turn.state.value)
            raise TurnCancelledError(turn.session_id)
        raise asyncio.TimeoutError()

    async def _persist(self, turn: _Turn, message: ContextMessage) -> None:
        await self._store.append(to_record(turn.session_id, message))
        turn.context.append(message)

    async def _commit_round(self, turn: _Turn, messages: list[ContextMessage]) -> None:
        """Persist an assistant message with its tool results as a single write.

        The write is shielded: once started, cancelling the turn does not
        interrupt it, so the round lands whole or (on a store error) not at all.
        """
        records = [to_record(turn.session_id, m) for m in messages]
        await asyncio.shield(self._store.append_round(turn.session_id, records))
        turn.context.extend(messages)

    async def _deliver(self, turn: _Turn, delivery: Awaitable[None]) -> None:
        """Best-effort output: a broken channel must not fail the turn."""
        try:
            await delivery
        except Exception as e:
            logger.warning("output_delivery_failed", error=str(e))


async def _cancel_all(tasks: list[asyncio.Task[Any]]) -> None:
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def _aclose(iterator: AsyncIterator[Any]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()
