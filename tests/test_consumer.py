"""Tests for StepStreamConsumer.

These tests verify that:
1. Streamed runs move steps through their statuses as frames arrive
2. Chunk boundaries and malformed frames do not change the outcome
3. Rejected requests and broken streams end the run with a run error
4. Inline runs are all-or-nothing
5. Cancellation, timeouts and superseding runs end with cancelled=True
"""

import asyncio
import json

import httpx
import pytest

from agentrun.runtime.consumer import StepStreamConsumer, decode_error_message
from agentrun.runtime.errors import GENERIC_FAILURE_MESSAGE, RequestError, TransportError
from agentrun.runtime.types import RunMode, StepStatus, step_to_dict

from frames import SCENARIO_ONE, complete, encode, make_steps, sse_response, start

BASE_URL = "http://agents.test"
STREAM_MODE = RunMode.resolve("agent-1")
INLINE_MODE = RunMode.resolve(None, persona="Be brief.")


def run_once(handler, steps, text="hello", mode=STREAM_MODE, **kwargs):
    """Run one consumer to completion over a mock transport.

    Returns:
        (final state, list of published snapshots)
    """
    updates = []

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            consumer = StepStreamConsumer(base_url=BASE_URL, client=client, timeout=None, **kwargs)
            return await consumer.run(steps, text, mode, on_update=updates.append)

    return asyncio.run(go()), updates


def streaming(*parts):
    """Handler answering every request with the given body chunks."""

    def handler(request):
        return sse_response(list(parts))

    return handler


def all_pending(state):
    return all(status is StepStatus.PENDING for status in state.statuses.values())


# =============================================================================
# Streaming
# =============================================================================


class TestStreamingRun:
    """Happy-path and partial streams."""

    def test_mixed_success_and_error_run(self, three_steps):
        state, _ = run_once(streaming(encode(SCENARIO_ONE)), three_steps)

        assert state.statuses == {
            "A": StepStatus.COMPLETE,
            "B": StepStatus.ERROR,
            "C": StepStatus.COMPLETE,
        }
        assert state.final_output == "gamma"
        assert state.run_error is None
        assert state.cancelled is False

    def test_stream_ending_without_completion(self, three_steps):
        # Documented as accepted: EOF before execution-complete is not a run
        # error; the state keeps exactly what the seen frames produced.
        state, _ = run_once(streaming(encode(SCENARIO_ONE[:-1], done=False)), three_steps)

        assert state.final_output is None
        assert state.run_error is None
        assert state.statuses == {
            "A": StepStatus.COMPLETE,
            "B": StepStatus.ERROR,
            "C": StepStatus.COMPLETE,
        }

    def test_partial_stream_statuses_reflect_seen_frames(self, three_steps):
        state, _ = run_once(streaming(encode([start("A"), complete("A"), start("B")], done=False)), three_steps)

        assert state.statuses == {
            "A": StepStatus.COMPLETE,
            "B": StepStatus.RUNNING,
            "C": StepStatus.PENDING,
        }

    def test_request_shape(self, three_steps):
        seen = []

        def handler(request):
            seen.append(request)
            return sse_response([encode(SCENARIO_ONE)])

        run_once(handler, three_steps, text="  draft a memo \n")

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/api/agents/agent-1/execute/stream"
        assert request.headers["accept"] == "text/event-stream"
        assert json.loads(request.content) == {"input": "draft a memo"}

    def test_snapshots_published_in_order(self, three_steps):
        _, updates = run_once(streaming(encode(SCENARIO_ONE)), three_steps)

        assert all_pending(updates[0])
        assert updates[-1].final_output == "gamma"
        # One snapshot for the initial state plus one per frame
        assert len(updates) == 1 + len(SCENARIO_ONE)
        for earlier, later in zip(updates, updates[1:]):
            assert earlier is not later

    def test_frames_after_completion_not_read(self, three_steps):
        body = encode(SCENARIO_ONE, done=False) + encode([start("A")])

        state, updates = run_once(streaming(body), three_steps)

        assert state.statuses["A"] is StepStatus.COMPLETE
        assert updates[-1].final_output == "gamma"

    def test_replay_is_deterministic(self, three_steps):
        first, _ = run_once(streaming(encode(SCENARIO_ONE)), three_steps)
        second, _ = run_once(streaming(encode(SCENARIO_ONE)), three_steps)

        assert first == second

    def test_unknown_step_frame_ignored(self, three_steps):
        frames = [start("A"), complete("Z"), complete("A"), {"type": "execution-complete", "finalOutput": "ok"}]

        state, _ = run_once(streaming(encode(frames)), three_steps)

        assert set(state.statuses) == {"A", "B", "C"}
        assert "Z" not in state.results
        assert state.statuses["A"] is StepStatus.COMPLETE

    def test_comments_and_keepalives_ignored(self, three_steps):
        body = encode(SCENARIO_ONE, extra_lines=[": keep-alive", "event: progress", ""])

        state, _ = run_once(streaming(body), three_steps)

        assert state.final_output == "gamma"


class TestChunkBoundaries:
    """The consumer sees the same stream regardless of how it is chunked."""

    def test_split_anywhere_matches_single_chunk(self, three_steps):
        frames = list(SCENARIO_ONE)
        frames[1] = complete("A", "résumé ✓")
        body = encode(frames, raw_unicode=True)
        expected, _ = run_once(streaming(body), three_steps)
        mid_char = body.index("é".encode("utf-8")) + 1
        mid_json = body.index(b'"stepId"') + 3

        for offset in (1, mid_char, mid_json, len(body) // 2, len(body) - 1):
            state, _ = run_once(streaming(body[:offset], body[offset:]), three_steps)
            assert state == expected, offset

        assert expected.results["A"].output == "résumé ✓"

    def test_malformed_frame_isolated(self, three_steps):
        clean = encode(SCENARIO_ONE)
        records = clean.decode("utf-8").split("\n\n")
        records.insert(2, 'data: {"type": "step-start", "stepId": ')
        dirty = "\n\n".join(records).encode("utf-8")

        expected, _ = run_once(streaming(clean), three_steps)
        state, _ = run_once(streaming(dirty), three_steps)

        assert state == expected

    def test_out_of_range_duration_does_not_abort_run(self, three_steps):
        huge = 'data: {"type": "step-complete", "stepId": "A", "result": {"output": "x", "durationMs": 1e400}}'
        body = encode([start("A")], done=False) + encode([], done=False, extra_lines=[huge, ""]) + encode(SCENARIO_ONE[2:])

        state, _ = run_once(streaming(body), three_steps)

        assert state.statuses == {
            "A": StepStatus.RUNNING,
            "B": StepStatus.ERROR,
            "C": StepStatus.COMPLETE,
        }
        assert "A" not in state.results
        assert state.final_output == "gamma"
        assert state.run_error is None


class TestStreamingFailures:
    """Rejected requests and broken streams."""

    def test_rejected_with_error_body(self, three_steps):
        def handler(request):
            return httpx.Response(500, json={"error": "rate limited"})

        state, _ = run_once(handler, three_steps)

        assert state.run_error == "rate limited"
        assert state.error_kind == "request"
        assert all_pending(state)

    def test_rejected_with_unparsable_body(self, three_steps):
        def handler(request):
            return httpx.Response(500, content=b"<html>Bad Gateway</html>")

        state, _ = run_once(handler, three_steps)

        assert state.run_error == GENERIC_FAILURE_MESSAGE
        assert all_pending(state)

    def test_not_found(self, three_steps):
        def handler(request):
            return httpx.Response(404, json={"error": "Agent 'agent-1' not found"})

        state, _ = run_once(handler, three_steps)

        assert state.run_error == "Agent 'agent-1' not found"
        assert state.status_code == 404
        with pytest.raises(RequestError) as excinfo:
            state.raise_for_error()
        assert excinfo.value.status_code == 404

    def test_connection_refused(self, three_steps):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        state, _ = run_once(handler, three_steps)

        assert state.run_error == "connection refused"
        assert state.error_kind == "transport"
        assert all_pending(state)

    def test_stream_broken_midway_keeps_progress(self, three_steps):
        def handler(request):
            return sse_response(
                [encode([start("A"), complete("A"), start("B")], done=False)],
                raise_after=httpx.ReadError("connection reset"),
            )

        state, _ = run_once(handler, three_steps)

        assert state.statuses["A"] is StepStatus.COMPLETE
        assert state.statuses["B"] is StepStatus.RUNNING
        assert state.run_error == "connection reset"
        assert state.error_kind == "transport"
        with pytest.raises(TransportError):
            state.raise_for_error()


# =============================================================================
# Inline
# =============================================================================


class TestInlineRun:
    """Inline runs apply the whole result at once."""

    def test_inline_result_applied(self):
        steps = make_steps("A", "B")

        def handler(request):
            return httpx.Response(
                200,
                json={
                    "steps": [
                        {"stepId": "A", "validationPassed": True, "output": "first", "durationMs": 3},
                        {"stepId": "B", "validationPassed": False, "error": "bad output", "output": ""},
                    ],
                    "finalOutput": "done",
                    "totalDurationMs": 9,
                },
            )

        state, updates = run_once(handler, steps, mode=INLINE_MODE)

        assert state.statuses == {"A": StepStatus.COMPLETE, "B": StepStatus.ERROR}
        assert state.final_output == "done"
        assert state.results["B"].error == "bad output"
        # Initial snapshot, then a single transition
        assert len(updates) == 2

    def test_request_shape(self):
        steps = make_steps("A", "B")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"steps": [], "finalOutput": ""})

        run_once(handler, steps, text=" go ", mode=INLINE_MODE)

        request = seen[0]
        assert str(request.url) == f"{BASE_URL}/api/agents/execute-inline"
        assert json.loads(request.content) == {
            "persona": "Be brief.",
            "steps": [step_to_dict(s) for s in steps],
            "input": "go",
        }

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"error": "provider down"}),
            httpx.Response(502, content=b"upstream error"),
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json=["not", "an", "object"]),
            httpx.Response(200, json={"steps": [{"stepId": "A", "validationPassed": True}]}),
            httpx.Response(200, json={"steps": [{"stepId": "A", "output": 5}], "finalOutput": "x"}),
            httpx.Response(
                200,
                content=b'{"steps": [{"stepId": "A", "output": "x", "durationMs": 1e400}], "finalOutput": "x"}',
            ),
            httpx.Response(200, content=b'{"steps": [], "finalOutput": "x", "totalDurationMs": 1e400}'),
        ],
    )
    def test_failed_request_leaves_every_step_pending(self, response):
        steps = make_steps("A", "B")

        state, _ = run_once(lambda request: response, steps, mode=INLINE_MODE)

        assert state.run_error
        assert all_pending(state)
        assert state.results == {}
        assert state.final_output is None

    def test_invalid_body_reported_as_transport_error(self):
        state, _ = run_once(lambda request: httpx.Response(200, content=b"{"), make_steps("A"), mode=INLINE_MODE)

        assert state.run_error == "Invalid response from execution service"
        assert state.error_kind == "transport"

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        state, _ = run_once(handler, make_steps("A"), mode=INLINE_MODE)

        assert state.error_kind == "transport"
        assert all_pending(state)


# =============================================================================
# Lifecycle
# =============================================================================


class TestRunLifecycle:
    """Starting, cancelling and superseding runs."""

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_blank_input_not_started(self, three_steps, text):
        calls = []

        def handler(request):
            calls.append(request)
            return sse_response([encode(SCENARIO_ONE)])

        state, updates = run_once(handler, three_steps, text=text)

        assert state is None
        assert updates == []
        assert calls == []

    def test_no_steps_not_started(self):
        state, updates = run_once(streaming(encode(SCENARIO_ONE)), [])

        assert state is None
        assert updates == []

    def test_cancel_mid_stream(self, three_steps):
        async def go():
            hang = asyncio.Event()
            a_done = asyncio.Event()

            def handler(request):
                return sse_response([encode([start("A"), complete("A"), start("B")], done=False)], hang=hang)

            def on_update(state):
                if state.statuses["B"] is StepStatus.RUNNING:
                    a_done.set()

            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                consumer = StepStreamConsumer(base_url=BASE_URL, client=client, timeout=None, on_update=on_update)
                run = asyncio.ensure_future(consumer.run(three_steps, "hello", STREAM_MODE))
                await a_done.wait()
                assert consumer.is_running
                assert consumer.cancel() is True
                state = await run
                assert consumer.is_running is False
                assert consumer.cancel() is False
                return state

        state = asyncio.run(go())

        assert state.cancelled is True
        assert state.run_error is None
        assert state.statuses["A"] is StepStatus.COMPLETE
        assert state.statuses["B"] is StepStatus.RUNNING

    def test_timeout_cancels_run(self, three_steps):
        async def go():
            hang = asyncio.Event()

            def handler(request):
                return sse_response([encode([start("A")], done=False)], hang=hang)

            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                consumer = StepStreamConsumer(base_url=BASE_URL, client=client, timeout=0.05)
                return await consumer.run(three_steps, "hello", STREAM_MODE)

        state = asyncio.run(go())

        assert state.cancelled is True
        assert state.run_error is None
        assert state.statuses["A"] is StepStatus.RUNNING

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_non_positive_timeout_disables_timeout(self, three_steps, timeout):
        async def go():
            transport = httpx.MockTransport(streaming(encode(SCENARIO_ONE)))
            async with httpx.AsyncClient(transport=transport) as client:
                consumer = StepStreamConsumer(base_url=BASE_URL, client=client, timeout=timeout)
                assert consumer.timeout is None
                return await consumer.run(three_steps, "hello", STREAM_MODE)

        state = asyncio.run(go())

        assert state.cancelled is False
        assert state.final_output == "gamma"

    def test_new_run_cancels_active_run(self, three_steps):
        async def go():
            hang = asyncio.Event()
            first_started = asyncio.Event()

            def handler(request):
                if json.loads(request.content)["input"] == "first":
                    return sse_response([encode([start("A")], done=False)], hang=hang)
                return sse_response([encode(SCENARIO_ONE)])

            def on_update(state):
                if state.statuses["A"] is StepStatus.RUNNING:
                    first_started.set()

            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                consumer = StepStreamConsumer(base_url=BASE_URL, client=client, timeout=None)
                first = asyncio.ensure_future(consumer.run(three_steps, "first", STREAM_MODE, on_update=on_update))
                await first_started.wait()
                second_state = await consumer.run(three_steps, "second", STREAM_MODE)
                first_state = await first
                return first_state, second_state, consumer.is_running

        first_state, second_state, still_running = asyncio.run(go())

        assert first_state.cancelled is True
        assert first_state.run_error is None
        assert second_state.final_output == "gamma"
        assert second_state.cancelled is False
        assert still_running is False

    def test_caller_cancellation_propagates(self, three_steps):
        async def go():
            hang = asyncio.Event()
            started = asyncio.Event()

            def handler(request):
                return sse_response([encode([start("A")], done=False)], hang=hang)

            def on_update(state):
                if state.statuses["A"] is StepStatus.RUNNING:
                    started.set()

            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                consumer = StepStreamConsumer(base_url=BASE_URL, client=client, timeout=None, on_update=on_update)
                run = asyncio.ensure_future(consumer.run(three_steps, "hello", STREAM_MODE))
                await started.wait()
                run.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await run
                return consumer.is_running

        assert asyncio.run(go()) is False


class TestDecodeErrorMessage:
    @pytest.mark.parametrize(
        "body, expected",
        [
            (b'{"error": "rate limited"}', "rate limited"),
            (b'{"error": ""}', GENERIC_FAILURE_MESSAGE),
            (b'{"error": 42}', GENERIC_FAILURE_MESSAGE),
            (b'{"detail": "nope"}', GENERIC_FAILURE_MESSAGE),
            (b'["error"]', GENERIC_FAILURE_MESSAGE),
            (b"", GENERIC_FAILURE_MESSAGE),
            (b"\xff\xfe", GENERIC_FAILURE_MESSAGE),
        ],
    )
    def test_decode(self, body, expected):
        assert decode_error_message(body) == expected
