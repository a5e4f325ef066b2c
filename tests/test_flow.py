"""
Tests for the flow driver.
"""

import asyncio

import pytest

from backpackflow.core.errors import (
    CancellationError,
    ExecutionError,
    FlowError,
    Phase,
    PostProcessingError,
    PreparationError,
)
from backpackflow.core.events import EventStreamer, StreamEventType
from backpackflow.core.flow import Flow, RunOutcome, Termination, run
from backpackflow.core.node import BaseNode, BatchNode, Node, ParallelBatchNode


# ==================== Test Nodes ====================

class Step(Node):
    """Appends its name to ``shared["trace"]`` and returns a fixed action."""

    def __init__(self, name, action=None, **kwargs):
        super().__init__(name=name, **kwargs)
        self.action = action
        self.exec_args = []

    def prep(self, shared):
        shared.setdefault("trace", []).append(self.name)
        return self.name

    def exec(self, prep_res):
        self.exec_args.append(prep_res)
        return f"{prep_res}-done"

    def post(self, shared, prep_res, exec_res):
        return self.action


class Flaky(Node):
    """Fails the first ``failures`` exec calls."""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.calls = 0

    async def exec(self, prep_res):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return "success"

    def post(self, shared, prep_res, exec_res):
        shared["result"] = exec_res
        return None


class Counter(Node):
    """Loops on "continue" until ``limit`` is reached."""

    def __init__(self, limit, **kwargs):
        super().__init__(**kwargs)
        self.limit = limit

    def prep(self, shared):
        return shared["count"]

    def exec(self, count):
        return count + 1

    def post(self, shared, prep_res, exec_res):
        shared["count"] = exec_res
        return "continue" if exec_res < self.limit else None


def collect_events(streamer, namespace):
    events = []
    streamer.subscribe(namespace, events.append)
    return events


# ==================== Traversal ====================

class TestTraversal:
    """Tests for step sequencing and termination."""

    @pytest.mark.asyncio
    async def test_linear_graph_runs_each_node_once(self):
        """N reachable nodes without cycles take exactly N steps."""
        a, b, c = Step("a"), Step("b"), Step("c", action="last")
        a >> b >> c
        shared = {}

        outcome = await Flow(a).run_outcome(shared)

        assert shared["trace"] == ["a", "b", "c"]
        assert outcome.steps == 3
        assert outcome.ok
        assert outcome.last_node is c
        assert outcome.result == "last"

    @pytest.mark.asyncio
    async def test_run_returns_last_post_value(self):
        a = Step("a", action="finished")
        assert await Flow(a).run({}) == "finished"

    @pytest.mark.asyncio
    async def test_phase_order(self):
        """prep, exec and post run in order, one node at a time."""
        order = []

        class Ordered(BaseNode):
            async def prep(self, shared):
                order.append((self.name, "prep"))

            async def exec(self, prep_res):
                await asyncio.sleep(0)
                order.append((self.name, "exec"))

            def post(self, shared, prep_res, exec_res):
                order.append((self.name, "post"))

        a, b = Ordered("a"), Ordered("b")
        a >> b
        await Flow(a).run({})

        assert order == [
            ("a", "prep"), ("a", "exec"), ("a", "post"),
            ("b", "prep"), ("b", "exec"), ("b", "post"),
        ]

    @pytest.mark.asyncio
    async def test_exec_never_receives_shared_context(self):
        """exec gets the prep result and nothing else."""
        a, b = Step("a"), Step("b")
        a >> b
        shared = {}

        await Flow(a).run(shared)

        for node in (a, b):
            assert node.exec_args == [node.name]
            assert all(arg is not shared for arg in node.exec_args)

    @pytest.mark.asyncio
    async def test_absent_action_uses_default_edge(self):
        a, b = Step("a", action=None), Step("b")
        a >> b
        shared = {}

        await Flow(a).run(shared)

        assert shared["trace"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_default_literal_uses_default_edge(self):
        """The "default" label selects the default edge too."""
        a, b = Step("a", action="default"), Step("b")
        a >> b
        shared = {}

        await Flow(a).run(shared)

        assert shared["trace"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_absent_action_without_default_ends_run(self):
        a, b = Step("a"), Step("b")
        a - "other" >> b

        outcome = await Flow(a).run_outcome({})

        assert outcome.steps == 1
        assert outcome.termination == Termination.NO_SUCCESSOR

    @pytest.mark.asyncio
    async def test_explicit_unmatched_label_is_dead_end(self):
        """An unknown explicit label ends the run even with a default edge."""
        a, b = Step("a", action="unknown"), Step("b")
        a >> b
        shared = {}
        streamer = EventStreamer()
        flow = Flow(a, name="dead", streamer=streamer)
        events = collect_events(streamer, "dead")

        outcome = await flow.run_outcome(shared)

        assert shared["trace"] == ["a"]
        assert outcome.ok
        assert outcome.termination == Termination.DEAD_END
        assert outcome.last_action == "unknown"
        assert any(e.content["event"] == "dead_end" for e in events)

    @pytest.mark.asyncio
    async def test_overwritten_label_only_reaches_last_registration(self):
        """Wiring "x" twice makes only the second successor reachable."""
        a, first, second = Step("a", action="x"), Step("first"), Step("second")
        a - "x" >> first
        with pytest.warns(UserWarning):
            a - "x" >> second
        shared = {}

        await Flow(a).run(shared)

        assert shared["trace"] == ["a", "second"]

    @pytest.mark.asyncio
    async def test_self_loop_runs_many_iterations(self):
        """A self-loop runs until post stops returning its label."""
        counter = Counter(limit=5000)
        counter - "continue" >> counter
        shared = {"count": 0}

        outcome = await Flow(counter).run_outcome(shared)

        assert shared["count"] == 5000
        assert outcome.steps == 5000
        assert outcome.termination == Termination.NO_SUCCESSOR

    @pytest.mark.asyncio
    async def test_sync_and_async_phases_mix(self):
        class AsyncStep(BaseNode):
            async def prep(self, shared):
                return 2

            async def exec(self, prep_res):
                return prep_res * 21

            async def post(self, shared, prep_res, exec_res):
                shared["value"] = exec_res

        a = Step("a")
        a >> AsyncStep()
        shared = {}

        await Flow(a).run(shared)

        assert shared["value"] == 42

    @pytest.mark.asyncio
    async def test_missing_start_node(self):
        with pytest.raises(ValueError):
            await Flow().run({})

    @pytest.mark.asyncio
    async def test_module_run_wraps_plain_node(self):
        a, b = Step("a"), Step("b", action="end")
        a >> b

        outcome = await run(a, {})

        assert isinstance(outcome, RunOutcome)
        assert outcome.result == "end"
        assert outcome.steps == 2

    @pytest.mark.asyncio
    async def test_flow_is_reusable(self):
        """The same flow runs again against a fresh context."""
        a, b = Step("a"), Step("b")
        a >> b
        flow = Flow(a)

        first, second = {}, {}
        await flow.run(first)
        await flow.run(second)

        assert first["trace"] == second["trace"] == ["a", "b"]


# ==================== Retries ====================

class TestRetries:
    """Tests for retry, fallback and attempt counts."""

    @pytest.mark.asyncio
    async def test_succeeds_within_budget(self):
        """N-1 failures with budget >= N yields success after N attempts."""
        node = Flaky(failures=2, max_retries=3)
        shared = {}

        outcome = await Flow(node).run_outcome(shared)

        assert outcome.ok
        assert shared["result"] == "success"
        assert outcome.last_attempts == 3

    @pytest.mark.asyncio
    async def test_exhausted_budget_raises_execution_error(self):
        """N-1 failures with budget < N fails tagged with the attempts made."""
        node = Flaky(failures=3, max_retries=2, name="flaky")

        with pytest.raises(ExecutionError) as exc_info:
            await Flow(node).run({})

        error = exc_info.value
        assert error.attempts == 2
        assert error.node is node
        assert error.node_name == "flaky"
        assert error.phase == Phase.EXEC
        assert isinstance(error.cause, ConnectionError)
        assert error.__cause__ is error.cause
        assert node.calls == 2

    @pytest.mark.asyncio
    async def test_single_attempt_by_default(self):
        node = Flaky(failures=1)

        outcome = await Flow(node).run_outcome({})

        assert isinstance(outcome.error, ExecutionError)
        assert outcome.error.attempts == 1
        assert outcome.termination == Termination.FAILED

    @pytest.mark.asyncio
    async def test_fallback_value_recovers(self):
        node = Flaky(failures=5, max_retries=2, fallback="cached")
        shared = {}
        streamer = EventStreamer()
        flow = Flow(node, name="fb", streamer=streamer)
        events = collect_events(streamer, "fb")

        outcome = await flow.run_outcome(shared)

        assert outcome.ok
        assert shared["result"] == "cached"
        assert outcome.last_attempts == 2
        assert [e.content["attempts"] for e in events if e.content["event"] == "fallback"] == [2]

    @pytest.mark.asyncio
    async def test_fallback_handler_gets_prep_result_and_error(self):
        seen = []

        def handler(prep_res, exc):
            seen.append((prep_res, type(exc)))
            return "recovered"

        class Prepared(Flaky):
            def prep(self, shared):
                return "input"

        shared = {}
        await Flow(Prepared(failures=1, fallback=handler)).run(shared)

        assert seen == [("input", ConnectionError)]
        assert shared["result"] == "recovered"

    @pytest.mark.asyncio
    async def test_failing_fallback_raises_with_its_cause(self):
        def handler(prep_res, exc):
            raise KeyError("no cache")

        node = Flaky(failures=5, max_retries=3, fallback=handler)

        with pytest.raises(ExecutionError) as exc_info:
            await Flow(node).run({})

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.cause, KeyError)

    @pytest.mark.asyncio
    async def test_overridden_exec_fallback(self):
        class Degrading(Flaky):
            def exec_fallback(self, prep_res, exc):
                return f"degraded: {exc}"

        shared = {}
        await Flow(Degrading(failures=1)).run(shared)

        assert shared["result"] == "degraded: attempt 1 failed"

    @pytest.mark.asyncio
    async def test_retry_events_report_backoff(self):
        node = Flaky(failures=2, max_retries=3, wait=0.001, exponential_backoff=True)
        streamer = EventStreamer()
        flow = Flow(node, name="retry", streamer=streamer)
        events = collect_events(streamer, "retry")

        await flow.run({})

        retries = [e.content for e in events if e.content["event"] == "retry"]
        assert [r["attempt"] for r in retries] == [1, 2]
        assert [r["wait"] for r in retries] == [0.001, 0.002]

    @pytest.mark.asyncio
    async def test_plain_base_node_exec_failure(self):
        """A BaseNode has no retry policy: one attempt, then ExecutionError."""
        class Broken(BaseNode):
            def exec(self, prep_res):
                raise RuntimeError("nope")

        with pytest.raises(ExecutionError) as exc_info:
            await Flow(Broken()).run({})

        assert exc_info.value.attempts == 1


# ==================== Error Taxonomy ====================

class TestErrors:
    """Tests for structured failures."""

    @pytest.mark.asyncio
    async def test_prep_failure_is_not_retried(self):
        class BadPrep(Flaky):
            def prep(self, shared):
                raise KeyError("missing input")

        node = BadPrep(failures=0, max_retries=3)

        with pytest.raises(PreparationError) as exc_info:
            await Flow(node).run({})

        assert exc_info.value.phase == Phase.PREP
        assert isinstance(exc_info.value.cause, KeyError)
        assert node.calls == 0

    @pytest.mark.asyncio
    async def test_post_failure_keeps_partial_mutation(self):
        """No rollback: mutations before a post failure stay visible."""
        class BadPost(Step):
            def post(self, shared, prep_res, exec_res):
                shared["partial"] = exec_res
                raise ValueError("could not store")

        after = Step("after")
        node = BadPost("bad")
        node >> after
        shared = {}

        outcome = await Flow(node).run_outcome(shared)

        assert isinstance(outcome.error, PostProcessingError)
        assert outcome.error.phase == Phase.POST
        assert outcome.error.attempts == 1
        assert shared["partial"] == "bad-done"
        assert shared["trace"] == ["bad"]
        assert outcome.result is None

    @pytest.mark.asyncio
    async def test_error_to_dict(self):
        node = Flaky(failures=1, name="flaky")

        outcome = await Flow(node).run_outcome({})

        assert outcome.error.to_dict() == {
            "error": "ExecutionError",
            "node": "flaky",
            "phase": "exec",
            "attempts": 1,
            "cause": repr(outcome.error.cause),
        }

    @pytest.mark.asyncio
    async def test_error_event_published(self):
        streamer = EventStreamer()
        flow = Flow(Flaky(failures=1, name="flaky"), name="errs", streamer=streamer)
        errors = []
        streamer.subscribe_to_type("errs", StreamEventType.ERROR, errors.append)

        await flow.run_outcome({})

        assert len(errors) == 1
        assert errors[0].content["failure"]["node"] == "flaky"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", [["not", "a", "label"], 5])
    async def test_non_string_action_is_post_failure(self, action):
        """An action that cannot name an edge fails post instead of routing."""
        node = Step("bad", action=action)
        node - "5" >> Step("never")
        shared = {}

        outcome = await Flow(node).run_outcome(shared)

        assert isinstance(outcome.error, PostProcessingError)
        assert isinstance(outcome.error.cause, TypeError)
        assert outcome.error.node is node
        assert outcome.termination == Termination.FAILED
        assert shared["trace"] == ["bad"]

    @pytest.mark.asyncio
    async def test_nested_flow_non_string_action_is_post_failure(self):
        class Counting(Flow):
            def post(self, shared, prep_res, exec_res):
                return len(shared["trace"])

        inner = Counting(Step("a"), name="inner")

        with pytest.raises(PostProcessingError) as exc_info:
            await Flow(inner).run({})

        assert exc_info.value.node is inner
        assert isinstance(exc_info.value.cause, TypeError)

    def test_all_errors_are_flow_errors(self):
        for cls in (PreparationError, ExecutionError, PostProcessingError, CancellationError):
            assert issubclass(cls, FlowError)


# ==================== Cancellation ====================

class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_first_step(self):
        a = Step("a")
        cancel = asyncio.Event()
        cancel.set()
        shared = {}

        outcome = await Flow(a).run_outcome(shared, cancel_event=cancel)

        assert isinstance(outcome.error, CancellationError)
        assert outcome.termination == Termination.CANCELLED
        assert outcome.steps == 0
        assert "trace" not in shared

    @pytest.mark.asyncio
    async def test_cancel_observed_between_steps(self):
        """A node that sets the signal completes; the next one never starts."""
        cancel = asyncio.Event()

        class Canceller(Step):
            def post(self, shared, prep_res, exec_res):
                cancel.set()
                return None

        a, b = Canceller("a"), Step("b")
        a >> b
        shared = {}

        with pytest.raises(CancellationError) as exc_info:
            await Flow(a).run(shared, cancel_event=cancel)

        assert shared["trace"] == ["a"]
        assert exc_info.value.node is b
        assert exc_info.value.phase is None

    @pytest.mark.asyncio
    async def test_cancel_during_exec_lets_step_finish(self):
        """A signal set mid-exec is seen only before the next step."""
        cancel = asyncio.Event()

        class SetsDuringExec(Step):
            async def exec(self, prep_res):
                cancel.set()
                await asyncio.sleep(0.01)
                self.exec_args.append("finished")
                return "done"

            def post(self, shared, prep_res, exec_res):
                shared["posted"] = exec_res
                return None

        a, b = SetsDuringExec("a"), Step("b")
        a >> b
        shared = {}

        with pytest.raises(CancellationError) as exc_info:
            await Flow(a).run(shared, cancel_event=cancel)

        assert a.exec_args == ["finished"]
        assert shared["posted"] == "done"
        assert shared["trace"] == ["a"]
        assert exc_info.value.node is b
        assert b.exec_args == []

    @pytest.mark.asyncio
    async def test_cancel_stops_self_loop(self):
        cancel = asyncio.Event()

        class Stopper(Counter):
            def post(self, shared, prep_res, exec_res):
                if exec_res == 10:
                    cancel.set()
                return super().post(shared, prep_res, exec_res)

        node = Stopper(limit=1_000_000)
        node - "continue" >> node
        shared = {"count": 0}

        outcome = await Flow(node).run_outcome(shared, cancel_event=cancel)

        assert shared["count"] == 10
        assert outcome.steps == 10
        assert outcome.termination == Termination.CANCELLED


# ==================== Nested Flows ====================

class TestNestedFlows:
    """Tests for flows used as nodes."""

    @pytest.mark.asyncio
    async def test_inner_flow_then_outer_successor(self):
        inner_a, inner_b = Step("inner_a"), Step("inner_b")
        inner_a >> inner_b
        inner = Flow(inner_a, name="inner")
        after = Step("after")
        inner >> after
        shared = {}

        outcome = await Flow(inner, name="outer").run_outcome(shared)

        assert shared["trace"] == ["inner_a", "inner_b", "after"]
        assert outcome.steps == 2

    @pytest.mark.asyncio
    async def test_inner_result_routes_outer_graph(self):
        """The inner flow's last action is the nested flow's action."""
        inner = Flow(Step("inner", action="approved"), name="inner")
        approved, rejected = Step("approved"), Step("rejected")
        inner - "approved" >> approved
        inner - "rejected" >> rejected
        shared = {}

        await Flow(inner).run(shared)

        assert shared["trace"] == ["inner", "approved"]

    @pytest.mark.asyncio
    async def test_inner_error_propagates_unchanged(self):
        failing = Flaky(failures=1, name="inner_flaky")
        inner = Flow(failing, name="inner")

        with pytest.raises(ExecutionError) as exc_info:
            await Flow(inner, name="outer").run({})

        assert exc_info.value.node is failing

    @pytest.mark.asyncio
    async def test_run_warns_when_flow_has_successors(self):
        """run() still completes on a flow wired as a node."""
        inner = Flow(Step("a"), name="inner")
        inner >> Step("unreached")
        shared = {}

        await inner.run(shared)

        assert shared["trace"] == ["a"]


# ==================== Batch Nodes ====================

class Doubler(BatchNode):
    def prep(self, shared):
        return shared["items"]

    def exec(self, item):
        if item < 0:
            raise ValueError("negative")
        return item * 2

    def post(self, shared, prep_res, exec_res):
        shared["results"] = exec_res


class TestBatchNodes:
    """Tests for batch and parallel batch nodes."""

    @pytest.mark.asyncio
    async def test_batch_runs_exec_per_item(self):
        shared = {"items": [1, 2, 3]}

        await Flow(Doubler()).run(shared)

        assert shared["results"] == [2, 4, 6]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        shared = {"items": []}

        await Flow(Doubler()).run(shared)

        assert shared["results"] == []

    @pytest.mark.asyncio
    async def test_each_item_has_own_retry_budget(self):
        calls = {}

        class FlakyItems(Doubler):
            def exec(self, item):
                calls[item] = calls.get(item, 0) + 1
                if item == 2 and calls[item] < 2:
                    raise ConnectionError("transient")
                return item * 2

        shared = {"items": [1, 2, 3]}

        outcome = await Flow(FlakyItems(max_retries=2)).run_outcome(shared)

        assert shared["results"] == [2, 4, 6]
        assert calls == {1: 1, 2: 2, 3: 1}
        assert outcome.last_attempts == 2

    @pytest.mark.asyncio
    async def test_item_failure_fails_batch(self):
        shared = {"items": [1, -1]}

        with pytest.raises(ExecutionError):
            await Flow(Doubler()).run(shared)

        assert "results" not in shared

    @pytest.mark.asyncio
    async def test_item_fallback(self):
        shared = {"items": [1, -1, 3]}

        await Flow(Doubler(fallback=0)).run(shared)

        assert shared["results"] == [2, 0, 6]

    @pytest.mark.asyncio
    async def test_parallel_batch_keeps_order_and_limit(self):
        active, peak = 0, 0

        class Slow(ParallelBatchNode):
            def prep(self, shared):
                return shared["items"]

            async def exec(self, item):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01 * (5 - item))
                active -= 1
                return item * 10

            def post(self, shared, prep_res, exec_res):
                shared["results"] = exec_res

        shared = {"items": [1, 2, 3, 4]}

        await Flow(Slow(concurrency_limit=2)).run(shared)

        assert shared["results"] == [10, 20, 30, 40]
        assert peak == 2

    @pytest.mark.asyncio
    async def test_parallel_failure_cancels_running_items(self):
        """No item keeps running once the run has reported its failure."""
        log = []

        class HalfFails(ParallelBatchNode):
            def prep(self, shared):
                return [0, 1]

            async def exec(self, item):
                if item == 0:
                    raise ValueError("item 0 failed")
                try:
                    await asyncio.sleep(0.2)
                except asyncio.CancelledError:
                    log.append("item 1 cancelled")
                    raise
                log.append("item 1 finished")
                return item

            def post(self, shared, prep_res, exec_res):
                shared["results"] = exec_res

        shared = {}

        outcome = await Flow(HalfFails()).run_outcome(shared)

        assert isinstance(outcome.error, ExecutionError)
        assert isinstance(outcome.error.cause, ValueError)
        assert log == ["item 1 cancelled"]

        await asyncio.sleep(0.3)

        assert log == ["item 1 cancelled"]
        assert "results" not in shared


# ==================== Events ====================

class TestFlowEvents:
    """Tests for lifecycle events."""

    @pytest.mark.asyncio
    async def test_lifecycle_event_sequence(self):
        a, b = Step("a", action="next"), Step("b")
        a - "next" >> b
        streamer = EventStreamer()
        flow = Flow(a, name="life", streamer=streamer)
        events = collect_events(streamer, "life")

        await flow.run({})

        names = [e.content["event"] for e in events]
        assert names == [
            "flow_start",
            "node_start", "node_end", "transition",
            "node_start", "node_end",
            "flow_end",
        ]
        transition = events[3].content
        assert transition["action"] == "next"
        assert transition["to"] == "b"
        assert events[2].content["attempts"] == 1
        assert events[-1].type == StreamEventType.FINAL
        assert events[-1].content["termination"] == "no_successor"

    @pytest.mark.asyncio
    async def test_module_run_attaches_streamer(self):
        streamer = EventStreamer()
        events = collect_events(streamer, "Flow")

        await run(Step("a"), {}, streamer=streamer)

        assert events[0].content["event"] == "flow_start"
