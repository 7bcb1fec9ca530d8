"""Unit tests for the state machine executor."""

import asyncio

import pytest

from oracle_sync.errors import FatalConfigError, NotFoundError
from oracle_sync.statemachines.statemachine import Executor, StateMachine, TaskStatus

from conftest import ManualClock


class Counter(StateMachine):
    """Sleeps ``params`` seconds between increments, finishes after three."""

    name = "counter"

    def init_memory(self):
        return {"count": 0}

    def validate(self, params):
        if params is not None and params < 0:
            raise FatalConfigError("negative delay")
        return params or 0

    def handlers(self):
        return {"start": self.start, "finish": self.finish}

    async def start(self, params, memory, ctx):
        memory["count"] += 1
        if memory["count"] >= 3:
            return ctx.transition("finish")
        return ctx.sleep(params)

    async def finish(self, params, memory, ctx):
        memory["finished"] = True
        return None


class Broken(StateMachine):
    name = "broken"

    def handlers(self):
        return {"start": self.start, "other": self.start}

    async def start(self, params, memory, ctx):
        match params:
            case "raise":
                raise RuntimeError("handler exploded")
            case "bad-transition":
                return ctx.transition("missing")
            case "bad-step":
                return 42
        return ctx.sleep(1)


class Gate(StateMachine):
    """Blocks on an event so tests can act while the handler is in flight."""

    name = "gate"

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    def init_memory(self):
        return {"cancelled_seen": None}

    def handlers(self):
        return {"start": self.start}

    async def start(self, params, memory, ctx):
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        memory["cancelled_seen"] = ctx.cancelled
        return ctx.sleep(10)


@pytest.fixture
def executor(clock):
    return Executor([Counter(), Broken()], clock=clock)


class TestRegistry:

    def test_create_unknown_type(self, executor):
        with pytest.raises(FatalConfigError):
            executor.create("nope")

    def test_create_invalid_params(self, executor):
        with pytest.raises(FatalConfigError):
            executor.create("counter", -1)
        assert executor.tasks == []

    def test_duplicate_id_rejected(self, executor):
        executor.create("counter", task_id="a")
        with pytest.raises(FatalConfigError):
            executor.create("counter", task_id="a")

    def test_generated_ids_unique(self, executor):
        first = executor.create("counter")
        second = executor.create("counter")
        assert first.id != second.id
        assert first.memory is not second.memory

    def test_get_unknown(self, executor):
        with pytest.raises(NotFoundError):
            executor.get("missing")

    def test_machine_without_start_rejected(self):
        class NoStart(StateMachine):
            name = "nostart"

            def handlers(self):
                return {}

        with pytest.raises(ValueError):
            Executor([NoStart()])


class TestTick:

    @pytest.mark.asyncio
    async def test_sleep_delays_next_invocation(self, executor, clock):
        instance = executor.create("counter", 5)

        assert await executor.tick() == 1
        assert instance.memory["count"] == 1

        clock.advance(4)
        assert await executor.tick() == 0
        assert instance.memory["count"] == 1

        clock.advance(1)
        await executor.tick()
        assert instance.memory["count"] == 2

    @pytest.mark.asyncio
    async def test_zero_sleep_runs_once_per_tick(self, executor):
        instance = executor.create("counter", 0)
        await executor.tick()
        assert instance.memory["count"] == 1

    @pytest.mark.asyncio
    async def test_transition_then_done(self, executor, clock):
        instance = executor.create("counter", 0)

        await executor.tick()
        await executor.tick()
        await executor.tick()
        assert instance.handler == "finish"
        assert executor.is_registered(instance.id)

        await executor.tick()
        assert instance.status is TaskStatus.DONE
        assert instance.memory["finished"]
        assert not executor.is_registered(instance.id)
        assert executor.get(instance.id) is instance

    @pytest.mark.asyncio
    async def test_handler_error_isolated(self, executor):
        failing = executor.create("broken", "raise")
        healthy = executor.create("counter", 0)

        await executor.tick()

        assert failing.status is TaskStatus.FAILED
        assert isinstance(failing.error, RuntimeError)
        assert healthy.memory["count"] == 1
        assert executor.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_transition_fails_task(self, executor):
        instance = executor.create("broken", "bad-transition")
        await executor.tick()
        assert instance.status is TaskStatus.FAILED
        assert isinstance(instance.error, FatalConfigError)

    @pytest.mark.asyncio
    async def test_invalid_step_fails_task(self, executor):
        instance = executor.create("broken", "bad-step")
        await executor.tick()
        assert instance.status is TaskStatus.FAILED
        assert isinstance(instance.error, TypeError)

    @pytest.mark.asyncio
    async def test_cancel_removes_task(self, executor):
        instance = executor.create("counter", 0)
        assert executor.cancel(instance.id)
        assert not executor.cancel(instance.id)

        assert await executor.tick() == 0
        assert instance.status is TaskStatus.CANCELLED
        assert instance.memory["count"] == 0

    @pytest.mark.asyncio
    async def test_history_bounded(self, executor):
        executor.HISTORY_SIZE = 2
        ids = [executor.create("counter", task_id=f"t{i}").id for i in range(3)]
        for task_id in ids:
            executor.cancel(task_id)

        with pytest.raises(NotFoundError):
            executor.get("t0")
        assert executor.get("t2").status is TaskStatus.CANCELLED


class TestInFlight:

    @pytest.mark.asyncio
    async def test_cancel_while_in_flight_discards_result(self):
        gate = Gate()
        executor = Executor([gate], clock=ManualClock())
        instance = executor.create("gate")

        tick = asyncio.create_task(executor.tick())
        await gate.entered.wait()
        executor.cancel(instance.id)
        gate.release.set()
        await tick

        assert instance.memory["cancelled_seen"] is True
        assert instance.status is TaskStatus.CANCELLED
        assert instance.due_at == 0

    @pytest.mark.asyncio
    async def test_in_flight_task_not_launched_twice(self):
        gate = Gate()
        executor = Executor([gate], clock=ManualClock())
        executor.create("gate")

        first = asyncio.create_task(executor.tick())
        await gate.entered.wait()
        assert await executor.tick() == 0

        gate.release.set()
        await first
        assert gate.calls == 1

    @pytest.mark.asyncio
    async def test_run_until_stopped(self):
        executor = Executor([Counter()])
        instance = executor.create("counter", 0)

        runner = asyncio.create_task(executor.run(interval=0.01))
        for _ in range(100):
            if instance.done:
                break
            await asyncio.sleep(0.01)
        executor.stop()
        await asyncio.wait_for(runner, timeout=1)

        assert instance.status is TaskStatus.DONE
        assert not executor.running

    @pytest.mark.asyncio
    async def test_overlapping_ticks_invoke_once(self):
        class Tracker(StateMachine):
            name = "tracker"

            def __init__(self):
                self.active = 0
                self.peak = 0

            def handlers(self):
                return {"start": self.start}

            async def start(self, params, memory, ctx):
                self.active += 1
                self.peak = max(self.peak, self.active)
                await asyncio.sleep(0.01)
                self.active -= 1
                return ctx.sleep(10)

        tracker = Tracker()
        executor = Executor([tracker], clock=ManualClock())
        executor.create("tracker")

        counts = await asyncio.gather(executor.tick(), executor.tick())

        assert sorted(counts) == [0, 1]
        assert tracker.peak == 1
        assert executor.get_stats()["in_flight"] == 0
