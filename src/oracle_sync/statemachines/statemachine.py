#!/usr/bin/env python3
"""Cooperative state machine executor.

Every running workflow or poller is a ``TaskInstance``: a machine type, the
name of its current handler, immutable params and a memory object the
instance owns. One executor tick invokes each due instance's handler once.
A handler yields by returning a step:

* ``Sleep(seconds)``: stay on the same handler, due again after the delay
* ``Transition(name)``: switch handler, memory kept, due immediately
* ``Done()`` or ``None``: finished, the instance leaves the registry

Handlers never block; the only suspension points are awaits on external
services and the returned step. Errors escaping a handler are recorded on
the instance and never propagate out of the executor.
"""

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Protocol, TypeAlias

from ..errors import FatalConfigError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Sleep:
    seconds: float


@dataclass(frozen=True, slots=True)
class Transition:
    handler: str


@dataclass(frozen=True, slots=True)
class Done:
    pass


Step: TypeAlias = Sleep | Transition | Done | None


class TaskStatus(Enum):
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Clock(Protocol):
    def now(self) -> float: ...


class MonotonicClock:
    """Wall clock based on ``time.monotonic``."""

    def now(self) -> float:
        return time.monotonic()


@dataclass(slots=True, eq=False)
class TaskInstance:
    """One running or finished state machine execution."""

    id: str
    type: str
    params: Any
    memory: Any
    handler: str = "start"
    status: TaskStatus = TaskStatus.RUNNING
    due_at: float = 0.0
    error: BaseException | None = None
    iterations: int = 0
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def done(self) -> bool:
        return self.status is not TaskStatus.RUNNING

    def get_status(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "handler": self.handler,
            "status": self.status.value,
            "iterations": self.iterations,
            "error": repr(self.error) if self.error else None,
        }


class Context:
    """Capabilities handed to a handler for one invocation."""

    def __init__(self, executor: "Executor", instance: TaskInstance) -> None:
        self._executor = executor
        self._instance = instance

    @property
    def task_id(self) -> str:
        return self._instance.id

    @property
    def cancelled(self) -> bool:
        """True once the instance has been removed from the executor."""
        return not self._executor.is_registered(self._instance.id)

    def now(self) -> float:
        return self._executor.clock.now()

    def sleep(self, seconds: float) -> Sleep:
        if seconds < 0:
            raise ValueError(f"Sleep must be non-negative, got {seconds}")
        return Sleep(seconds)

    def transition(self, handler: str) -> Transition:
        return Transition(handler)

    def done(self) -> Done:
        return Done()


Handler: TypeAlias = Callable[[Any, Any, Context], Awaitable[Step]]


class StateMachine(ABC):
    """A named family of tasks sharing handlers.

    Subclasses set ``name``, build a fresh memory object per instance and
    map handler names to coroutine functions. ``start`` is the entry handler.
    """

    name: ClassVar[str]

    def init_memory(self) -> Any:
        return None

    def validate(self, params: Any) -> Any:
        """Normalize params, raising FatalConfigError when they are malformed."""
        return params

    @abstractmethod
    def handlers(self) -> dict[str, Handler]:
        ...


class Executor:
    """Registry and scheduler of task instances."""

    HISTORY_SIZE: int = 1000

    def __init__(self, machines: Iterable[StateMachine] = (), clock: Clock | None = None) -> None:
        self.clock: Clock = clock or MonotonicClock()
        self._machines: dict[str, StateMachine] = {}
        self._handlers: dict[str, dict[str, Handler]] = {}
        self._tasks: dict[str, TaskInstance] = {}
        # Finished instances kept for inspection, oldest evicted first
        self._history: OrderedDict[str, TaskInstance] = OrderedDict()
        self._running: set[str] = set()
        self._inflight: set[asyncio.Task] = set()
        self._ids = itertools.count(1)
        self.running = False
        self.shutdown_event = asyncio.Event()

        for machine in machines:
            self.register(machine)

    def register(self, machine: StateMachine) -> None:
        handlers = machine.handlers()
        if "start" not in handlers:
            raise ValueError(f"State machine {machine.name} has no start handler")
        self._machines[machine.name] = machine
        self._handlers[machine.name] = handlers

    # Registry

    def create(self, type_name: str, params: Any = None, task_id: str | None = None) -> TaskInstance:
        """
        Register a new task instance, due immediately.

        Raises:
            FatalConfigError: Unknown machine type, duplicate id or invalid params
        """
        machine = self._machines.get(type_name)
        if machine is None:
            raise FatalConfigError(f"Unknown state machine type: {type_name}")

        task_id = task_id or f"{type_name}-{next(self._ids)}"
        if task_id in self._tasks:
            raise FatalConfigError(f"Task {task_id} is already running")

        instance = TaskInstance(
            id=task_id,
            type=type_name,
            params=machine.validate(params),
            memory=machine.init_memory(),
            due_at=self.clock.now(),
        )
        self._history.pop(task_id, None)
        self._tasks[task_id] = instance
        logger.debug(f"Created task {task_id}")
        return instance

    def cancel(self, task_id: str) -> bool:
        """Remove a task. Safe at any time; an in-flight result is discarded."""
        instance = self._tasks.get(task_id)
        if instance is None:
            return False
        self._finish(instance, TaskStatus.CANCELLED)
        logger.info(f"Cancelled task {task_id}")
        return True

    def is_registered(self, task_id: str) -> bool:
        return task_id in self._tasks

    def get(self, task_id: str) -> TaskInstance:
        if (instance := self._tasks.get(task_id) or self._history.get(task_id)) is None:
            raise NotFoundError(f"Unknown task {task_id}")
        return instance

    @property
    def tasks(self) -> list[TaskInstance]:
        return list(self._tasks.values())

    def due(self) -> list[TaskInstance]:
        now = self.clock.now()
        return [
            instance for instance in self._tasks.values()
            if instance.due_at <= now and instance.id not in self._running
        ]

    def _finish(self, instance: TaskInstance, status: TaskStatus, error: BaseException | None = None) -> None:
        instance.status = status
        instance.error = error
        instance.finished_at = time.time()
        if self._tasks.get(instance.id) is instance:
            del self._tasks[instance.id]
        self._history[instance.id] = instance
        while len(self._history) > self.HISTORY_SIZE:
            self._history.popitem(last=False)

    # Scheduling

    async def _step(self, instance: TaskInstance) -> None:
        handler = self._handlers[instance.type].get(instance.handler)
        if handler is None:
            self._finish(instance, TaskStatus.FAILED, FatalConfigError(
                f"Task {instance.id} has no handler named {instance.handler}"
            ))
            return

        self._running.add(instance.id)
        try:
            step = await handler(instance.params, instance.memory, Context(self, instance))
        except Exception as e:
            if self._tasks.get(instance.id) is instance:
                logger.error(f"Task {instance.id} failed in handler {instance.handler}: {e}", exc_info=True)
                self._finish(instance, TaskStatus.FAILED, e)
            return
        finally:
            instance.iterations += 1
            self._running.discard(instance.id)

        if self._tasks.get(instance.id) is not instance:
            logger.debug(f"Discarding result of cancelled task {instance.id}")
            return

        match step:
            case Sleep(seconds=seconds):
                instance.due_at = self.clock.now() + seconds
            case Transition(handler=name) if name in self._handlers[instance.type]:
                instance.handler = name
                instance.due_at = self.clock.now()
            case Transition(handler=name):
                self._finish(instance, TaskStatus.FAILED, FatalConfigError(
                    f"Task {instance.id} transitioned to unknown handler {name}"
                ))
            case None | Done():
                self._finish(instance, TaskStatus.DONE)
                logger.debug(f"Task {instance.id} finished")
            case _:
                self._finish(instance, TaskStatus.FAILED, TypeError(
                    f"Task {instance.id} returned an invalid step: {step!r}"
                ))

    async def tick(self) -> int:
        """
        Advance every due task once, concurrently.

        Returns:
            Number of tasks invoked
        """
        due = self.due()
        for instance in due:
            # mark before awaiting so an overlapping tick or run pass skips it
            self._running.add(instance.id)
        if due:
            await asyncio.gather(*(self._run_step(instance) for instance in due))
        return len(due)

    def _launch_due(self) -> None:
        for instance in self.due():
            # mark before the task starts so the next loop pass skips it
            self._running.add(instance.id)
            task = asyncio.create_task(self._run_step(instance), name=f"task-{instance.id}")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _run_step(self, instance: TaskInstance) -> None:
        self._running.discard(instance.id)
        await self._step(instance)

    async def run(self, interval: float = 1.0) -> None:
        """
        Drive tasks until ``stop()`` is called.

        Each due task runs as its own asyncio task so a slow chain never
        holds up tasks for other chains.

        Args:
            interval: Seconds between scheduling passes
        """
        self.running = True
        self.shutdown_event.clear()
        logger.info(f"Executor started with {len(self._tasks)} tasks, interval {interval}s")

        try:
            while self.running:
                self._launch_due()
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
                    break
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._cleanup()
            logger.info("Executor stopped")

    async def _cleanup(self) -> None:
        for task in list(self._inflight):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling
        self._running.clear()

    def stop(self) -> None:
        self.running = False
        self.shutdown_event.set()

    def get_stats(self) -> dict[str, int]:
        stats = {status.value: 0 for status in TaskStatus}
        stats["running"] = len(self._tasks)
        for instance in self._history.values():
            stats[instance.status.value] += 1
        stats["in_flight"] = len(self._running)
        return stats
