"""Per-run state.

A `RunContext` is created by `Interpreter.start` and holds everything one
program execution owns: its global scope, function table, entity store,
halted flag and the set of live asyncio tasks (loops, timers, key handlers).
`halt` is the single teardown path: it cancels every registered task and
releases the keyboard handlers.
"""

import asyncio
import logging
from typing import Any, Coroutine, List, Optional, Sequence, Set

from .environment import FunctionTable, Scope
from .host import Host, Surface
from .store import EntityStore

logger = logging.getLogger(__name__)


class RunContext:
    def __init__(
        self,
        lines: Sequence[str],
        host: Host,
        surface: Optional[Surface] = None,
        *,
        max_call_depth: int = 64,
        frame_interval_s: float = 1 / 60,
    ):
        self.lines = tuple(lines)
        self.host = host
        self.surface = surface
        self.max_call_depth = max_call_depth
        self.frame_interval_s = frame_interval_s
        self.globals = Scope()
        self.functions = FunctionTable()
        self.store = EntityStore()
        self.halted = False
        self.trace = False
        self.tasks: Set[asyncio.Task] = set()
        # failures of streams other than the top-level one
        self.failures: List[BaseException] = []

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self.tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("stream %s failed: %s", task.get_name(), exc)
            self.failures.append(exc)

    def halt(self) -> None:
        self.halted = True
        for task in list(self.tasks):
            task.cancel()
        self.tasks.clear()
        self.host.keyboard.reset()
