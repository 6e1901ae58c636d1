"""LS-Web interpreter entry point.

An `Interpreter` owns at most one live run at a time. `start` tears down the
previous run, builds a fresh `RunContext` and executes the top-level stream;
loops, timers and key handlers it creates keep running as asyncio tasks until
`stop` is called or they finish on their own.

Example:

    it = Interpreter()
    ctx = await it.start("SET x TO 1\\nPRINT x")
    await it.join(timeout=1.0)
    it.stop()
"""

import asyncio
import logging
from typing import Optional

from .context import RunContext
from .host import Host, Surface
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class Interpreter:
    def __init__(self, host: Optional[Host] = None):
        self.host = host or Host()
        self.scheduler = Scheduler()
        self.context: Optional[RunContext] = None
        # runtime tunables
        self.max_call_depth = 64
        self.frame_interval_s = 1 / 60
        # how long a bounded run (`run`, the HTTP API) lets loops and timers live
        self.max_run_s = 1.5

    async def start(self, code: str, surface: Optional[Surface] = None) -> RunContext:
        """Reset all run state and execute the program's top-level stream.

        Any previous run is stopped first. Errors raised by the top-level
        stream propagate to the caller; streams already spawned keep running.
        """
        self.stop()
        ctx = RunContext(
            code.split("\n"),
            self.host,
            surface,
            max_call_depth=self.max_call_depth,
            frame_interval_s=self.frame_interval_s,
        )
        self.context = ctx
        logger.info("run started (%d lines)", len(ctx.lines))
        await self.scheduler.run_stream(ctx, ctx.lines, 0, len(ctx.lines), ctx.globals)
        return ctx

    def stop(self) -> None:
        ctx = self.context
        if ctx is None or ctx.halted:
            return
        pending = len(ctx.tasks)
        ctx.halt()
        logger.info("run stopped (%d live streams cancelled)", pending)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every stream of the current run has finished.

        Returns False if `timeout` seconds elapse first. Streams spawned while
        waiting (loop bodies, timer triggers) are waited for too.
        """
        ctx = self.context
        if ctx is None:
            return True
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while not ctx.halted:
            pending = {t for t in ctx.tasks if not t.done()}
            if not pending:
                break
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
        # let done-callbacks record failures
        await asyncio.sleep(0)
        return True

    async def run(self, code: str, surface: Optional[Surface] = None, duration_s: Optional[float] = None) -> RunContext:
        """Start a program, let it run for at most `duration_s`, then stop it."""
        try:
            await self.start(code, surface)
            await self.join(self.max_run_s if duration_s is None else duration_s)
        finally:
            self.stop()
        return self.context
