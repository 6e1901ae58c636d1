"""Stream scheduling for LS-Web.

Every sequential execution of a line range is a *stream*: the top-level
program, one loop, one EVERY/TICK trigger, one function call, one key
handler. `Scheduler.run_stream` walks a range with its own `Cursor`, handing
lines to the dispatcher and acting on the control signal that comes back.

Loop and timer bodies run as asyncio tasks registered on the `RunContext`,
so the statement after a loop header proceeds while the loop runs. The only
suspension points are SLEEP, the yield after each WHILE/FOR body pass, timer
waits and host I/O.
"""

import asyncio
import logging
from typing import Any, List, Sequence, Tuple

from .blocks import OPENERS, Cursor, find_block_end
from .context import RunContext
from .dispatcher import Dispatcher
from .environment import UNDEFINED, FunctionDef, Scope
from .errors import BadExpression, CallDepthExceeded, LSWebError
from .expressions import evaluate
from .signals import NORMAL, Signal, SignalKind
from .statements import (
    BLOCK_TERMINATORS,
    Statement,
    StatementKind,
    is_comment,
    is_else,
    is_endif,
    is_if_header,
    is_terminator,
)

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(self):
        self.dispatcher = Dispatcher(self)

    async def run_stream(
        self,
        ctx: RunContext,
        lines: Sequence[str],
        start: int,
        end: int,
        scope: Scope,
        *,
        function_body: bool = False,
    ) -> Signal:
        """Execute lines[start:end] once.

        Returns the RETURN signal that stopped a function body, otherwise
        NORMAL. RETURN met outside a function body is ignored.
        """
        cursor = Cursor(lines, start, end)
        while not cursor.done and not ctx.halted:
            line = cursor.next_line()
            if is_comment(line):
                continue
            if is_endif(line):
                cursor.pop_condition(line)
                continue
            if is_else(line):
                cursor.flip_condition(line)
                continue
            if is_terminator(line):
                continue
            if cursor.skipping:
                # keep nested IF/ENDIF pairs balanced inside a skipped branch
                if is_if_header(line):
                    cursor.push_condition(False)
                continue
            signal = await self.dispatcher.execute(ctx, line, scope)
            if signal.kind is SignalKind.ENTER_BLOCK:
                self._enter_block(ctx, cursor, signal, scope)
            elif signal.is_return and function_body:
                return signal
        if not ctx.halted:
            cursor.check_closed()
        return NORMAL

    def _enter_block(self, ctx: RunContext, cursor: Cursor, signal: Signal, scope: Scope) -> None:
        header = signal.header
        kind = header.kind
        if kind is StatementKind.IF:
            cursor.push_condition(signal.value)
            return

        terminator = BLOCK_TERMINATORS[kind]
        body_start = cursor.index
        try:
            body_end = find_block_end(cursor.lines, body_start, OPENERS[kind], terminator, cursor.end)
        except LSWebError as e:
            e.line_text = header.text
            raise
        cursor.index = body_end + 1
        body = (cursor.lines, body_start, body_end)

        if kind is StatementKind.FUNCTION:
            ctx.functions.define(FunctionDef(header["name"], signal.value, body_start, body_end, cursor.lines))
        elif kind is StatementKind.WHILE:
            ctx.spawn(self._while_driver(ctx, body, header, scope), name=f"while@{body_start}")
        elif kind is StatementKind.FOR:
            # the induction variable is bound as soon as the header runs
            try:
                scope.set(header["name"], signal.value[0])
            except LSWebError as e:
                e.line_text = header.text
                raise
            ctx.spawn(self._for_driver(ctx, body, header, signal.value, scope), name=f"for@{body_start}")
        elif kind is StatementKind.EVERY:
            ctx.spawn(self._every_driver(ctx, body, signal.value, scope), name=f"every@{body_start}")
        elif kind is StatementKind.TICK:
            ctx.spawn(self._tick_driver(ctx, body, signal.value, scope), name=f"tick@{body_start}")

    # --- drivers -------------------------------------------------------------

    async def _while_driver(self, ctx: RunContext, body: Tuple[Sequence[str], int, int], header: Statement, scope: Scope) -> None:
        lines, start, end = body
        while not ctx.halted and self._test(header, header["cond"], scope):
            await self.run_stream(ctx, lines, start, end, scope)
            await asyncio.sleep(0)

    async def _for_driver(
        self,
        ctx: RunContext,
        body: Tuple[Sequence[str], int, int],
        header: Statement,
        bounds: Tuple[Any, Any, Any],
        scope: Scope,
    ) -> None:
        lines, start, end = body
        name = header["name"]
        stop, step = bounds[1], bounds[2]
        while not ctx.halted:
            current = scope.get(name)
            # the bound is an inclusive upper limit whatever the sign of step
            try:
                more = current <= stop
            except TypeError as e:
                raise BadExpression(header.text, str(e), line_text=header.text) from e
            if not more:
                break
            await self.run_stream(ctx, lines, start, end, scope)
            await asyncio.sleep(0)
            if ctx.halted:
                break
            try:
                scope.set(name, scope.get(name) + step)
            except TypeError as e:
                raise BadExpression(header.text, str(e), line_text=header.text) from e

    async def _every_driver(self, ctx: RunContext, body: Tuple[Sequence[str], int, int], period_ms: int, scope: Scope) -> None:
        lines, start, end = body
        period = max(period_ms, 1) / 1000
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + period
        while not ctx.halted:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
            if ctx.halted:
                break
            next_fire += period
            # fire and forget: a slow body overlaps the next trigger
            ctx.spawn(self.run_stream(ctx, lines, start, end, scope), name=f"every-body@{start}")

    async def _tick_driver(self, ctx: RunContext, body: Tuple[Sequence[str], int, int], delay_ms: int, scope: Scope) -> None:
        lines, start, end = body
        while not ctx.halted:
            await asyncio.sleep(ctx.frame_interval_s)
            await asyncio.sleep(delay_ms / 1000)
            if ctx.halted:
                break
            await self.run_stream(ctx, lines, start, end, scope)

    def _test(self, header: Statement, expr: str, scope: Scope) -> bool:
        try:
            return bool(evaluate(expr, scope))
        except LSWebError as e:
            e.line_text = e.line_text or header.text
            raise

    # --- functions & key handlers --------------------------------------------

    async def call_function(self, ctx: RunContext, name: str, args: List[Any], caller: Scope) -> Any:
        """Invoke a registered function and return its result.

        Parameters are bound positionally in a fresh call scope whose parent
        is the run's global scope; missing arguments bind `undefined`. The
        result is the value of the first RETURN reached, or None.
        """
        fn = ctx.functions.lookup(name)
        depth = caller.depth + 1
        if depth > ctx.max_call_depth:
            raise CallDepthExceeded(ctx.max_call_depth)
        local = Scope(parent=ctx.globals, depth=depth)
        for i, param in enumerate(fn.params):
            local.vars[param] = args[i] if i < len(args) else UNDEFINED
        signal = await self.run_stream(ctx, fn.lines, fn.start, fn.end, local, function_body=True)
        return signal.value if signal.is_return else None

    def run_key_handler(self, ctx: RunContext, statement: str, scope: Scope) -> None:
        if ctx.halted:
            return
        logger.debug("key handler: %s", statement)
        ctx.spawn(self.run_stream(ctx, (statement,), 0, 1, scope), name="onkey")
