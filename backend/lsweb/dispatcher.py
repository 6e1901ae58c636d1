"""Statement dispatcher.

`Dispatcher.execute` classifies one trimmed source line and performs its
effect exactly once. Plain statements mutate the scope, the entity store or
a host capability and return `NORMAL`. Block headers (IF, WHILE, FOR,
FUNCTION, EVERY, TICK) only evaluate what the header itself needs and return
an ENTER_BLOCK signal; finding the body and running it is the scheduler's job.
"""

import asyncio
import json
import logging
import random
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict

from .context import RunContext
from .environment import UNDEFINED, Scope, get_field
from .errors import BadExpression, HostError, LSWebError, MissingSurface
from .expressions import MATH_FUNCTIONS, divide, evaluate, modulo, to_display
from .host import dump_value, load_value
from .signals import NORMAL, Signal, enter_block, returning
from .statements import Statement, StatementKind, classify, split_args

if TYPE_CHECKING:
    from .scheduler import Scheduler

logger = logging.getLogger(__name__)

Handler = Callable[[RunContext, Statement, Scope], Awaitable[Signal]]


def _add(a, b):
    if isinstance(a, str) or isinstance(b, str):
        return to_display(a) + to_display(b)
    return a + b


ARITH_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    "ADD": _add,
    "SUB": lambda a, b: a - b,
    "MUL": lambda a, b: a * b,
    "DIV": divide,
    "MOD": modulo,
}


def _host_call(fn: Callable[..., Any], *args):
    """Invoke a host capability, surfacing its failures as HostError."""
    try:
        return fn(*args)
    except LSWebError:
        raise
    except Exception as e:
        raise HostError(f"{getattr(fn, '__name__', 'host')}: {e}") from e


class Dispatcher:
    def __init__(self, scheduler: "Scheduler"):
        self.scheduler = scheduler
        K = StatementKind
        self.dispatch_map: Dict[StatementKind, Handler] = {
            K.SET: self._do_assign,
            K.LET: self._do_assign,
            K.CONST: self._do_const,
            K.ALIAS: self._do_alias,
            K.DECLARE: self._do_declare,
            K.ARITH: self._do_arith,
            K.RANDOM: self._do_random,
            K.MATH: self._do_math,
            K.IF: self._do_if,
            K.WHILE: self._do_header,
            K.FOR: self._do_for,
            K.FUNCTION: self._do_function,
            K.CALL: self._do_call,
            K.RETURN: self._do_return,
            K.ARRAY: self._do_literal,
            K.PUSH: self._do_push,
            K.POP: self._do_pop,
            K.LEN: self._do_len,
            K.OBJECT: self._do_literal,
            K.SETFIELD: self._do_setfield,
            K.GETFIELD: self._do_getfield,
            K.MERGE: self._do_merge,
            K.PRINT: self._do_print,
            K.ALERT: self._do_alert,
            K.INPUT: self._do_input,
            K.TRACE: self._do_trace,
            K.SLEEP: self._do_sleep,
            K.TIME_NOW: self._do_time_now,
            K.EVERY: self._do_timer_header,
            K.TICK: self._do_timer_header,
            K.CANVAS_SIZE: self._do_canvas_size,
            K.COLOR: self._do_color,
            K.CLEAR: self._do_draw,
            K.RECT: self._do_draw,
            K.CIRCLE: self._do_draw,
            K.LINE: self._do_draw,
            K.TEXT: self._do_draw,
            K.FONT: self._do_font,
            K.ONKEY: self._do_onkey,
            K.KEY: self._do_key,
            K.STORE: self._do_store,
            K.LOAD: self._do_load,
            K.DELETE: self._do_delete,
            K.KEYS: self._do_keys,
            K.FETCH: self._do_fetch,
            K.FETCHJSON: self._do_fetch,
            K.BEEP: self._do_beep,
            K.PLAYAUDIO: self._do_playaudio,
            K.ENTITY_NEW: self._do_entity_new,
            K.COMP_SET: self._do_comp_set,
            K.COMP_GET: self._do_comp_get,
            K.COMP_HAS: self._do_comp_has,
            K.COMP_DEL: self._do_comp_del,
        }

    async def execute(self, ctx: RunContext, line: str, scope: Scope) -> Signal:
        """Run one non-blank, non-comment line and return its control signal.

        Any `LSWebError` raised while handling the line is annotated with the
        line text before it propagates.
        """
        if ctx.trace:
            ctx.host.output.write("> " + line)
        try:
            stmt = classify(line)
            return await self.dispatch_map[stmt.kind](ctx, stmt, scope)
        except LSWebError as e:
            if e.line_text is None:
                e.line_text = line
            raise

    # --- variables -----------------------------------------------------------

    async def _do_assign(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        scope.set(stmt["name"], evaluate(stmt["expr"], scope))
        return NORMAL

    async def _do_const(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        scope.declare_const(stmt["name"], evaluate(stmt["expr"], scope))
        return NORMAL

    async def _do_alias(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        scope.alias(stmt["new"], stmt["old"])
        return NORMAL

    async def _do_declare(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        # metadata only
        return NORMAL

    # --- math & random -------------------------------------------------------

    async def _do_arith(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        """Update a variable in place; DIV and MOD follow IEEE rules."""
        name = stmt["name"]
        current = scope.get(name)
        operand = evaluate(stmt["expr"], scope)
        try:
            result = ARITH_OPS[stmt["op"].upper()](current, operand)
        except TypeError as e:
            raise BadExpression(stmt.text, str(e)) from e
        scope.set(name, result)
        return NORMAL

    async def _do_random(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        low = evaluate(stmt["low"], scope)
        high = evaluate(stmt["high"], scope)
        try:
            value = random.random() * (high - low) + low
        except TypeError as e:
            raise BadExpression(stmt.text, str(e)) from e
        scope.set(stmt["name"], value)
        return NORMAL

    async def _do_math(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        fn = MATH_FUNCTIONS.get(stmt["fn"])
        if fn is None:
            raise BadExpression(stmt["fn"], f"Unknown math fn: {stmt['fn']}")
        arg = evaluate(stmt["expr"], scope)
        try:
            value = fn(arg)
        except TypeError as e:
            raise BadExpression(stmt["expr"], str(e)) from e
        scope.set(stmt["name"], value)
        return NORMAL

    # --- block headers -------------------------------------------------------

    async def _do_if(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        return enter_block(stmt, bool(evaluate(stmt["cond"], scope)))

    async def _do_header(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        return enter_block(stmt)

    async def _do_for(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        """Evaluate start, stop and step once, when the header runs."""
        bounds = tuple(evaluate(stmt[part], scope) for part in ("start", "stop", "step"))
        return enter_block(stmt, bounds)

    async def _do_function(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        params = [p.strip() for p in stmt.get("params", "").split(",") if p.strip()]
        return enter_block(stmt, params)

    async def _do_timer_header(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        return enter_block(stmt, int(stmt["ms"]))

    # --- functions -----------------------------------------------------------

    async def _do_call(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        """Run a function to completion, optionally storing its result."""
        args = [evaluate(a, scope) for a in split_args(stmt.get("args", ""))]
        result = await self.scheduler.call_function(ctx, stmt["name"], args, scope)
        if stmt.get("dest"):
            scope.set(stmt["dest"], result)
        return NORMAL

    async def _do_return(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        expr = stmt.get("expr")
        return returning(evaluate(expr, scope) if expr else None)

    # --- arrays & objects ----------------------------------------------------

    async def _do_literal(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        try:
            value = json.loads(stmt["json"])
        except ValueError as e:
            raise BadExpression(stmt["json"], str(e)) from e
        scope.set(stmt["name"], value)
        return NORMAL

    async def _do_push(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        target = scope.get(stmt["name"])
        if not isinstance(target, list):
            raise BadExpression(stmt["name"], "PUSH target is not an array")
        target.append(evaluate(stmt["expr"], scope))
        return NORMAL

    async def _do_pop(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        source = scope.get(stmt["src"])
        if not isinstance(source, list):
            raise BadExpression(stmt["src"], "POP source is not an array")
        scope.set(stmt["dest"], source.pop() if source else UNDEFINED)
        return NORMAL

    async def _do_len(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        value = scope.get(stmt["src"]) or []
        scope.set(stmt["dest"], len(value) if isinstance(value, (list, str)) else UNDEFINED)
        return NORMAL

    async def _do_setfield(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        obj = scope.get(stmt["obj"])
        if not isinstance(obj, dict):
            raise BadExpression(stmt["obj"], "SETFIELD target is not an object")
        obj[stmt["field"]] = evaluate(stmt["expr"], scope)
        return NORMAL

    async def _do_getfield(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        obj = scope.get(stmt["obj"]) or {}
        scope.set(stmt["dest"], get_field(obj, stmt["field"]))
        return NORMAL

    async def _do_merge(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        merged: Dict[str, Any] = {}
        for name in (stmt["a"], stmt["b"]):
            part = scope.get(name) or {}
            if not isinstance(part, dict):
                raise BadExpression(name, "MERGE operand is not an object")
            merged.update(part)
        scope.set(stmt["dest"], merged)
        return NORMAL

    # --- i/o & debug ---------------------------------------------------------

    async def _do_print(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        _host_call(ctx.host.output.write, to_display(evaluate(stmt["expr"], scope)))
        return NORMAL

    async def _do_alert(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        _host_call(ctx.host.dialogs.alert, to_display(evaluate(stmt["expr"], scope)))
        return NORMAL

    async def _do_input(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        prompt = to_display(evaluate(stmt["prompt"], scope))
        scope.set(stmt["name"], _host_call(ctx.host.dialogs.prompt, prompt, stmt["name"]))
        return NORMAL

    async def _do_trace(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        ctx.trace = stmt["mode"].upper() == "ON"
        return NORMAL

    # --- time ----------------------------------------------------------------

    async def _do_sleep(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        await asyncio.sleep(int(stmt["ms"]) / 1000)
        return NORMAL

    async def _do_time_now(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        scope.set(stmt["name"], int(time.time() * 1000))
        return NORMAL

    # --- drawing -------------------------------------------------------------

    async def _do_canvas_size(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        if ctx.surface is None:
            raise MissingSurface()
        _host_call(ctx.surface.size, int(stmt["w"]), int(stmt["h"]))
        return NORMAL

    async def _do_color(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        color = to_display(evaluate(stmt["expr"], scope))
        if ctx.surface is not None:
            _host_call(ctx.surface.set_color, color)
        return NORMAL

    async def _do_font(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        font = to_display(evaluate(stmt["expr"], scope))
        if ctx.surface is not None:
            _host_call(ctx.surface.set_font, font)
        return NORMAL

    async def _do_draw(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        K = StatementKind

        def ev(key):
            return evaluate(stmt[key], scope)

        if stmt.kind is K.CLEAR:
            op, args = "clear", ()
        elif stmt.kind is K.RECT:
            op, args = "fill_rect", (ev("x"), ev("y"), ev("w"), ev("h"))
        elif stmt.kind is K.CIRCLE:
            op, args = "fill_circle", (ev("x"), ev("y"), ev("r"))
        elif stmt.kind is K.LINE:
            op, args = "stroke_line", (ev("x1"), ev("y1"), ev("x2"), ev("y2"))
        else:
            op, args = "fill_text", (to_display(ev("expr")), ev("x"), ev("y"))
        if ctx.surface is None:
            return NORMAL
        _host_call(getattr(ctx.surface, op), *args)
        return NORMAL

    # --- keyboard ------------------------------------------------------------

    async def _do_onkey(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        """Register the rest of the line as a handler for a key edge."""
        body = stmt["stmt"]

        def handler():
            self.scheduler.run_key_handler(ctx, body, scope)

        ctx.host.keyboard.on_key(stmt["phase"], stmt["key"], handler)
        return NORMAL

    async def _do_key(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        scope.set(stmt["name"], bool(_host_call(ctx.host.keyboard.is_key_down, stmt["key"])))
        return NORMAL

    # --- storage -------------------------------------------------------------

    async def _do_store(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        value = evaluate(stmt["expr"], scope)
        _host_call(ctx.host.storage.put, stmt["key"], dump_value(value))
        return NORMAL

    async def _do_load(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        raw = _host_call(ctx.host.storage.get, stmt["key"])
        scope.set(stmt["name"], load_value(raw))
        return NORMAL

    async def _do_delete(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        _host_call(ctx.host.storage.delete, stmt["key"])
        return NORMAL

    async def _do_keys(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        scope.set(stmt["name"], list(_host_call(ctx.host.storage.list_keys)))
        return NORMAL

    # --- networking ----------------------------------------------------------

    async def _do_fetch(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        """Fetch off the event loop so other streams keep running."""
        network = ctx.host.network
        fetch = network.fetch_json if stmt.kind is StatementKind.FETCHJSON else network.fetch_text
        logger.debug("fetch %s", stmt["url"])
        value = await asyncio.to_thread(_host_call, fetch, stmt["url"])
        scope.set(stmt["name"], value)
        return NORMAL

    # --- sound ---------------------------------------------------------------

    async def _do_beep(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        _host_call(ctx.host.audio.play_tone, int(stmt["freq"]), int(stmt["ms"]))
        return NORMAL

    async def _do_playaudio(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        _host_call(ctx.host.audio.play_clip, stmt["url"])
        return NORMAL

    # --- entities & components -----------------------------------------------

    async def _do_entity_new(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        scope.set(stmt["name"], ctx.store.new_entity())
        return NORMAL

    async def _do_comp_set(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        entity_id = scope.get(stmt["ent"])
        raw = stmt["value"]
        try:
            value = json.loads(raw)
        except ValueError:
            value = evaluate(raw, scope)
        ctx.store.set_component(entity_id, stmt["comp"], value)
        return NORMAL

    async def _do_comp_get(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        entity_id = scope.get(stmt["ent"])
        scope.set(stmt["dest"], ctx.store.get_component(entity_id, stmt["comp"]))
        return NORMAL

    async def _do_comp_has(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        entity_id = scope.get(stmt["ent"])
        scope.set(stmt["dest"], ctx.store.has_component(entity_id, stmt["comp"]))
        return NORMAL

    async def _do_comp_del(self, ctx: RunContext, stmt: Statement, scope: Scope) -> Signal:
        entity_id = scope.get(stmt["ent"])
        ctx.store.delete_component(entity_id, stmt["comp"])
        return NORMAL
