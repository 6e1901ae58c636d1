"""Tests for concurrent streams: loops, timers, key handlers and stop/restart."""

import asyncio

import pytest

from backend.lsweb.errors import BadExpression
from backend.lsweb.host import BufferSink, Host
from backend.lsweb.interpreter import Interpreter


def make_interpreter():
    it = Interpreter(Host(output=BufferSink()))
    it.frame_interval_s = 0.005
    return it


async def assert_frozen(ctx, name, wait=0.05):
    before = ctx.globals.get(name)
    await asyncio.sleep(wait)
    assert ctx.globals.get(name) == before


@pytest.mark.asyncio
async def test_statement_after_loop_runs_before_loop_finishes():
    it = make_interpreter()
    code = (
        "SET n TO 0\n"
        "WHILE n < 100\n"
        "  ADD n BY 1\n"
        "ENDWHILE\n"
        "SET after TO n\n"
    )
    ctx = await it.start(code)
    # the loop body is a separate stream; the header only scheduled it
    assert ctx.globals.get("after") == 0
    assert await it.join(timeout=2.0)
    assert ctx.globals.get("n") == 100
    it.stop()


@pytest.mark.asyncio
async def test_stop_halts_infinite_while():
    it = make_interpreter()
    ctx = await it.start("SET n TO 0\nWHILE true\n  ADD n BY 1\nENDWHILE")
    await asyncio.sleep(0.02)
    it.stop()
    assert ctx.halted
    assert not ctx.tasks
    await assert_frozen(ctx, "n")
    assert ctx.globals.get("n") > 0


@pytest.mark.asyncio
async def test_stop_halts_for_loop():
    it = make_interpreter()
    ctx = await it.start("SET n TO 0\nFOR i FROM 0 TO 1000000 STEP 1\n  ADD n BY 1\nENDFOR")
    await asyncio.sleep(0.02)
    it.stop()
    await assert_frozen(ctx, "n")
    assert ctx.globals.get("n") < 1000001


@pytest.mark.asyncio
async def test_every_fires_repeatedly_until_stopped():
    it = make_interpreter()
    ctx = await it.start("SET n TO 0\nEVERY 10\n  ADD n BY 1\nENDEVERY")
    assert ctx.globals.get("n") == 0
    await asyncio.sleep(0.1)
    assert ctx.globals.get("n") >= 2
    it.stop()
    await assert_frozen(ctx, "n")


@pytest.mark.asyncio
async def test_tick_runs_frames_until_stopped():
    it = make_interpreter()
    ctx = await it.start("SET frames TO 0\nTICK 0\n  ADD frames BY 1\nEND")
    await asyncio.sleep(0.1)
    assert ctx.globals.get("frames") >= 2
    it.stop()
    await assert_frozen(ctx, "frames")


@pytest.mark.asyncio
async def test_restart_cancels_previous_timers():
    it = make_interpreter()
    old = await it.start("SET n TO 0\nEVERY 5\n  ADD n BY 1\nENDEVERY")
    await asyncio.sleep(0.03)
    new = await it.start("SET m TO 1")
    assert old.halted
    assert not old.tasks
    assert new is not old
    assert "n" not in new.globals
    await assert_frozen(old, "n")
    it.stop()


@pytest.mark.asyncio
async def test_sleep_suspends_stream():
    it = make_interpreter()
    code = (
        "SET flag TO 0\n"
        "EVERY 5\n"
        "  SET flag TO 1\n"
        "ENDEVERY\n"
        "SLEEP 50\n"
        "SET seen TO flag\n"
    )
    ctx = await it.start(code)
    assert ctx.globals.get("seen") == 1
    it.stop()


@pytest.mark.asyncio
async def test_loop_failure_is_recorded_and_other_streams_continue():
    it = make_interpreter()
    code = (
        "SET n TO 0\n"
        "WHILE true\n"
        "  SET bad TO missing + 1\n"
        "ENDWHILE\n"
        "EVERY 5\n"
        "  ADD n BY 1\n"
        "ENDEVERY\n"
    )
    ctx = await it.start(code)
    await asyncio.sleep(0.05)
    assert len(ctx.failures) == 1
    assert isinstance(ctx.failures[0], BadExpression)
    assert ctx.failures[0].line_text == "SET bad TO missing + 1"
    assert ctx.globals.get("n") >= 1
    it.stop()


@pytest.mark.asyncio
async def test_key_handlers_fire_on_edges():
    it = make_interpreter()
    code = (
        "SET downs TO 0\n"
        "SET ups TO 0\n"
        'ONKEY DOWN "ArrowUp" ADD downs BY 1\n'
        'ONKEY UP "ArrowUp" ADD ups BY 1\n'
    )
    ctx = await it.start(code)
    keyboard = it.host.keyboard
    keyboard.press("ArrowUp")
    keyboard.press("ArrowUp")
    keyboard.release("ArrowUp")
    await it.join(timeout=1.0)
    assert ctx.globals.get("downs") == 2
    assert ctx.globals.get("ups") == 1


@pytest.mark.asyncio
async def test_key_state_polling():
    it = make_interpreter()
    it.host.keyboard.press("a")
    # key state is only cleared when a run is stopped
    ctx = await it.start('KEY "a" INTO down\nKEY "b" INTO other')
    assert ctx.globals.get("down") is True
    assert ctx.globals.get("other") is False


@pytest.mark.asyncio
async def test_stop_releases_key_handlers():
    it = make_interpreter()
    ctx = await it.start('SET n TO 0\nONKEY DOWN "x" ADD n BY 1')
    assert it.host.keyboard.handler_count == 1
    it.stop()
    assert it.host.keyboard.handler_count == 0
    it.host.keyboard.press("x")
    await asyncio.sleep(0.01)
    assert ctx.globals.get("n") == 0


@pytest.mark.asyncio
async def test_run_bounds_infinite_program():
    it = make_interpreter()
    ctx = await it.run("SET n TO 0\nWHILE true\n  ADD n BY 1\nENDWHILE", duration_s=0.05)
    assert ctx.halted
    assert ctx.globals.get("n") > 0


@pytest.mark.asyncio
async def test_join_times_out_on_endless_loop():
    it = make_interpreter()
    await it.start("WHILE true\nSET x TO 1\nENDWHILE")
    assert await it.join(timeout=0.02) is False
    it.stop()
