"""Tests for interpreter runtime limits (call depth, output caps, run duration)."""

import pytest

from backend.lsweb.errors import CallDepthExceeded
from backend.lsweb.host import MAX_OUTPUT_CHARS, BufferSink, Host
from backend.lsweb.interpreter import Interpreter


@pytest.mark.asyncio
async def test_call_depth_limit():
    it = Interpreter(Host(output=BufferSink()))
    it.max_call_depth = 4
    code = (
        "FUNCTION down(n)\n"
        "  IF n > 0 THEN\n"
        "    CALL down(n - 1) INTO r\n"
        "    RETURN r + 1\n"
        "  ENDIF\n"
        "  RETURN 0\n"
        "ENDFN\n"
        "CALL down(3) INTO ok\n"
        "CALL down(4) INTO too_deep\n"
    )
    with pytest.raises(CallDepthExceeded) as exc:
        await it.start(code)
    assert exc.value.to_dict()["code"] == "RUNTIME_ERROR"
    assert it.context.globals.get("ok") == 3
    assert "too_deep" not in it.context.globals


def test_output_limit():
    sink = BufferSink(max_chars=10)
    for _ in range(5):
        sink.write("abcdefghij")
    assert sink.lines == ["abcdefghij"]
    assert sink.warnings == ["Output length limit reached"]


def test_default_output_cap():
    assert BufferSink().max_chars == MAX_OUTPUT_CHARS == 5000


@pytest.mark.asyncio
async def test_run_duration_limit():
    it = Interpreter(Host(output=BufferSink()))
    it.max_run_s = 0.05
    ctx = await it.run("SET n TO 0\nEVERY 1\n  ADD n BY 1\nENDEVERY")
    assert ctx.halted
    assert not ctx.tasks
