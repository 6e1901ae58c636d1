"""Tests for line classification, block resolution and the IF cursor."""

import inspect

import pytest

from backend.lsweb.blocks import OPENERS, Cursor, find_block_end
from backend.lsweb.context import RunContext
from backend.lsweb.dispatcher import Dispatcher
from backend.lsweb.environment import Scope
from backend.lsweb.errors import UnknownStatement, UnterminatedBlock
from backend.lsweb.signals import Signal
from backend.lsweb.statements import Statement, StatementKind, classify, is_comment, is_terminator, split_args


@pytest.mark.parametrize(
    "line,kind",
    [
        ("SET x TO 1", StatementKind.SET),
        ("let x = 1", StatementKind.LET),
        ("ADD score BY 10", StatementKind.ARITH),
        ("IF a > b THEN", StatementKind.IF),
        ("FOR i FROM 0 TO 9 STEP 1", StatementKind.FOR),
        ("CALL f(1, 2) INTO r", StatementKind.CALL),
        ("RETURN", StatementKind.RETURN),
        ("SETFIELD o.a TO 1", StatementKind.SETFIELD),
        ("TIME NOW INTO t", StatementKind.TIME_NOW),
        ("CANVAS SIZE 320 200", StatementKind.CANVAS_SIZE),
        ("TICK 16", StatementKind.TICK),
        ('FETCHJSON "http://x/y" INTO d', StatementKind.FETCHJSON),
        ("KEYS STORAGE INTO ks", StatementKind.KEYS),
        ("COMP HAS e pos INTO ok", StatementKind.COMP_HAS),
    ],
)
def test_classify(line, kind):
    assert classify(line).kind is kind


def test_classify_named_arguments():
    stmt = classify("CALL move(x + 1, [1, 2]) INTO result")
    assert stmt["name"] == "move"
    assert stmt["dest"] == "result"
    assert split_args(stmt["args"]) == ["x + 1", "[1, 2]"]


def test_call_without_destination():
    stmt = classify("CALL reset()")
    assert stmt.get("dest") is None
    assert split_args(stmt.get("args", "")) == []


def test_split_args_respects_quotes():
    assert split_args('"a, b", 2') == ['"a, b"', "2"]


def test_unknown_statement():
    with pytest.raises(UnknownStatement) as exc:
        classify("HELLO WORLD")
    assert exc.value.line_text == "HELLO WORLD"


def test_comment_and_terminator_helpers():
    assert is_comment("")
    assert is_comment("// note")
    assert is_comment("# note")
    assert not is_comment("PRINT 1")
    assert is_terminator("endwhile")
    assert not is_terminator("ENDIF")


def test_find_block_end_counts_same_type_openers():
    lines = [
        "WHILE a",
        "WHILE b",
        "FOR i FROM 0 TO 1 STEP 1",
        "ENDFOR",
        "ENDWHILE",
        "ENDWHILE",
    ]
    assert find_block_end(lines, 1, OPENERS[StatementKind.WHILE], "ENDWHILE") == 5
    assert find_block_end(lines, 3, OPENERS[StatementKind.FOR], "ENDFOR") == 3


def test_find_block_end_unterminated():
    with pytest.raises(UnterminatedBlock):
        find_block_end(["EVERY 10", "PRINT 1"], 1, OPENERS[StatementKind.EVERY], "ENDEVERY")


def test_find_block_end_stops_at_range_end():
    lines = ["FUNCTION f()", "WHILE false", "ENDFN", "ENDWHILE"]
    assert find_block_end(lines, 2, OPENERS[StatementKind.WHILE], "ENDWHILE") == 3
    # the ENDWHILE past the function body is out of reach
    with pytest.raises(UnterminatedBlock):
        find_block_end(lines, 2, OPENERS[StatementKind.WHILE], "ENDWHILE", 2)


def test_cursor_condition_frames():
    cursor = Cursor(["x"])
    cursor.push_condition(False)
    assert cursor.skipping
    # a nested IF inside a skipped branch stays dead through its ELSE
    cursor.push_condition(False)
    cursor.flip_condition("ELSE")
    assert cursor.skipping
    cursor.pop_condition("ENDIF")
    cursor.flip_condition("ELSE")
    assert not cursor.skipping
    cursor.pop_condition("ENDIF")
    cursor.check_closed()
    with pytest.raises(UnknownStatement):
        cursor.pop_condition("ENDIF")


def test_dispatcher_handlers_are_annotated():
    dispatcher = Dispatcher(scheduler=None)
    for kind, handler in dispatcher.dispatch_map.items():
        sig = inspect.signature(handler)
        assert sig.return_annotation is Signal, kind
        assert [p.annotation for p in sig.parameters.values()] == [RunContext, Statement, Scope], kind
