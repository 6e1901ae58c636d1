"""Security-oriented tests ensuring dangerous expression constructs are rejected."""

import pytest

from backend.lsweb.environment import Scope
from backend.lsweb.errors import BadExpression
from backend.lsweb.expressions import evaluate
from backend.lsweb.host import BufferSink, Host
from backend.lsweb.interpreter import Interpreter


def test_allow_parenthesised_math():
    assert evaluate("(1 + 2)", Scope()) == 3


@pytest.mark.parametrize(
    "expr",
    [
        '__import__("os")',
        'open("/etc/passwd")',
        "x.__class__",
        "(lambda: 1)()",
        "[y for y in [1]]",
        'eval("1")',
        "len.__name__",
    ],
)
def test_disallow_unsafe_expressions(expr):
    with pytest.raises(BadExpression):
        evaluate(expr, Scope())


def test_only_whitelisted_calls():
    scope = Scope()
    scope.set("f", print)
    with pytest.raises(BadExpression):
        evaluate("f(1)", scope)


@pytest.mark.asyncio
async def test_unsafe_expression_in_program():
    it = Interpreter(Host(output=BufferSink()))
    with pytest.raises(BadExpression) as exc:
        await it.start('PRINT __import__("os")')
    assert exc.value.line_text == 'PRINT __import__("os")'
