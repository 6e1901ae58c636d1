"""Expression evaluator tests, including rejection of unsafe constructs."""

import math

import pytest

from backend.lsweb.environment import UNDEFINED, Scope
from backend.lsweb.errors import BadExpression, UndefinedName
from backend.lsweb.expressions import divide, evaluate, modulo, to_display, translate


def scope_with(**values):
    scope = Scope()
    for k, v in values.items():
        scope.set(k, v)
    return scope


def test_arithmetic_precedence():
    assert evaluate("1 + 2 * 3", Scope()) == 7
    assert evaluate("(1 + 2) * 3", Scope()) == 9
    assert evaluate("7 / 2", Scope()) == 3.5


def test_javascript_operators():
    s = scope_with(a=1, b=2)
    assert evaluate("a === 1 && b !== 1", s) is True
    assert evaluate("!false", s) is True
    assert evaluate("a > 5 || b", s) == 2
    assert evaluate("a != b", s) is True


def test_translate_leaves_strings_alone():
    assert translate('"a && b" + x') == '"a && b" + x'


def test_literals_and_strings():
    s = Scope()
    assert evaluate("null", s) is None
    assert evaluate("undefined", s) is UNDEFINED
    assert evaluate('"ab" + 1', s) == "ab1"
    assert evaluate("[1, 2][1]", s) == 2
    assert evaluate("{a: 1}", s) == {"a": 1}


def test_ieee_division_and_modulo():
    assert divide(1, 0) == math.inf
    assert divide(-1, 0) == -math.inf
    assert math.isnan(divide(0, 0))
    assert modulo(-7, 3) == -1
    assert modulo(7, -3) == 1
    assert math.isnan(modulo(5, 0))
    assert evaluate("5.5 % 2", Scope()) == 1.5


def test_math_functions_follow_ieee():
    s = Scope()
    assert math.isnan(evaluate("sqrt(-1)", s))
    assert math.isnan(evaluate("Math.asin(2)", s))
    assert evaluate("log(0)", s) == -math.inf
    assert math.isnan(evaluate("Math.log10(-5)", s))
    assert evaluate("Math.exp(1000)", s) == math.inf
    assert evaluate("pow(0, -1)", s) == math.inf
    assert evaluate("Math.floor(1 / 0)", s) == math.inf
    assert math.isnan(evaluate("round(0 / 0)", s))
    assert math.isnan(evaluate("Math.sign(0 / 0)", s))


def test_math_namespace():
    s = Scope()
    assert evaluate("Math.floor(2.7)", s) == 2
    assert evaluate("Math.PI", s) == math.pi
    assert evaluate("round(2.5)", s) == 3
    assert 0 <= evaluate("Math.random()", s) < 1


def test_scope_variables_shadow_math_names():
    assert evaluate("PI", scope_with(PI=3)) == 3


def test_field_access_is_permissive():
    s = scope_with(obj={"a": {"b": 1}}, xs=[1, 2, 3])
    assert evaluate("obj.a.b", s) == 1
    assert evaluate("obj.x.y", s) is UNDEFINED
    assert evaluate("xs.length", s) == 3
    assert evaluate('obj["a"]', s) == {"b": 1}


def test_undefined_name_chains_cause():
    with pytest.raises(BadExpression) as exc:
        evaluate("missing + 1", Scope())
    assert isinstance(exc.value.__cause__, UndefinedName)
    assert exc.value.expr == "missing + 1"


def test_type_errors_become_bad_expression():
    with pytest.raises(BadExpression) as exc:
        evaluate("[1] - 1", Scope())
    assert isinstance(exc.value.__cause__, TypeError)


def test_syntax_error():
    with pytest.raises(BadExpression):
        evaluate("1 +", Scope())


def test_to_display():
    assert to_display(True) == "true"
    assert to_display(None) == "null"
    assert to_display(math.nan) == "NaN"
    assert to_display(-math.inf) == "-Infinity"
    assert to_display(3.0) == "3"
    assert to_display(3.25) == "3.25"
    assert to_display({"a": [1, True]}) == '{"a": [1, true]}'
