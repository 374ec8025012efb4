"""Tests for interpolated string expansion."""

import pytest

from overgo.diagnostics import LoweringError
from overgo.ir import (
    Assign,
    BasicLit,
    Call,
    ConstDecl,
    ConstSpec,
    Embed,
    ExprStmt,
    FuncLit,
    FunctionDecl,
    Ident,
    InterpolatedString,
    Program,
    Return,
    Selector,
)
from overgo.middleend.interpolation import check_verb, expand, expand_interpolations


def _sprintf(template: str, *args) -> Call:
    return Call(Selector(Ident("fmt"), "Sprintf"), [BasicLit("string", template), *args])


def _run(*stmts) -> list:
    """Expand interpolations in a function body. Returns the body."""
    fn = FunctionDecl("F", [], None, list(stmts))
    expand_interpolations(Program("main", [], [fn]))
    return fn.body


def test_explicit_verb():
    s = InterpolatedString(["You have ", Embed(Ident("count"), "d"), " apples!"])
    assert expand(s) == _sprintf("You have %d apples!", Ident("count"))


def test_default_verb_is_v():
    s = InterpolatedString(["You have ", Embed(Ident("count")), " apples!"])
    assert expand(s) == _sprintf("You have %v apples!", Ident("count"))


def test_arguments_keep_source_order():
    s = InterpolatedString(
        [Embed(Ident("a")), " and ", Embed(Ident("b"), "q"), " then ", Embed(Ident("c"))]
    )
    assert expand(s) == _sprintf("%v and %q then %v", Ident("a"), Ident("b"), Ident("c"))


def test_percent_in_literal_text_is_escaped():
    s = InterpolatedString(["100% of ", Embed(Ident("n"), "d")])
    assert expand(s) == _sprintf("100%% of %d", Ident("n"))


def test_no_embeds_still_formats():
    s = InterpolatedString(["plain 50%"])
    assert expand(s) == _sprintf("plain 50%%")


@pytest.mark.parametrize("verb", ["d", "v", "+v", "#v", "T", "q", "x", "08.3f", "-10s", ".2f", "*d", "e"])
def test_valid_verbs_pass_through(verb):
    assert check_verb(verb, Embed(Ident("x"), verb)) == verb


@pytest.mark.parametrize("verb", ["", "z", "dd", "%d", "3", "+", "d "])
def test_malformed_verbs_are_rejected(verb):
    s = InterpolatedString(["x=", Embed(Ident("x"), verb)])
    with pytest.raises(LoweringError) as excinfo:
        expand(s)
    assert excinfo.value.kind == "MalformedInterpolation"


def test_empty_verb_message():
    with pytest.raises(LoweringError) as excinfo:
        check_verb("", Embed(Ident("x"), ""))
    assert "empty" in excinfo.value.message


def test_pass_rewrites_statements():
    body = _run(
        Assign(
            [Ident("msg")],
            [InterpolatedString(["hi ", Embed(Ident("name"))])],
            ":=",
        )
    )
    assert body[0].values[0] == _sprintf("hi %v", Ident("name"))


def test_nested_interpolation_expands_innermost_first():
    inner = InterpolatedString(["<", Embed(Ident("tag")), ">"])
    outer = InterpolatedString(["wrapped ", Embed(inner, "s")])
    body = _run(ExprStmt(Call(Ident("println"), [outer])))
    arg = body[0].expr.args[0]
    assert arg == _sprintf("wrapped %s", _sprintf("<%v>", Ident("tag")))


def test_closure_bodies_are_expanded():
    lit = FuncLit([], [], [Return([InterpolatedString([Embed(Ident("x"))])])])
    body = _run(ExprStmt(Call(lit, [])))
    assert body[0].expr.func.body[0].values[0] == _sprintf("%v", Ident("x"))


def test_interpolated_const_value_is_unsupported():
    greeting = InterpolatedString(["hello ", Embed(Ident("Name"))])
    decl = ConstDecl(
        [ConstSpec("Name", None, BasicLit("string", "Go")), ConstSpec("Greeting", None, greeting)]
    )
    with pytest.raises(LoweringError) as excinfo:
        expand_interpolations(Program("main", [], [decl]))
    assert excinfo.value.kind == "UnsupportedConstruct"
    assert "Greeting" in excinfo.value.message


def test_plain_const_values_are_left_alone():
    decl = ConstDecl([ConstSpec("Limit", None, BasicLit("int", "3"))])
    expand_interpolations(Program("main", [], [decl]))
    assert decl.specs[0].value == BasicLit("int", "3")
