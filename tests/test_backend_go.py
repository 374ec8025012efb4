"""Tests for the Go emitter."""

import pytest
from conftest import contains_normalized

from overgo.backend.go import emit_go
from overgo.backend.util import check_identifier, escape_rune, escape_string
from overgo.diagnostics import LoweringError
from overgo.ir import (
    Array,
    Assign,
    BasicLit,
    BinaryOp,
    Break,
    Call,
    Channel,
    CompositeLit,
    ConstDecl,
    ConstSpec,
    Continue,
    DeferStmt,
    ExprStmt,
    FieldDecl,
    For,
    ForRange,
    FuncLit,
    FuncType,
    FunctionDecl,
    Generic,
    GoBinding,
    Ident,
    If,
    IncDec,
    Index,
    InterpolatedString,
    KeyValue,
    Map,
    Named,
    Option,
    Param,
    Pointer,
    Program,
    Result,
    Return,
    Selector,
    SendStmt,
    StructType,
    Throw,
    TryExpr,
    Tuple,
    TypeDecl,
    UnaryOp,
    VarDecl,
)

INT = Named("int")
STRING = Named("string")


def _emit(*decls, imports=None) -> str:
    return emit_go(Program("main", imports or [], list(decls)))


def _body(*stmts, ret=None) -> str:
    return _emit(FunctionDecl("f", [], ret, list(stmts)))


def _expr(expr) -> str:
    """Emit expr as an expression statement and return that line."""
    out = _body(ExprStmt(expr))
    return out.split("\n")[3].strip()


def _int(n: int) -> BasicLit:
    return BasicLit("int", str(n))


def _bin(op, left, right) -> BinaryOp:
    return BinaryOp(op, left, right)


# ============================================================
# layout
# ============================================================


def test_empty_program():
    assert _emit() == "package main\n"


def test_function_layout():
    fn = FunctionDecl(
        "Add",
        [Param("a", INT), Param("b", INT)],
        INT,
        [Return([_bin("+", Ident("a"), Ident("b"))])],
    )
    assert _emit(fn) == "package main\n\nfunc Add(a int, b int) int {\n\treturn a + b\n}\n"


def test_declarations_separated_by_blank_line():
    out = _emit(FunctionDecl("a", [], None, []), FunctionDecl("b", [], None, []))
    assert out == "package main\n\nfunc a() {\n}\n\nfunc b() {\n}\n"


def test_method_with_receiver():
    fn = FunctionDecl(
        "Area",
        [],
        INT,
        [Return([_bin("*", Selector(Ident("r"), "W"), Selector(Ident("r"), "H"))])],
        receiver=Param("r", Pointer(Named("Rect"))),
    )
    assert "func (r *Rect) Area() int {" in _emit(fn)


def test_multi_value_results():
    fn = FunctionDecl("Pair", [], Tuple([INT, STRING]), [Return([_int(1), BasicLit("string", "a")])])
    assert "func Pair() (int, string) {" in _emit(fn)


def test_struct_type_decl():
    decl = TypeDecl("Point", StructType([FieldDecl("X", INT), FieldDecl("Y", INT)]))
    assert contains_normalized(_emit(decl), "type Point struct {\nX int\nY int\n}")


def test_named_type_decl():
    assert "type Celsius float64" in _emit(TypeDecl("Celsius", Named("float64")))


def test_const_group():
    decl = ConstDecl(
        [ConstSpec("Red", Named("Color"), Ident("iota")), ConstSpec("Green"), ConstSpec("Blue")]
    )
    assert contains_normalized(
        _emit(decl), "const (\nRed Color = iota\nGreen\nBlue\n)"
    )


def test_single_const():
    assert "const Limit = 10" in _emit(ConstDecl([ConstSpec("Limit", None, _int(10))]))


# ============================================================
# imports and helpers
# ============================================================


def test_user_imports_sorted_and_deduplicated():
    out = _emit(imports=["strings", "fmt", "strings"])
    assert out == 'package main\n\nimport (\n\t"fmt"\n\t"strings"\n)\n'


def test_fmt_is_imported_when_referenced():
    out = _body(ExprStmt(Call(Selector(Ident("fmt"), "Println"), [_int(1)])))
    assert 'import "fmt"' in out


def test_auto_import_merges_with_user_imports():
    out = _emit(
        FunctionDecl(
            "f",
            [],
            None,
            [ExprStmt(Call(Selector(Ident("errors"), "New"), [BasicLit("string", "x")]))],
        ),
        imports=["os", "errors"],
    )
    assert 'import (\n\t"errors"\n\t"os"\n)' in out


def test_option_helper_emitted_once_when_referenced():
    opt = Generic("_Option", [Array(INT)])
    fn = FunctionDecl(
        "f",
        [Param("a", opt), Param("b", opt)],
        None,
        [VarDecl("c", opt, CompositeLit(opt, []))],
    )
    out = _emit(fn)
    assert out.count("type _Option[T any] struct {") == 1
    assert "Valid bool" in out
    assert "func f(a _Option[[]int], b _Option[[]int]) {" in out
    assert "var c _Option[[]int] = _Option[[]int]{}" in out
    assert "import" not in out


def test_helpers_skipped_when_disabled():
    opt = Generic("_Option", [Array(INT)])
    fn = FunctionDecl("f", [Param("a", opt)], None, [])
    out = emit_go(Program("main", [], [fn]), emit_helpers=False)
    assert "type _Option" not in out


def test_package_override():
    assert emit_go(Program("main", [], []), package="offers") == "package offers\n"


# ============================================================
# statements
# ============================================================


def test_var_decl_forms():
    out = _body(
        VarDecl("a", INT),
        VarDecl("b", INT, _int(1)),
        VarDecl("c", None, _int(2)),
    )
    assert "\tvar a int\n" in out
    assert "\tvar b int = 1\n" in out
    assert "\tvar c = 2\n" in out


def test_assign_forms():
    out = _body(
        Assign([Ident("a"), Ident("b")], [_int(1), _int(2)], ":="),
        Assign([Ident("a")], [_int(3)], "+="),
        IncDec(Ident("b"), "--"),
        SendStmt(Ident("ch"), Ident("a")),
    )
    assert contains_normalized(out, "a, b := 1, 2\na += 3\nb--\nch <- a")


def test_if_else_if_chain():
    stmt = If(
        _bin("<", Ident("n"), _int(0)),
        [Return([BasicLit("string", "neg")])],
        [
            If(
                _bin("==", Ident("n"), _int(0)),
                [Return([BasicLit("string", "zero")])],
                [Return([BasicLit("string", "pos")])],
            )
        ],
    )
    assert contains_normalized(
        _body(stmt, ret=STRING),
        """
        if n < 0 {
            return "neg"
        } else if n == 0 {
            return "zero"
        } else {
            return "pos"
        }
        """,
    )


def test_if_with_init():
    stmt = If(
        _bin("!=", Ident("err"), Ident("nil")),
        [Return([Ident("err")])],
        init=Assign([Ident("err")], [Call(Ident("run"), [])], ":="),
    )
    assert "if err := run(); err != nil {" in _body(stmt, ret=Named("error"))


def test_for_forms():
    out = _body(
        For(body=[Break()]),
        For(cond=_bin("<", Ident("i"), _int(3)), body=[Continue()]),
        For(
            init=Assign([Ident("i")], [_int(0)], ":="),
            cond=_bin("<", Ident("i"), _int(3)),
            post=IncDec(Ident("i"), "++"),
            body=[Break("outer")],
        ),
        For(init=Assign([Ident("j")], [_int(0)], ":="), post=IncDec(Ident("j"), "++")),
    )
    assert "\tfor {\n\t\tbreak\n\t}" in out
    assert "\tfor i < 3 {\n\t\tcontinue\n\t}" in out
    assert "\tfor i := 0; i < 3; i++ {\n\t\tbreak outer\n\t}" in out
    assert "\tfor j := 0; ; j++ {" in out


def test_for_range_forms():
    out = _body(
        ForRange(Ident("i"), Ident("v"), Ident("xs")),
        ForRange(Ident("k"), None, Ident("m")),
        ForRange(None, Ident("v"), Ident("xs")),
        ForRange(None, None, Ident("ch")),
        ForRange(Ident("i"), None, Ident("xs"), define=False),
    )
    assert "for i, v := range xs {" in out
    assert "for k := range m {" in out
    assert "for _, v := range xs {" in out
    assert "for range ch {" in out
    assert "for i = range xs {" in out


def test_go_and_defer():
    out = _body(
        DeferStmt(Call(Selector(Ident("mu"), "Unlock"), [])),
        ExprStmt(Call(Selector(Ident("wg"), "Wait"), [])),
    )
    assert "\tdefer mu.Unlock()\n\twg.Wait()" in out


def test_closure_body_is_indented():
    lit = FuncLit([Param("x", INT)], [INT], [Return([_bin("*", Ident("x"), _int(2))])])
    out = _body(Assign([Ident("double")], [lit], ":="))
    assert "\tdouble := func(x int) int {\n\t\treturn x * 2\n\t}\n" in out


def test_empty_closure_stays_on_one_line():
    lit = FuncLit([], [], [])
    assert _expr(Call(lit, [])) == "func() {}()"


# ============================================================
# expressions
# ============================================================


def test_precedence_minimal_parens():
    a, b, c = Ident("a"), Ident("b"), Ident("c")
    assert _expr(Call(Ident("f"), [_bin("*", _bin("+", a, b), c)])) == "f((a + b) * c)"
    assert _expr(Call(Ident("f"), [_bin("+", _bin("*", a, b), c)])) == "f(a * b + c)"
    assert _expr(Call(Ident("f"), [_bin("-", a, _bin("-", b, c))])) == "f(a - (b - c))"
    assert _expr(Call(Ident("f"), [_bin("-", _bin("-", a, b), c)])) == "f(a - b - c)"
    assert _expr(Call(Ident("f"), [_bin("&&", _bin("||", a, b), c)])) == "f((a || b) && c)"


def test_chained_comparison_is_parenthesized():
    expr = _bin("==", _bin("<", Ident("a"), Ident("b")), Ident("ok"))
    assert _expr(Call(Ident("f"), [expr])) == "f((a < b) == ok)"


def test_unary_operands():
    assert _expr(Call(Ident("f"), [UnaryOp("!", _bin("&&", Ident("a"), Ident("b")))])) == "f(!(a && b))"
    assert _expr(Call(Ident("f"), [UnaryOp("-", UnaryOp("-", Ident("x")))])) == "f(-(-x))"
    assert _expr(Call(Ident("f"), [UnaryOp("<-", Ident("ch"))])) == "f(<-ch)"
    assert _expr(Call(Ident("f"), [UnaryOp("*", Ident("p"))])) == "f(*p)"


def test_selector_and_index_on_operators():
    expr = Selector(UnaryOp("*", Ident("p")), "X")
    assert _expr(Call(Ident("f"), [expr])) == "f((*p).X)"
    expr = Index(Call(Ident("items"), []), _int(0))
    assert _expr(Call(Ident("f"), [expr])) == "f(items()[0])"


def test_spread_call():
    assert _expr(Call(Ident("append"), [Ident("a"), Ident("b")], ellipsis=True)) == "append(a, b...)"


def test_composite_literals():
    lit = CompositeLit(Named("Point"), [KeyValue(Ident("X"), _int(1)), KeyValue(Ident("Y"), _int(2))])
    assert _expr(Call(Ident("f"), [lit])) == "f(Point{X: 1, Y: 2})"
    lit = CompositeLit(Map(STRING, INT), [KeyValue(BasicLit("string", "a"), _int(1))])
    assert _expr(Call(Ident("f"), [lit])) == 'f(map[string]int{"a": 1})'


def test_composite_literal_in_if_header_is_parenthesized():
    stmt = If(_bin("==", Ident("p"), CompositeLit(Named("Point"), [])), [])
    assert "if p == (Point{}) {" in _body(stmt)


def test_string_and_rune_escapes():
    assert escape_string('say "hi"\n') == 'say \\"hi\\"\\n'
    assert escape_string("tab\there\\") == "tab\\there\\\\"
    assert escape_string("\x00") == "\\x00"
    assert escape_rune("'") == "\\'"
    assert _expr(Call(Ident("f"), [BasicLit("string", 'a"b')])) == 'f("a\\"b")'
    assert _expr(Call(Ident("f"), [BasicLit("rune", "\n")])) == "f('\\n')"


def test_unicode_passes_through():
    assert escape_string("héllo ☃") == "héllo ☃"


# ============================================================
# types
# ============================================================


@pytest.mark.parametrize(
    "typ,go",
    [
        (INT, "int"),
        (Array(STRING), "[]string"),
        (Map(STRING, Array(INT)), "map[string][]int"),
        (Pointer(Named("Point")), "*Point"),
        (Channel(INT), "chan int"),
        (Channel(INT, "send"), "chan<- int"),
        (Channel(INT, "recv"), "<-chan int"),
        (Channel(Channel(INT, "recv")), "chan (<-chan int)"),
        (FuncType([INT, STRING], []), "func(int, string)"),
        (FuncType([], [INT, Named("error")]), "func() (int, error)"),
        (StructType([]), "struct{}"),
        (StructType([FieldDecl("A", INT)]), "struct{ A int }"),
    ],
)
def test_type_syntax(typ, go):
    fn = FunctionDecl("f", [Param("x", typ)], None, [])
    assert "func f(x " + go + ") {" in _emit(fn)


# ============================================================
# rejected input
# ============================================================


@pytest.mark.parametrize(
    "fn",
    [
        FunctionDecl("f", [Param("x", Option(INT))], None, []),
        FunctionDecl("f", [], Result(INT), []),
        FunctionDecl("f", [], None, [ExprStmt(TryExpr(Call(Ident("g"), [])))]),
        FunctionDecl("f", [], None, [Throw(BasicLit("string", "x"))]),
        FunctionDecl("f", [], None, [GoBinding(["a"], Call(Ident("g"), []))]),
        FunctionDecl("f", [], None, [ExprStmt(InterpolatedString(["x"]))]),
    ],
)
def test_unlowered_constructs_are_rejected(fn):
    with pytest.raises(LoweringError) as excinfo:
        _emit(fn)
    assert excinfo.value.kind == "UnsupportedConstruct"


def test_reserved_word_identifier_is_rejected():
    assert check_identifier("items") == "items"
    with pytest.raises(LoweringError) as excinfo:
        _body(Assign([Ident("range")], [_int(1)], ":="))
    assert excinfo.value.kind == "UnsupportedConstruct"


def test_emit_is_idempotent():
    fn = FunctionDecl(
        "f",
        [Param("xs", Array(INT))],
        INT,
        [
            Assign([Ident("total")], [_int(0)], ":="),
            ForRange(None, Ident("x"), Ident("xs"), [Assign([Ident("total")], [Ident("x")], "+=")]),
            Return([Ident("total")]),
        ],
    )
    program = Program("main", ["fmt"], [fn])
    assert emit_go(program) == emit_go(program)
