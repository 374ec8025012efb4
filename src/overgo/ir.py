"""overgo IR - AST for the Go-superset source language.

This module defines every node the lowering engine reads or produces and
serves as the reference for their semantics. Each node's docstring documents
its meaning and invariants.

Architecture:
    Source -> external parser -> [IR] -> Middleend (lowering passes) -> Go backend -> Go

The parser hands over a Program made of extended nodes (Option, Result,
TryExpr, Throw, GoBinding, InterpolatedString, EnumDecl). The middleend
rewrites them in place into base nodes only; the backend renders base nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


# ============================================================
# SOURCE LOCATIONS
# ============================================================


@dataclass(unsafe_hash=True)
class Loc:
    """Source location for diagnostics.

    Invariants:
    - line >= 1 for valid locations (0 indicates unknown)
    - col >= 0 (0-indexed within line)
    """

    line: int  # 1-indexed, 0 = unknown
    col: int  # 0-indexed


def loc_unknown() -> Loc:
    """Factory for unknown source location."""
    return Loc(0, 0)


def _loc() -> Loc:
    return field(default_factory=loc_unknown, compare=False)


# ============================================================
# TYPES
#
# Extended variants (Option, Result) only exist before type lowering.
# Pointer.nillable is erased by lowering (all Go pointers are nillable).
# ============================================================

Direction = Literal["both", "send", "recv"]
"""Channel direction.

| Direction | Go         |
|-----------|------------|
| both      | chan T     |
| send      | chan<- T   |
| recv      | <-chan T   |
"""


@dataclass(kw_only=True)
class TypeExpr:
    """Base for all type expressions. Abstract."""

    loc: Loc = _loc()


@dataclass
class Named(TypeExpr):
    """Named type: builtin (int, string, error, any), declared, or qualified (pkg.T)."""

    name: str


@dataclass
class Array(TypeExpr):
    """Growable sequence, emitted as a Go slice []T."""

    element: TypeExpr


@dataclass
class Map(TypeExpr):
    """map[K]V."""

    key: TypeExpr
    value: TypeExpr


@dataclass
class Option(TypeExpr):
    """Value that may be absent (source syntax ?T).

    | Inner                 | Go          |
    |-----------------------|-------------|
    | value type            | *T          |
    | reference-like type   | _Option[T]  |

    Invariants:
    - wraps exactly one inner type
    - never survives type lowering
    """

    inner: TypeExpr


@dataclass
class Result(TypeExpr):
    """Fallible return type (source syntax Result<T>).

    Only legal as a function or function-type return type. Lowers to the
    multi-value return (T, error); Result(Tuple(A, B)) lowers to (A, B, error)
    and Result(Tuple()) to a bare error.

    Invariants:
    - wraps exactly one inner type
    - inner is never itself a Result
    - never survives error-propagation lowering
    """

    inner: TypeExpr


@dataclass
class Pointer(TypeExpr):
    """*T. nillable=False marks the source non-nillable pointer (*T!).

    Non-nillability is a lowering-time check only; both forms emit *T.
    """

    inner: TypeExpr
    nillable: bool = True


@dataclass
class Channel(TypeExpr):
    """Channel with direction markers."""

    inner: TypeExpr
    direction: Direction = "both"


@dataclass
class Tuple(TypeExpr):
    """Multi-value return shape. Legal only in return position."""

    elements: list[TypeExpr] = field(default_factory=list)


@dataclass
class Generic(TypeExpr):
    """Instantiated generic type, e.g. _Option[int] or _SyncState[string].

    Produced by lowering for compiler-inserted helper types.
    """

    name: str
    args: list[TypeExpr] = field(default_factory=list)


@dataclass
class FieldDecl:
    """Struct field: Name Type."""

    name: str
    typ: TypeExpr
    loc: Loc = _loc()


@dataclass
class StructType(TypeExpr):
    """struct { fields }."""

    fields: list[FieldDecl] = field(default_factory=list)


@dataclass
class FuncType(TypeExpr):
    """func(params) results. A single Result in results is lowered like a signature."""

    params: list[TypeExpr] = field(default_factory=list)
    results: list[TypeExpr] = field(default_factory=list)


# ============================================================
# EXPRESSIONS
# ============================================================


@dataclass(kw_only=True)
class Expr:
    """Base for all expressions. Abstract."""

    loc: Loc = _loc()


LitKind = Literal["string", "int", "float", "imag", "rune"]


@dataclass
class BasicLit(Expr):
    """Literal value.

    value holds the decoded contents for string and rune literals and the
    raw source spelling for numeric literals. nil, true and false are Idents.
    """

    kind: LitKind
    value: str


@dataclass
class Ident(Expr):
    """Identifier reference (variables, functions, nil, true, false, packages)."""

    name: str


@dataclass
class Call(Expr):
    """func(args). ellipsis marks a trailing spread argument (f(xs...))."""

    func: Expr
    args: list[Expr] = field(default_factory=list)
    ellipsis: bool = False


@dataclass
class Selector(Expr):
    """obj.name - field access, method value or package-qualified name."""

    obj: Expr
    name: str


@dataclass
class Index(Expr):
    """obj[index]. Also used for generic instantiation (f[T])."""

    obj: Expr
    index: Expr


@dataclass
class BinaryOp(Expr):
    """left op right."""

    op: str
    left: Expr
    right: Expr


@dataclass
class UnaryOp(Expr):
    """op operand. op "<-" is a channel receive (or a go-binding read)."""

    op: str
    operand: Expr


@dataclass
class KeyValue(Expr):
    """key: value inside a composite literal."""

    key: Expr
    value: Expr


@dataclass
class CompositeLit(Expr):
    """T{elements}. Elements are plain values or KeyValue pairs."""

    typ: TypeExpr
    elements: list[Expr] = field(default_factory=list)


@dataclass
class TypeRef(Expr):
    """A type in expression position: make(chan T, 1), new(T), conversions."""

    typ: TypeExpr


@dataclass
class Embed:
    """Embedded expression of an interpolated string: \\(expr) or \\(expr:verb)."""

    expr: Expr
    verb: str | None = None
    loc: Loc = _loc()


@dataclass
class InterpolatedString(Expr):
    """String literal with embedded expressions.

    Segments are literal text (str) or Embed, in source order.
    Never survives interpolation expansion.
    """

    segments: list[str | Embed] = field(default_factory=list)


@dataclass
class TryExpr(Expr):
    """try call - propagate the call's error to the enclosing function.

    Invariants:
    - inner is a Call whose declared return type is Result-wrapped
    - never survives error-propagation lowering
    """

    inner: Expr


@dataclass
class Param:
    """Function parameter or receiver."""

    name: str
    typ: TypeExpr
    loc: Loc = _loc()


@dataclass
class FuncLit(Expr):
    """func(params) results { body } - closure literal."""

    params: list[Param] = field(default_factory=list)
    results: list[TypeExpr] = field(default_factory=list)
    body: list[Stmt] = field(default_factory=list)


# ============================================================
# STATEMENTS
# ============================================================


@dataclass(kw_only=True)
class Stmt:
    """Base for all statements. Abstract."""

    loc: Loc = _loc()


@dataclass
class Assign(Stmt):
    """targets op values.

    op is "=", ":=" or a compound operator ("+=", "<<=", ...).
    A single multi-value call may feed several targets.
    """

    targets: list[Expr]
    values: list[Expr]
    op: str = "="


@dataclass
class VarDecl(Stmt):
    """var name T = value. typ or value may be omitted (not both)."""

    name: str
    typ: TypeExpr | None = None
    value: Expr | None = None


@dataclass
class IncDec(Stmt):
    """target++ or target--."""

    target: Expr
    op: str


@dataclass
class ExprStmt(Stmt):
    """Expression evaluated for side effects, result discarded."""

    expr: Expr


@dataclass
class Return(Stmt):
    """return values."""

    values: list[Expr] = field(default_factory=list)


@dataclass
class If(Stmt):
    """if init; cond { then_body } else { else_body }.

    An else_body holding exactly one If renders as else-if.
    """

    cond: Expr
    then_body: list[Stmt] = field(default_factory=list)
    else_body: list[Stmt] = field(default_factory=list)
    init: Stmt | None = None


@dataclass
class For(Stmt):
    """for init; cond; post { body }. All header parts optional."""

    init: Stmt | None = None
    cond: Expr | None = None
    post: Stmt | None = None
    body: list[Stmt] = field(default_factory=list)


@dataclass
class ForRange(Stmt):
    """for key, value := range iterable { body }. define=False uses =."""

    key: Expr | None
    value: Expr | None
    iterable: Expr
    body: list[Stmt] = field(default_factory=list)
    define: bool = True


@dataclass
class Block(Stmt):
    """{ body } - explicit lexical scope."""

    body: list[Stmt] = field(default_factory=list)


@dataclass
class Break(Stmt):
    """break label?."""

    label: str | None = None


@dataclass
class Continue(Stmt):
    """continue label?."""

    label: str | None = None


@dataclass
class Throw(Stmt):
    """throw expr - fail the enclosing Result function with expr as its error.

    Never survives error-propagation lowering.
    """

    expr: Expr


@dataclass
class GoBinding(Stmt):
    """n1, ..., nk := go call - dispatch call concurrently.

    Each name is bound to a synchronization handle for the matching return
    slot; a later receive-style read <-ni blocks until the value arrives.
    Never survives concurrency lowering.
    """

    names: list[str]
    call: Expr


@dataclass
class GoStmt(Stmt):
    """go call."""

    call: Expr


@dataclass
class DeferStmt(Stmt):
    """defer call."""

    call: Expr


@dataclass
class SendStmt(Stmt):
    """channel <- value."""

    channel: Expr
    value: Expr


# ============================================================
# DECLARATIONS
# ============================================================


@dataclass(kw_only=True)
class Decl:
    """Base for top-level declarations. Abstract."""

    loc: Loc = _loc()


@dataclass
class FunctionDecl(Decl):
    """Function or method.

    ret is None for no results, a Tuple for multi-value results, or a Result.
    The body is replaced in place by the lowering passes.
    """

    name: str
    params: list[Param] = field(default_factory=list)
    ret: TypeExpr | None = None
    body: list[Stmt] = field(default_factory=list)
    receiver: Param | None = None


@dataclass
class TypeDecl(Decl):
    """type Name T."""

    name: str
    typ: TypeExpr


@dataclass
class EnumVariant:
    """Enum variant. Non-empty fields means associated values (unsupported)."""

    name: str
    fields: list[TypeExpr] = field(default_factory=list)
    loc: Loc = _loc()


@dataclass
class EnumDecl(Decl):
    """enum Name { variants }. Lowers to a named int type plus iota constants."""

    name: str
    variants: list[EnumVariant] = field(default_factory=list)


@dataclass
class ConstSpec:
    """One line of a const group. Omitted typ and value repeat the previous spec."""

    name: str
    typ: TypeExpr | None = None
    value: Expr | None = None
    loc: Loc = _loc()


@dataclass
class ConstDecl(Decl):
    """const ( specs )."""

    specs: list[ConstSpec] = field(default_factory=list)


@dataclass
class Program:
    """One program unit: a single Go file after lowering.

    Invariants:
    - package is a valid Go package name
    - imports are import paths without quotes
    - declaration order is preserved through lowering and emission
    """

    package: str
    imports: list[str] = field(default_factory=list)
    decls: list[Decl] = field(default_factory=list)


# ============================================================
# SMALL CONSTRUCTORS
# ============================================================


def nil_ident() -> Ident:
    return Ident("nil")


def is_nil(expr: Expr | None) -> bool:
    return isinstance(expr, Ident) and expr.name == "nil"


def string_lit(value: str) -> BasicLit:
    return BasicLit("string", value)


def pkg_call(pkg: str, name: str, args: list[Expr]) -> Call:
    """pkg.name(args)."""
    return Call(Selector(Ident(pkg), name), args)
