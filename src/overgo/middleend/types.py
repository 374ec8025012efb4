"""Type lowering: extended type expressions -> Go types plus metadata.

Also the pass that rewrites every type position of a Program, lowers plain
enums to iota constants, and enforces the non-nillable pointer check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..diagnostics import LoweringError
from ..ir import (
    Array,
    Assign,
    BasicLit,
    Call,
    Channel,
    CompositeLit,
    ConstDecl,
    ConstSpec,
    Decl,
    Direction,
    EnumDecl,
    Expr,
    FuncLit,
    FuncType,
    FunctionDecl,
    Generic,
    Ident,
    KeyValue,
    Map,
    Named,
    Option,
    Param,
    Pointer,
    Program,
    Result,
    Return,
    Stmt,
    StructType,
    FieldDecl,
    Tuple,
    TypeDecl,
    TypeExpr,
    TryExpr,
    TypeRef,
    UnaryOp,
    VarDecl,
    is_nil,
    string_lit,
)
from .signatures import SignatureTable
from .walk import map_expr, nested_bodies, stmt_exprs

logger = logging.getLogger(__name__)

NUMERIC_TYPES: frozenset[str] = frozenset(
    {
        "int",
        "int8",
        "int16",
        "int32",
        "int64",
        "uint",
        "uint8",
        "uint16",
        "uint32",
        "uint64",
        "uintptr",
        "float32",
        "float64",
        "complex64",
        "complex128",
        "byte",
        "rune",
    }
)

REFERENCE_NAMES: frozenset[str] = frozenset({"error", "any", "interface{}"})

OPTION_HELPER = "_Option"


# ============================================================
# LOWERED TYPES
# ============================================================


@dataclass
class TypeInfo:
    """Metadata recorded while lowering one type expression.

    - pointer_nillable: None unless the source type is a pointer
    - direction: None unless the source type is a channel
    - element: lowered element/payload type of arrays, channels and options
    """

    is_option: bool = False
    is_result: bool = False
    pointer_nillable: bool | None = None
    direction: Direction | None = None
    element: TypeExpr | None = None


@dataclass
class LoweredType:
    """Go type to emit plus what the source type said about it."""

    base: TypeExpr
    info: TypeInfo = field(default_factory=TypeInfo)


class TypeEnv:
    """Declared named types of one program unit."""

    def __init__(self) -> None:
        self.decls: dict[str, TypeExpr] = {}
        self.enums: set[str] = set()

    @staticmethod
    def from_program(program: Program) -> TypeEnv:
        env = TypeEnv()
        for decl in program.decls:
            if isinstance(decl, TypeDecl):
                env.decls[decl.name] = decl.typ
            elif isinstance(decl, EnumDecl):
                env.enums.add(decl.name)
                env.decls[decl.name] = Named("int")
        return env

    def underlying(self, typ: TypeExpr) -> TypeExpr:
        """Follow declared names to their underlying type expression."""
        seen: set[str] = set()
        while isinstance(typ, Named) and typ.name in self.decls and typ.name not in seen:
            seen.add(typ.name)
            typ = self.decls[typ.name]
        return typ

    def is_reference_like(self, typ: TypeExpr) -> bool:
        """Types whose Go zero value is nil."""
        u = self.underlying(typ)
        if isinstance(u, (Pointer, Array, Map, Channel, FuncType)):
            return True
        if isinstance(u, Named):
            return u.name in REFERENCE_NAMES
        return False


# ============================================================
# LOWERING
# ============================================================


def lower_type(typ: TypeExpr, env: TypeEnv) -> LoweredType:
    """Lower a type in value position. Never mutates typ.

    Result is rejected here: it is only meaningful as a return type.
    """
    if isinstance(typ, Named):
        return LoweredType(Named(typ.name, loc=typ.loc))
    if isinstance(typ, Array):
        elem = lower_type(typ.element, env).base
        return LoweredType(Array(elem, loc=typ.loc), TypeInfo(element=elem))
    if isinstance(typ, Map):
        key = lower_type(typ.key, env).base
        value = lower_type(typ.value, env).base
        return LoweredType(Map(key, value, loc=typ.loc), TypeInfo(element=value))
    if isinstance(typ, Option):
        inner = lower_type(typ.inner, env).base
        if env.is_reference_like(inner):
            base: TypeExpr = Generic(OPTION_HELPER, [inner], loc=typ.loc)
        else:
            base = Pointer(inner, loc=typ.loc)
        return LoweredType(base, TypeInfo(is_option=True, element=inner))
    if isinstance(typ, Result):
        raise LoweringError(
            "InvalidTypeUsage",
            "Result type used where a value type is required",
            typ.loc,
        )
    if isinstance(typ, Pointer):
        inner = lower_type(typ.inner, env).base
        return LoweredType(
            Pointer(inner, loc=typ.loc), TypeInfo(pointer_nillable=typ.nillable, element=inner)
        )
    if isinstance(typ, Channel):
        inner = lower_type(typ.inner, env).base
        return LoweredType(
            Channel(inner, typ.direction, loc=typ.loc),
            TypeInfo(direction=typ.direction, element=inner),
        )
    if isinstance(typ, Generic):
        args = [lower_type(a, env).base for a in typ.args]
        return LoweredType(Generic(typ.name, args, loc=typ.loc))
    if isinstance(typ, StructType):
        fields = [FieldDecl(f.name, lower_type(f.typ, env).base, loc=f.loc) for f in typ.fields]
        return LoweredType(StructType(fields, loc=typ.loc))
    if isinstance(typ, FuncType):
        params = [lower_type(p, env).base for p in typ.params]
        fallible = len(typ.results) == 1 and isinstance(typ.results[0], Result)
        if len(typ.results) == 1:
            results = lower_return(typ.results[0], env)
        else:
            results = [lower_type(r, env).base for r in typ.results]
        return LoweredType(FuncType(params, results, loc=typ.loc), TypeInfo(is_result=fallible))
    if isinstance(typ, Tuple):
        raise LoweringError(
            "InvalidTypeUsage", "multi-value type used where a single value is required", typ.loc
        )
    raise LoweringError(
        "UnsupportedConstruct", "no lowering rule for type " + type(typ).__name__, typ.loc
    )


def lower_return(ret: TypeExpr | None, env: TypeEnv) -> list[TypeExpr]:
    """Lowered Go result list of a signature.

    | Source             | Go                |
    |--------------------|-------------------|
    | (none)             | ()                |
    | T                  | T                 |
    | (A, B)             | (A, B)            |
    | Result<T>          | (T, error)        |
    | Result<(A, B)>     | (A, B, error)     |
    | Result<()>         | error             |
    """
    if ret is None:
        return []
    if isinstance(ret, Result):
        return value_slots(ret, env) + [Named("error")]
    if isinstance(ret, Tuple):
        return [lower_type(e, env).base for e in ret.elements]
    return [lower_type(ret, env).base]


def value_slots(ret: TypeExpr | None, env: TypeEnv) -> list[TypeExpr]:
    """Lowered non-error result slots."""
    if isinstance(ret, Result):
        inner = ret.inner
        if isinstance(inner, Result):
            raise LoweringError("InvalidTypeUsage", "Result may not wrap another Result", ret.loc)
        if isinstance(inner, Tuple):
            return [lower_type(e, env).base for e in inner.elements]
        return [lower_type(inner, env).base]
    return lower_return(ret, env)


def zero_value(typ: TypeExpr, env: TypeEnv) -> Expr:
    """Structural zero value of a lowered type."""
    if isinstance(typ, Named):
        name = typ.name
        if name in NUMERIC_TYPES:
            return BasicLit("int", "0")
        if name == "string":
            return string_lit("")
        if name == "bool":
            return Ident("false")
        if name in REFERENCE_NAMES:
            return Ident("nil")
        if name in env.decls:
            u = env.underlying(typ)
            if isinstance(u, StructType):
                return CompositeLit(Named(name), [])
            if isinstance(u, Named) and u.name in env.decls:
                # cyclic declaration; let Go produce the zero
                return _new_zero(typ)
            return zero_value(u, env)
        return _new_zero(typ)
    if isinstance(typ, (Pointer, Array, Map, Channel, FuncType)):
        return Ident("nil")
    if isinstance(typ, (Generic, StructType)):
        return CompositeLit(typ, [])
    raise LoweringError("InvalidTypeUsage", "type has no single zero value", typ.loc)


def _new_zero(typ: TypeExpr) -> Expr:
    """*new(T) - zero of a type whose shape is unknown here."""
    return UnaryOp("*", Call(Ident("new"), [TypeRef(typ)]))


# ============================================================
# PROGRAM PASS
# ============================================================


def lower_types(program: Program, sigs: SignatureTable, env: TypeEnv) -> None:
    """Rewrite every type position of program in place."""
    decls: list[Decl] = []
    for decl in program.decls:
        if isinstance(decl, EnumDecl):
            decls.extend(_lower_enum(decl))
        elif isinstance(decl, TypeDecl):
            decl.typ = lower_type(decl.typ, env).base
            decls.append(decl)
        elif isinstance(decl, ConstDecl):
            for spec in decl.specs:
                if spec.typ is not None:
                    spec.typ = lower_type(spec.typ, env).base
            decls.append(decl)
        elif isinstance(decl, FunctionDecl):
            _TypePass(sigs, env).lower_function(decl)
            decls.append(decl)
        else:
            raise LoweringError(
                "UnsupportedConstruct",
                "no lowering rule for declaration " + type(decl).__name__,
                decl.loc,
            )
    program.decls = decls
    logger.debug("lowered types of %d declarations", len(decls))


def _lower_enum(decl: EnumDecl) -> list[Decl]:
    """enum Color { Red Green } -> type Color int; const (Red Color = iota; Green)."""
    for v in decl.variants:
        if v.fields:
            raise LoweringError(
                "UnsupportedConstruct",
                "enum variant '" + decl.name + "." + v.name + "' has associated values",
                v.loc,
            )
    specs: list[ConstSpec] = []
    for i, v in enumerate(decl.variants):
        if i == 0:
            specs.append(ConstSpec(v.name, Named(decl.name), Ident("iota"), loc=v.loc))
        else:
            specs.append(ConstSpec(v.name, loc=v.loc))
    out: list[Decl] = [TypeDecl(decl.name, Named("int"), loc=decl.loc)]
    if specs:
        out.append(ConstDecl(specs, loc=decl.loc))
    return out


class _TypePass:
    """Per-function walk: nil checks against source types, then type rewriting."""

    def __init__(self, sigs: SignatureTable, env: TypeEnv) -> None:
        self.sigs = sigs
        self.env = env

    def lower_function(self, fn: FunctionDecl) -> None:
        scope: dict[str, TypeExpr] = {}
        for p in fn.params:
            scope[p.name] = p.typ
        self._walk_stmts(fn.body, scope, _source_slots(fn.ret))
        for p in fn.params:
            p.typ = lower_type(p.typ, self.env).base
        if fn.receiver is not None:
            fn.receiver.typ = lower_type(fn.receiver.typ, self.env).base
        fn.ret = self._lower_ret(fn.ret)

    def _lower_ret(self, ret: TypeExpr | None) -> TypeExpr | None:
        """Lower inner types but keep the Result wrapper for the propagation pass."""
        if ret is None:
            return None
        if isinstance(ret, Result):
            slots = value_slots(ret, self.env)
            if isinstance(ret.inner, Tuple):
                return Result(Tuple(slots, loc=ret.inner.loc), loc=ret.loc)
            return Result(slots[0], loc=ret.loc)
        if isinstance(ret, Tuple):
            return Tuple(lower_return(ret, self.env), loc=ret.loc)
        return lower_type(ret, self.env).base

    # ── statements ────────────────────────────────────────────

    def _walk_stmts(
        self, stmts: list[Stmt], scope: dict[str, TypeExpr], ret_slots: list[TypeExpr]
    ) -> None:
        scope = dict(scope)
        for stmt in stmts:
            self._walk_stmt(stmt, scope, ret_slots)

    def _walk_stmt(
        self, stmt: Stmt, scope: dict[str, TypeExpr], ret_slots: list[TypeExpr]
    ) -> None:
        if isinstance(stmt, VarDecl) and stmt.typ is not None:
            if _is_ref_option(stmt.typ, self.env) and is_nil(stmt.value):
                stmt.value = None
            self._check_var_decl(stmt, scope)
            scope[stmt.name] = stmt.typ
            stmt.typ = lower_type(stmt.typ, self.env).base
        elif isinstance(stmt, Assign) and stmt.op == "=" and len(stmt.targets) == len(stmt.values):
            for i, target in enumerate(stmt.targets):
                if isinstance(target, Ident) and target.name in scope:
                    stmt.values[i] = self._check_slot(
                        scope[target.name], stmt.values[i], "'" + target.name + "'", scope
                    )
        elif isinstance(stmt, Return) and len(stmt.values) == len(ret_slots):
            for i, slot in enumerate(ret_slots):
                stmt.values[i] = self._check_slot(slot, stmt.values[i], "return value", scope)
        for expr in stmt_exprs(stmt):
            self._walk_expr(expr, scope)
        if isinstance(stmt, Assign) and stmt.op == ":=":
            for target in stmt.targets:
                if isinstance(target, Ident):
                    scope.pop(target.name, None)
        for body in nested_bodies(stmt):
            self._walk_stmts(body, scope, ret_slots)

    def _check_var_decl(self, stmt: VarDecl, scope: dict[str, TypeExpr]) -> None:
        typ = stmt.typ
        if isinstance(typ, Pointer) and not typ.nillable and stmt.value is None:
            raise LoweringError(
                "InvalidTypeUsage",
                "non-nillable pointer '" + stmt.name + "' declared without an initializer",
                stmt.loc,
            )
        if typ is not None and stmt.value is not None:
            stmt.value = self._check_slot(typ, stmt.value, "'" + stmt.name + "'", scope)

    def _check_slot(
        self, slot: TypeExpr, value: Expr, what: str, scope: dict[str, TypeExpr]
    ) -> Expr:
        """Reject nil into *T!; build the _Option[T] for a reference-like ?T slot."""
        if isinstance(slot, Pointer) and not slot.nillable and self._produces_nil(value, scope):
            raise LoweringError(
                "InvalidTypeUsage",
                "non-nillable pointer " + what + " initialized from a nil-producing expression",
                value.loc,
            )
        if not _is_ref_option(slot, self.env):
            return value
        option = lower_type(slot, self.env).base
        if is_nil(value):
            return CompositeLit(option, [], loc=value.loc)
        if self._is_option_value(value, scope):
            return value
        fields: list[Expr] = [
            KeyValue(Ident("Value"), value, loc=value.loc),
            KeyValue(Ident("Valid"), Ident("true"), loc=value.loc),
        ]
        return CompositeLit(option, fields, loc=value.loc)

    def _produces_nil(self, value: Expr, scope: dict[str, TypeExpr]) -> bool:
        if is_nil(value):
            return True
        sig = self.sigs.lookup_call(value, scope)
        return sig is not None and isinstance(sig.ret, Option)

    def _is_option_value(self, value: Expr, scope: dict[str, TypeExpr]) -> bool:
        """Values that already carry an option: option locals, option calls, try of one."""
        if isinstance(value, Ident):
            return isinstance(scope.get(value.name), Option)
        if isinstance(value, TryExpr):
            sig = self.sigs.lookup_call(value.inner, scope)
            return sig is not None and isinstance(sig.ret, Result) and isinstance(sig.ret.inner, Option)
        if isinstance(value, Call):
            sig = self.sigs.lookup_call(value, scope)
            return sig is not None and isinstance(sig.ret, Option)
        if isinstance(value, CompositeLit):
            typ = value.typ
            return isinstance(typ, Option) or (isinstance(typ, Generic) and typ.name == OPTION_HELPER)
        return False

    # ── expressions ───────────────────────────────────────────

    def _walk_expr(self, expr: Expr, scope: dict[str, TypeExpr]) -> None:
        def visit(e: Expr) -> Expr:
            if isinstance(e, Call):
                sig = self.sigs.lookup_call(e, scope)
                if sig is not None and len(sig.params) == len(e.args):
                    for i, p in enumerate(sig.params):
                        e.args[i] = self._check_slot(p, e.args[i], "argument", scope)
            elif isinstance(e, CompositeLit):
                e.typ = lower_type(e.typ, self.env).base
            elif isinstance(e, TypeRef):
                e.typ = lower_type(e.typ, self.env).base
            elif isinstance(e, FuncLit):
                self._lower_func_lit(e, scope)
            return e

        map_expr(expr, visit)

    def _lower_func_lit(self, lit: FuncLit, scope: dict[str, TypeExpr]) -> None:
        inner = dict(scope)
        for p in lit.params:
            inner[p.name] = p.typ
        slots: list[TypeExpr] = []
        if len(lit.results) == 1:
            slots = _source_slots(lit.results[0])
        else:
            slots = list(lit.results)
        self._walk_stmts(lit.body, inner, slots)
        lit.params = [Param(p.name, lower_type(p.typ, self.env).base, loc=p.loc) for p in lit.params]
        if len(lit.results) == 1 and isinstance(lit.results[0], Result):
            lit.results = [self._lower_ret(lit.results[0]) or Tuple([])]
        else:
            lit.results = [lower_type(r, self.env).base for r in lit.results]


def _source_slots(ret: TypeExpr | None) -> list[TypeExpr]:
    """Unlowered value slots a return statement fills."""
    if ret is None:
        return []
    if isinstance(ret, Result):
        inner = ret.inner
        if isinstance(inner, Tuple):
            return list(inner.elements)
        return [inner]
    if isinstance(ret, Tuple):
        return list(ret.elements)
    return [ret]


def _is_ref_option(typ: TypeExpr | None, env: TypeEnv) -> bool:
    if not isinstance(typ, Option):
        return False
    return env.is_reference_like(lower_type(typ.inner, env).base)
