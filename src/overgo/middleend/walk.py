"""Traversal helpers shared by the lowering passes."""

from __future__ import annotations

from typing import Callable

from ..diagnostics import LoweringError
from ..ir import (
    Assign,
    BasicLit,
    BinaryOp,
    Block,
    Break,
    Call,
    CompositeLit,
    ConstDecl,
    Continue,
    DeferStmt,
    Embed,
    EnumDecl,
    Expr,
    ExprStmt,
    For,
    ForRange,
    FuncLit,
    FunctionDecl,
    GoBinding,
    GoStmt,
    Ident,
    If,
    IncDec,
    Index,
    InterpolatedString,
    KeyValue,
    Program,
    Return,
    Selector,
    SendStmt,
    Stmt,
    Throw,
    TryExpr,
    TypeDecl,
    TypeRef,
    UnaryOp,
    VarDecl,
)


# ============================================================
# EXPRESSION CHILDREN
# ============================================================


def expr_children(expr: Expr) -> list[Expr]:
    """Direct subexpressions in Go evaluation order.

    FuncLit bodies are a separate scope and are not children.
    """
    if isinstance(expr, (BasicLit, Ident, TypeRef, FuncLit)):
        return []
    if isinstance(expr, Call):
        return [expr.func] + list(expr.args)
    if isinstance(expr, Selector):
        return [expr.obj]
    if isinstance(expr, Index):
        return [expr.obj, expr.index]
    if isinstance(expr, BinaryOp):
        return [expr.left, expr.right]
    if isinstance(expr, UnaryOp):
        return [expr.operand]
    if isinstance(expr, KeyValue):
        return [expr.key, expr.value]
    if isinstance(expr, CompositeLit):
        return list(expr.elements)
    if isinstance(expr, TryExpr):
        return [expr.inner]
    if isinstance(expr, InterpolatedString):
        return [seg.expr for seg in expr.segments if isinstance(seg, Embed)]
    raise LoweringError(
        "UnsupportedConstruct", "no rule for expression " + type(expr).__name__, expr.loc
    )


def set_expr_children(expr: Expr, children: list[Expr]) -> None:
    """Replace direct subexpressions in place (inverse of expr_children)."""
    if isinstance(expr, Call):
        expr.func = children[0]
        expr.args = children[1:]
    elif isinstance(expr, Selector):
        expr.obj = children[0]
    elif isinstance(expr, Index):
        expr.obj, expr.index = children[0], children[1]
    elif isinstance(expr, BinaryOp):
        expr.left, expr.right = children[0], children[1]
    elif isinstance(expr, UnaryOp):
        expr.operand = children[0]
    elif isinstance(expr, KeyValue):
        expr.key, expr.value = children[0], children[1]
    elif isinstance(expr, CompositeLit):
        expr.elements = children
    elif isinstance(expr, TryExpr):
        expr.inner = children[0]
    elif isinstance(expr, InterpolatedString):
        i = 0
        for seg in expr.segments:
            if isinstance(seg, Embed):
                seg.expr = children[i]
                i += 1


def map_expr(expr: Expr, fn: Callable[[Expr], Expr]) -> Expr:
    """Rewrite bottom-up: children first, then fn on the node itself."""
    children = expr_children(expr)
    if children:
        set_expr_children(expr, [map_expr(c, fn) for c in children])
    return fn(expr)


def any_expr(expr: Expr | None, pred: Callable[[Expr], bool]) -> bool:
    """True if pred holds for expr or any subexpression (FuncLit bodies excluded)."""
    if expr is None:
        return False
    if pred(expr):
        return True
    for c in expr_children(expr):
        if any_expr(c, pred):
            return True
    return False


def contains_try(expr: Expr | None) -> bool:
    return any_expr(expr, lambda e: isinstance(e, TryExpr))


def has_effects(expr: Expr) -> bool:
    """Calls and receives are the operations whose order Go specifies."""
    return any_expr(
        expr,
        lambda e: isinstance(e, (Call, TryExpr)) or (isinstance(e, UnaryOp) and e.op == "<-"),
    )


# ============================================================
# STATEMENT TRAVERSAL
# ============================================================


def stmt_exprs(stmt: Stmt) -> list[Expr]:
    """Expressions owned directly by stmt (not those of nested statements)."""
    if isinstance(stmt, Assign):
        return list(stmt.targets) + list(stmt.values)
    if isinstance(stmt, VarDecl):
        return [stmt.value] if stmt.value is not None else []
    if isinstance(stmt, IncDec):
        return [stmt.target]
    if isinstance(stmt, ExprStmt):
        return [stmt.expr]
    if isinstance(stmt, Return):
        return list(stmt.values)
    if isinstance(stmt, If):
        return [stmt.cond]
    if isinstance(stmt, For):
        return [stmt.cond] if stmt.cond is not None else []
    if isinstance(stmt, ForRange):
        out: list[Expr] = []
        if stmt.key is not None:
            out.append(stmt.key)
        if stmt.value is not None:
            out.append(stmt.value)
        out.append(stmt.iterable)
        return out
    if isinstance(stmt, Throw):
        return [stmt.expr]
    if isinstance(stmt, (GoBinding, GoStmt, DeferStmt)):
        return [stmt.call]
    if isinstance(stmt, SendStmt):
        return [stmt.channel, stmt.value]
    return []


def set_stmt_exprs(stmt: Stmt, exprs: list[Expr]) -> None:
    """Replace the expressions owned by stmt (inverse of stmt_exprs)."""
    if isinstance(stmt, Assign):
        n = len(stmt.targets)
        stmt.targets, stmt.values = exprs[:n], exprs[n:]
    elif isinstance(stmt, VarDecl):
        if exprs:
            stmt.value = exprs[0]
    elif isinstance(stmt, IncDec):
        stmt.target = exprs[0]
    elif isinstance(stmt, ExprStmt):
        stmt.expr = exprs[0]
    elif isinstance(stmt, Return):
        stmt.values = exprs
    elif isinstance(stmt, If):
        stmt.cond = exprs[0]
    elif isinstance(stmt, For):
        if exprs:
            stmt.cond = exprs[0]
    elif isinstance(stmt, ForRange):
        i = 0
        if stmt.key is not None:
            stmt.key = exprs[i]
            i += 1
        if stmt.value is not None:
            stmt.value = exprs[i]
            i += 1
        stmt.iterable = exprs[i]
    elif isinstance(stmt, Throw):
        stmt.expr = exprs[0]
    elif isinstance(stmt, (GoBinding, GoStmt, DeferStmt)):
        stmt.call = exprs[0]
    elif isinstance(stmt, SendStmt):
        stmt.channel, stmt.value = exprs[0], exprs[1]


def nested_bodies(stmt: Stmt) -> list[list[Stmt]]:
    """Statement lists nested directly inside stmt, including header statements."""
    if isinstance(stmt, If):
        out = [stmt.then_body, stmt.else_body]
        if stmt.init is not None:
            out.insert(0, [stmt.init])
        return out
    if isinstance(stmt, For):
        out = [stmt.body]
        if stmt.init is not None:
            out.insert(0, [stmt.init])
        if stmt.post is not None:
            out.append([stmt.post])
        return out
    if isinstance(stmt, (ForRange, Block)):
        return [stmt.body]
    return []


def _collect_expr_names(expr: Expr, out: set[str]) -> None:
    if isinstance(expr, Ident):
        out.add(expr.name)
    if isinstance(expr, FuncLit):
        for p in expr.params:
            out.add(p.name)
        collect_names(expr.body, out)
    for c in expr_children(expr):
        _collect_expr_names(c, out)


def collect_names(stmts: list[Stmt], out: set[str]) -> None:
    """Collect every identifier declared or referenced in stmts (recursively)."""
    for stmt in stmts:
        if isinstance(stmt, VarDecl):
            out.add(stmt.name)
        elif isinstance(stmt, GoBinding):
            out.update(stmt.names)
        elif isinstance(stmt, (Break, Continue)) and stmt.label is not None:
            out.add(stmt.label)
        for e in stmt_exprs(stmt):
            _collect_expr_names(e, out)
        for body in nested_bodies(stmt):
            collect_names(body, out)


class NameSupply:
    """Fresh hidden names that never collide with names already in use."""

    def __init__(self, used: set[str], prefix: str = "_") -> None:
        self.used: set[str] = used
        self.prefix: str = prefix
        self.counter: int = 0

    def fresh(self, base: str) -> str:
        return self.fresh_group([base])[0]

    def fresh_group(self, bases: list[str]) -> list[str]:
        """Names sharing one numeric suffix, e.g. _try3 and _err3."""
        while True:
            names = [self.prefix + b + str(self.counter) for b in bases]
            self.counter += 1
            if not any(n in self.used for n in names):
                self.used.update(names)
                return names

    def fresh_try(self, count: int) -> tuple[list[str], str]:
        """Bindings for one try: _try3 and _err3, or _try3_0, _try3_1 and _err3."""
        while True:
            n = str(self.counter)
            self.counter += 1
            if count == 1:
                values = [self.prefix + "try" + n]
            else:
                values = [self.prefix + "try" + n + "_" + str(i) for i in range(count)]
            err = self.prefix + "err" + n
            if not any(v in self.used for v in values + [err]):
                self.used.update(values)
                self.used.add(err)
                return values, err


def map_stmt_exprs(stmts: list[Stmt], fn: Callable[[Expr], Expr]) -> None:
    """Apply map_expr to every expression in stmts, closure bodies included."""

    def visit(e: Expr) -> Expr:
        if isinstance(e, FuncLit):
            map_stmt_exprs(e.body, fn)
        return fn(e)

    for stmt in stmts:
        exprs = stmt_exprs(stmt)
        if exprs:
            set_stmt_exprs(stmt, [map_expr(e, visit) for e in exprs])
        for body in nested_bodies(stmt):
            map_stmt_exprs(body, fn)


def program_names(program: Program) -> set[str]:
    """Package-level names a hidden local must not shadow."""
    out: set[str] = set()
    for path in program.imports:
        out.add(path.rsplit("/", 1)[-1])
    for decl in program.decls:
        if isinstance(decl, (FunctionDecl, TypeDecl, EnumDecl)):
            out.add(decl.name)
        elif isinstance(decl, ConstDecl):
            out.update(spec.name for spec in decl.specs)
    return out


def function_names(fn: FunctionDecl, program_level: set[str]) -> set[str]:
    used = set(program_level)
    for p in fn.params:
        used.add(p.name)
    if fn.receiver is not None:
        used.add(fn.receiver.name)
    collect_names(fn.body, used)
    return used
