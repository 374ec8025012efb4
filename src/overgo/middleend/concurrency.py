"""Concurrency lowering: go-bindings -> goroutine dispatch plus SyncStates.

    items, discounts := go fetchOffers(id)

becomes

    var _a0 int = id
    items := _newSyncState[[]Item]()
    discounts := _newSyncState[int]()
    go func() {
        defer func() {
            if _r1 := recover(); _r1 != nil {
                items.fail(_r1)
                discounts.fail(_r1)
            }
        }()
        _v2, _v3 := fetchOffers(_a0)
        items.ch <- _v2
        discounts.ch <- _v3
    }()

and every later read <-items in scope becomes items.Get().
"""

from __future__ import annotations

import logging

from ..diagnostics import LoweringError
from ..ir import (
    Assign,
    BasicLit,
    BinaryOp,
    Block,
    Call,
    DeferStmt,
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
    Index,
    Program,
    Selector,
    SendStmt,
    Stmt,
    TypeExpr,
    TypeRef,
    UnaryOp,
    VarDecl,
    nil_ident,
)
from .signatures import SignatureTable
from .types import TypeEnv, lower_return, lower_type
from .walk import NameSupply, function_names, map_expr, set_stmt_exprs, stmt_exprs

logger = logging.getLogger(__name__)

SYNC_STATE = "_SyncState"
NEW_SYNC_STATE = "_newSyncState"

_CONSTANT_IDENTS = frozenset({"nil", "true", "false"})


def lower_concurrency(
    program: Program, sigs: SignatureTable, env: TypeEnv, program_level: set[str], prefix: str = "_"
) -> int:
    """Lower every go-binding in place. Returns the number of bindings lowered."""
    total = 0
    for decl in program.decls:
        if not isinstance(decl, FunctionDecl):
            continue
        names = NameSupply(function_names(decl, program_level), prefix)
        lw = _Lowerer(sigs, env, names)
        decl.body = lw.lower_block(decl.body, set())
        total += lw.bindings
    logger.debug("lowered %d go-bindings", total)
    return total


def _get(name: str) -> Expr:
    return Call(Selector(Ident(name), "Get"), [])


def _stays_inline(arg: Expr) -> bool:
    """Arguments whose value cannot change between dispatch and call."""
    if isinstance(arg, (BasicLit, FuncLit)):
        return True
    return isinstance(arg, Ident) and arg.name in _CONSTANT_IDENTS


class _Lowerer:
    def __init__(self, sigs: SignatureTable, env: TypeEnv, names: NameSupply) -> None:
        self.sigs = sigs
        self.env = env
        self.names = names
        self.bindings = 0

    # ── reads ─────────────────────────────────────────────────

    def _rewrite_reads(self, expr: Expr, bound: set[str]) -> Expr:
        def visit(e: Expr) -> Expr:
            if (
                isinstance(e, UnaryOp)
                and e.op == "<-"
                and isinstance(e.operand, Ident)
                and e.operand.name in bound
            ):
                call = _get(e.operand.name)
                call.loc = e.loc
                return call
            if isinstance(e, FuncLit):
                inner = bound - {p.name for p in e.params}
                e.body = self.lower_block(e.body, inner)
            return e

        return map_expr(expr, visit)

    def _rewrite_stmt_reads(self, stmt: Stmt, bound: set[str]) -> None:
        exprs = stmt_exprs(stmt)
        if exprs:
            set_stmt_exprs(stmt, [self._rewrite_reads(e, bound) for e in exprs])

    # ── statements ────────────────────────────────────────────

    def lower_block(self, stmts: list[Stmt], bound: set[str]) -> list[Stmt]:
        """Lower stmts; bound is owned by this block and updated as names are declared."""
        out: list[Stmt] = []
        for stmt in stmts:
            out.extend(self._lower_stmt(stmt, bound))
        return out

    def _lower_header(self, stmt: Stmt | None, bound: set[str]) -> Stmt | None:
        if stmt is None:
            return None
        lowered = self._lower_stmt(stmt, bound)
        if len(lowered) != 1:
            raise LoweringError(
                "UnsupportedConstruct", "go-binding in a statement header", stmt.loc
            )
        return lowered[0]

    def _lower_stmt(self, stmt: Stmt, bound: set[str]) -> list[Stmt]:
        if isinstance(stmt, GoBinding):
            stmt.call = self._rewrite_reads(stmt.call, bound)
            out = self._lower_binding(stmt)
            bound.update(n for n in stmt.names if n != "_")
            return out
        if isinstance(stmt, If):
            inner = set(bound)
            stmt.init = self._lower_header(stmt.init, inner)
            stmt.cond = self._rewrite_reads(stmt.cond, inner)
            stmt.then_body = self.lower_block(stmt.then_body, set(inner))
            stmt.else_body = self.lower_block(stmt.else_body, set(inner))
            return [stmt]
        if isinstance(stmt, For):
            inner = set(bound)
            stmt.init = self._lower_header(stmt.init, inner)
            if stmt.cond is not None:
                stmt.cond = self._rewrite_reads(stmt.cond, inner)
            stmt.post = self._lower_header(stmt.post, inner)
            stmt.body = self.lower_block(stmt.body, set(inner))
            return [stmt]
        if isinstance(stmt, ForRange):
            stmt.iterable = self._rewrite_reads(stmt.iterable, bound)
            inner = set(bound)
            if stmt.define:
                for target in (stmt.key, stmt.value):
                    if isinstance(target, Ident):
                        inner.discard(target.name)
            stmt.body = self.lower_block(stmt.body, inner)
            return [stmt]
        if isinstance(stmt, Block):
            stmt.body = self.lower_block(stmt.body, set(bound))
            return [stmt]
        self._rewrite_stmt_reads(stmt, bound)
        if isinstance(stmt, Assign) and stmt.op == ":=":
            for target in stmt.targets:
                if isinstance(target, Ident):
                    bound.discard(target.name)
        elif isinstance(stmt, VarDecl):
            bound.discard(stmt.name)
        return [stmt]

    # ── go-bindings ───────────────────────────────────────────

    def _lower_binding(self, stmt: GoBinding) -> list[Stmt]:
        call = stmt.call
        if not isinstance(call, Call):
            raise LoweringError("UnsupportedConstruct", "go requires a call expression", stmt.loc)
        sig = self.sigs.lookup_call(call)
        if sig is None:
            raise LoweringError(
                "UnsupportedConstruct",
                "cannot bind results of a call whose signature is unknown",
                stmt.loc,
            )
        slots = lower_return(sig.ret, self.env)
        if len(stmt.names) != len(slots):
            if sig.is_result and len(stmt.names) < len(slots):
                raise LoweringError(
                    "DiscardedResult",
                    "go-binding of '" + sig.name + "' does not capture its error",
                    stmt.loc,
                )
            raise LoweringError(
                "InvalidTypeUsage",
                "go-binding of "
                + str(len(stmt.names))
                + " names to '"
                + sig.name
                + "' returning "
                + str(len(slots))
                + " values",
                stmt.loc,
            )
        out: list[Stmt] = []
        call.args = self._spill_args(call, sig.params, out)
        if all(n == "_" for n in stmt.names):
            out.append(GoStmt(call, loc=stmt.loc))
            return out
        for name, typ in zip(stmt.names, slots):
            if name == "_":
                continue
            make = Call(Index(Ident(NEW_SYNC_STATE), TypeRef(typ)), [])
            out.append(Assign([Ident(name)], [make], ":=", loc=stmt.loc))
        out.append(GoStmt(Call(FuncLit([], [], self._task_body(stmt.names, call)), []), loc=stmt.loc))
        self.bindings += 1
        logger.debug("go-binding %s of %s", ", ".join(stmt.names), sig.name)
        return out

    def _spill_args(self, call: Call, params: list[TypeExpr], out: list[Stmt]) -> list[Expr]:
        """Evaluate arguments before dispatch, as a go statement does."""
        args: list[Expr] = []
        for i, arg in enumerate(call.args):
            if _stays_inline(arg):
                args.append(arg)
                continue
            name = self.names.fresh("a")
            if i < len(params) and not call.ellipsis:
                typ = lower_type(params[i], self.env).base
                out.append(VarDecl(name, typ, arg, loc=arg.loc))
            else:
                out.append(Assign([Ident(name)], [arg], ":=", loc=arg.loc))
            args.append(Ident(name, loc=arg.loc))
        return args

    def _task_body(self, names: list[str], call: Call) -> list[Stmt]:
        recovered = self.names.fresh("r")
        fails: list[Stmt] = [
            ExprStmt(Call(Selector(Ident(n), "fail"), [Ident(recovered)]))
            for n in names
            if n != "_"
        ]
        guard = If(
            BinaryOp("!=", Ident(recovered), nil_ident()),
            fails,
            init=Assign([Ident(recovered)], [Call(Ident("recover"), [])], ":="),
        )
        body: list[Stmt] = [DeferStmt(Call(FuncLit([], [], [guard]), []))]
        values: list[Expr] = []
        sends: list[Stmt] = []
        for n in names:
            if n == "_":
                values.append(Ident("_"))
                continue
            v = self.names.fresh("v")
            values.append(Ident(v))
            sends.append(SendStmt(Selector(Ident(n), "ch"), Ident(v)))
        body.append(Assign(values, [call], ":="))
        body.extend(sends)
        return body
