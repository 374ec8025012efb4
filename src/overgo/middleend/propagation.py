"""Error propagation: throw/try -> explicit (values..., error) returns.

Runs after type lowering. Result-wrapped return types are still marked on
FunctionDecl.ret (and single-result FuncLits) so this pass knows which
functions own an error slot; it replaces them with Go result lists.

Lowering of try:

    x := f(try g(a), h())

becomes

    _try0, _err0 := g(a)
    if _err0 != nil {
        return <zeros>, _err0
    }
    x := f(_try0, h())

Calls and receives evaluated before the try in Go order are spilled into
hidden _vN temporaries first so that each runs exactly once and in order.
"""

from __future__ import annotations

import logging

from ..diagnostics import LoweringError
from ..ir import (
    Assign,
    BasicLit,
    BinaryOp,
    Block,
    Break,
    Call,
    Continue,
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
    IncDec,
    Loc,
    Named,
    Program,
    Result,
    Return,
    Selector,
    SendStmt,
    Stmt,
    Throw,
    Tuple,
    TryExpr,
    TypeExpr,
    UnaryOp,
    VarDecl,
    nil_ident,
    pkg_call,
)
from .signatures import Signature, SignatureTable, callee_key
from .types import TypeEnv, lower_return, value_slots, zero_value
from .walk import (
    NameSupply,
    contains_try,
    expr_children,
    function_names,
    has_effects,
    map_expr,
    set_expr_children,
    stmt_exprs,
)

logger = logging.getLogger(__name__)

# statements Go accepts in an if/for header
_SIMPLE_STMTS = (Assign, IncDec, ExprStmt, SendStmt)


def lower_propagation(
    program: Program, sigs: SignatureTable, env: TypeEnv, program_level: set[str], prefix: str = "_"
) -> None:
    for decl in program.decls:
        if not isinstance(decl, FunctionDecl):
            continue
        names = NameSupply(function_names(decl, program_level), prefix)
        rw = _Rewriter(sigs, env, names, decl.ret, decl.name)
        if decl.receiver is not None:
            rw.locals[decl.receiver.name] = decl.receiver.typ
        for p in decl.params:
            rw.locals[p.name] = p.typ
        decl.body = rw.lower_block(decl.body)
        decl.ret = _go_results(decl.ret, env)
        if rw.tries or rw.throws:
            logger.debug(
                "%s: lowered %d try and %d throw", decl.name, rw.tries, rw.throws
            )


def _is_string_type(typ: TypeExpr | None) -> bool:
    return isinstance(typ, Named) and typ.name == "string"


def _go_results(ret: TypeExpr | None, env: TypeEnv) -> TypeExpr | None:
    """Result-wrapped return type -> single Go result or Tuple."""
    if not isinstance(ret, Result):
        return ret
    slots = lower_return(ret, env)
    if len(slots) == 1:
        return slots[0]
    return Tuple(slots, loc=ret.loc)


def as_error(expr: Expr, string_valued: bool = False) -> Expr:
    """The error value a throw returns.

    | Thrown                    | Go                   |
    |---------------------------|----------------------|
    | fmt.Sprintf(...)          | fmt.Errorf(...)      |
    | "msg", other string value | errors.New(value)    |
    | anything else             | unchanged            |
    """
    if isinstance(expr, Call) and callee_key(expr.func) == "fmt.Sprintf":
        expr.func = Selector(Ident("fmt"), "Errorf", loc=expr.func.loc)
        return expr
    if string_valued or (isinstance(expr, BasicLit) and expr.kind == "string"):
        call = pkg_call("errors", "New", [expr])
        call.loc = expr.loc
        return call
    return expr


class _Rewriter:
    """Lowers one function (or closure) body."""

    def __init__(
        self,
        sigs: SignatureTable,
        env: TypeEnv,
        names: NameSupply,
        ret: TypeExpr | None,
        where: str,
    ) -> None:
        self.sigs = sigs
        self.env = env
        self.names = names
        self.where = where
        self.result_fn = isinstance(ret, Result)
        self.slots: list[TypeExpr] = value_slots(ret, env) if self.result_fn else []
        self.arity = len(lower_return(ret, env))
        self.tries = 0
        self.throws = 0
        # declared types of names in scope, where known
        self.locals: dict[str, TypeExpr] = {}

    # ── helpers ───────────────────────────────────────────────

    def _zeros(self) -> list[Expr]:
        return [zero_value(t, self.env) for t in self.slots]

    def _result_sig(self, expr: Expr) -> Signature | None:
        sig = self.sigs.lookup_call(expr, self.locals)
        if sig is not None and sig.is_result:
            return sig
        return None

    def _is_string(self, expr: Expr) -> bool:
        """Whether expr is known to be string-valued."""
        if isinstance(expr, BasicLit):
            return expr.kind == "string"
        if isinstance(expr, Ident):
            typ = self.locals.get(expr.name)
            return typ is not None and _is_string_type(self.env.underlying(typ))
        if isinstance(expr, BinaryOp) and expr.op == "+":
            return self._is_string(expr.left) or self._is_string(expr.right)
        if isinstance(expr, Call):
            sig = self.sigs.lookup_call(expr, self.locals)
            return sig is not None and _is_string_type(sig.ret)
        return False

    def _call_arity(self, sig: Signature) -> int:
        return len(lower_return(sig.ret, self.env))

    def _try_arity(self, t: TryExpr) -> int:
        """Number of values a try yields once its error slot is stripped."""
        if not self.result_fn:
            raise LoweringError(
                "ThrowWithoutResultType",
                "try used in '" + self.where + "' whose return type is not a Result",
                t.loc,
            )
        if not isinstance(t.inner, Call):
            raise LoweringError("InvalidTypeUsage", "try requires a call expression", t.loc)
        sig = self.sigs.lookup_call(t.inner, self.locals)
        if sig is None:
            return 1
        if not sig.is_result:
            raise LoweringError(
                "InvalidTypeUsage",
                "try applied to '" + sig.name + "' which does not return a Result",
                t.loc,
            )
        return len(value_slots(sig.ret, self.env))

    def _emit_try(self, call: Call, count: int, pre: list[Stmt], loc: Loc) -> list[Expr]:
        values, err = self.names.fresh_try(count)
        lhs: list[Expr] = [Ident(v) for v in values]
        lhs.append(Ident(err))
        pre.append(Assign(lhs, [call], ":=", loc=loc))
        check = BinaryOp("!=", Ident(err), nil_ident())
        pre.append(If(check, [Return(self._zeros() + [Ident(err)], loc=loc)], loc=loc))
        self.tries += 1
        return [Ident(v) for v in values]

    def _emit_try_discarding(self, call: Call, count: int, pre: list[Stmt], loc: Loc) -> None:
        _, err = self.names.fresh_try(0)
        lhs: list[Expr] = [Ident("_") for _ in range(count)]
        lhs.append(Ident(err))
        pre.append(Assign(lhs, [call], ":=", loc=loc))
        check = BinaryOp("!=", Ident(err), nil_ident())
        pre.append(If(check, [Return(self._zeros() + [Ident(err)], loc=loc)], loc=loc))
        self.tries += 1

    def _spill(self, expr: Expr, pre: list[Stmt]) -> Expr:
        name = self.names.fresh("v")
        pre.append(Assign([Ident(name)], [expr], ":=", loc=expr.loc))
        return Ident(name, loc=expr.loc)

    # ── discarded results ─────────────────────────────────────

    def _discarded(self, sig: Signature, loc: Loc) -> LoweringError:
        return LoweringError(
            "DiscardedResult",
            "result of '" + sig.name + "' is neither propagated with try nor fully captured",
            loc,
        )

    def _check_discards(self, expr: Expr, allowed: Expr | None = None) -> None:
        """Reject multi-value Result calls nested where one value is expected."""
        if isinstance(expr, TryExpr):
            for c in expr_children(expr.inner):
                self._check_discards(c)
            return
        if isinstance(expr, Call) and expr is not allowed:
            sig = self._result_sig(expr)
            if sig is not None and self._call_arity(sig) > 1:
                raise self._discarded(sig, expr.loc)
        for c in expr_children(expr):
            self._check_discards(c)

    # ── expressions ───────────────────────────────────────────

    def _hoist(self, expr: Expr, pre: list[Stmt]) -> Expr:
        """Move every try in expr into pre; return the rewritten expression."""
        if not contains_try(expr):
            return expr
        if isinstance(expr, TryExpr):
            count = self._try_arity(expr)
            if count != 1:
                raise LoweringError(
                    "InvalidTypeUsage",
                    "try yielding " + str(count) + " values used where one value is expected",
                    expr.loc,
                )
            call = expr.inner
            set_expr_children(call, self._hoist_list(expr_children(call), pre))
            return self._emit_try(call, 1, pre, expr.loc)[0]  # type: ignore[arg-type]
        if isinstance(expr, BinaryOp) and expr.op in ("&&", "||") and contains_try(expr.right):
            return self._hoist_short_circuit(expr, pre)
        set_expr_children(expr, self._hoist_list(expr_children(expr), pre))
        return expr

    def _hoist_list(self, exprs: list[Expr], pre: list[Stmt]) -> list[Expr]:
        """Hoist a sequence evaluated left to right."""
        last = -1
        for i, e in enumerate(exprs):
            if contains_try(e):
                last = i
        if last < 0:
            return list(exprs)
        out: list[Expr] = []
        for i, e in enumerate(exprs):
            if i < last:
                e = self._hoist(e, pre)
                if has_effects(e):
                    e = self._spill(e, pre)
            elif i == last:
                e = self._hoist(e, pre)
            out.append(e)
        return out

    def _hoist_short_circuit(self, expr: BinaryOp, pre: list[Stmt]) -> Expr:
        """a && try f() -> _v := a; if _v { ...; _v = _try }."""
        left = self._hoist(expr.left, pre)
        name = self.names.fresh("v")
        pre.append(Assign([Ident(name)], [left], ":=", loc=expr.loc))
        inner: list[Stmt] = []
        right = self._hoist(expr.right, inner)
        inner.append(Assign([Ident(name)], [right], "=", loc=expr.loc))
        cond: Expr = Ident(name)
        if expr.op == "||":
            cond = UnaryOp("!", Ident(name))
        pre.append(If(cond, inner, loc=expr.loc))
        return Ident(name, loc=expr.loc)

    def _hoist_targets(self, targets: list[Expr], pre: list[Stmt]) -> list[Expr]:
        """Targets are never spilled themselves, only their operands."""
        parts: list[Expr] = []
        for t in targets:
            if not isinstance(t, Ident):
                parts.extend(expr_children(t))
        parts = self._hoist_list(parts, pre)
        i = 0
        for t in targets:
            if isinstance(t, Ident):
                continue
            n = len(expr_children(t))
            set_expr_children(t, parts[i : i + n])
            i += n
        return targets

    def _lower_closures(self, expr: Expr) -> None:
        def visit(e: Expr) -> Expr:
            if isinstance(e, FuncLit):
                ret = e.results[0] if len(e.results) == 1 else None
                rw = _Rewriter(self.sigs, self.env, self.names, ret, self.where + " closure")
                rw.locals = dict(self.locals)
                for p in e.params:
                    rw.locals[p.name] = p.typ
                e.body = rw.lower_block(e.body)
                if isinstance(ret, Result):
                    e.results = lower_return(ret, self.env)
                self.tries += rw.tries
                self.throws += rw.throws
            return e

        map_expr(expr, visit)

    # ── statements ────────────────────────────────────────────

    def lower_block(self, stmts: list[Stmt]) -> list[Stmt]:
        outer = self.locals
        self.locals = dict(outer)
        out: list[Stmt] = []
        for stmt in stmts:
            out.extend(self._lower_stmt(stmt))
            self._declare(stmt)
        self.locals = outer
        return out

    def _declare(self, stmt: Stmt) -> None:
        if isinstance(stmt, VarDecl):
            if stmt.typ is not None:
                self.locals[stmt.name] = stmt.typ
            else:
                self.locals.pop(stmt.name, None)
        elif isinstance(stmt, Assign) and stmt.op == ":=":
            for t in stmt.targets:
                if isinstance(t, Ident):
                    self.locals.pop(t.name, None)

    def _lower_stmt(self, stmt: Stmt) -> list[Stmt]:
        for e in stmt_exprs(stmt):
            self._lower_closures(e)
        if isinstance(stmt, ExprStmt):
            return self._lower_expr_stmt(stmt)
        if isinstance(stmt, Assign):
            return self._lower_assign(stmt)
        if isinstance(stmt, VarDecl):
            pre: list[Stmt] = []
            if stmt.value is not None:
                self._check_discards(stmt.value)
                stmt.value = self._hoist(stmt.value, pre)
            return pre + [stmt]
        if isinstance(stmt, Return):
            return self._lower_return(stmt)
        if isinstance(stmt, Throw):
            return self._lower_throw(stmt)
        if isinstance(stmt, If):
            return self._lower_if(stmt)
        if isinstance(stmt, For):
            return self._lower_for(stmt)
        if isinstance(stmt, ForRange):
            pre = []
            self._check_discards(stmt.iterable)
            stmt.iterable = self._hoist(stmt.iterable, pre)
            stmt.body = self.lower_block(stmt.body)
            return pre + [stmt]
        if isinstance(stmt, Block):
            stmt.body = self.lower_block(stmt.body)
            return [stmt]
        if isinstance(stmt, IncDec):
            pre = []
            self._check_discards(stmt.target)
            stmt.target = self._hoist_targets([stmt.target], pre)[0]
            return pre + [stmt]
        if isinstance(stmt, SendStmt):
            pre = []
            self._check_discards(stmt.channel)
            self._check_discards(stmt.value)
            stmt.channel, stmt.value = self._hoist_list([stmt.channel, stmt.value], pre)
            return pre + [stmt]
        if isinstance(stmt, (GoStmt, DeferStmt)):
            return self._lower_dispatch(stmt)
        if isinstance(stmt, GoBinding):
            pre = []
            self._check_discards(stmt.call, allowed=stmt.call)
            if isinstance(stmt.call, Call):
                set_expr_children(stmt.call, self._hoist_list(expr_children(stmt.call), pre))
            return pre + [stmt]
        if isinstance(stmt, (Break, Continue)):
            return [stmt]
        raise LoweringError(
            "UnsupportedConstruct", "no rule for statement " + type(stmt).__name__, stmt.loc
        )

    def _lower_expr_stmt(self, stmt: ExprStmt) -> list[Stmt]:
        pre: list[Stmt] = []
        expr = stmt.expr
        if isinstance(expr, TryExpr):
            count = self._try_arity(expr)
            call = expr.inner
            set_expr_children(call, self._hoist_list(expr_children(call), pre))
            self._emit_try_discarding(call, count, pre, stmt.loc)  # type: ignore[arg-type]
            return pre
        sig = self._result_sig(expr)
        if sig is not None:
            raise self._discarded(sig, stmt.loc)
        self._check_discards(expr)
        stmt.expr = self._hoist(expr, pre)
        return pre + [stmt]

    def _lower_assign(self, stmt: Assign) -> list[Stmt]:
        pre: list[Stmt] = []
        allowed: Expr | None = None
        if len(stmt.values) == 1:
            value = stmt.values[0]
            sig = self._result_sig(value)
            if sig is not None:
                if len(stmt.targets) < self._call_arity(sig):
                    raise self._discarded(sig, stmt.loc)
                allowed = value
            if isinstance(value, TryExpr):
                count = self._try_arity(value)
                if count != 1 or len(stmt.targets) != 1:
                    if count != len(stmt.targets):
                        raise LoweringError(
                            "InvalidTypeUsage",
                            "assignment of "
                            + str(count)
                            + " values to "
                            + str(len(stmt.targets))
                            + " targets",
                            stmt.loc,
                        )
                    for t in stmt.targets:
                        self._check_discards(t)
                    self._check_discards(value)
                    self._hoist_targets(stmt.targets, pre)
                    call = value.inner
                    set_expr_children(call, self._hoist_list(expr_children(call), pre))
                    stmt.values = self._emit_try(call, count, pre, stmt.loc)  # type: ignore[arg-type]
                    return pre + [stmt]
        for e in stmt.targets + stmt.values:
            self._check_discards(e, allowed)
        if not any(contains_try(e) for e in stmt.targets + stmt.values):
            return [stmt]
        parts: list[Expr] = []
        for t in stmt.targets:
            if not isinstance(t, Ident):
                parts.extend(expr_children(t))
        n = len(parts)
        parts = self._hoist_list(parts + stmt.values, pre)
        i = 0
        for t in stmt.targets:
            if isinstance(t, Ident):
                continue
            k = len(expr_children(t))
            set_expr_children(t, parts[i : i + k])
            i += k
        stmt.values = parts[n:]
        return pre + [stmt]

    def _lower_return(self, stmt: Return) -> list[Stmt]:
        pre: list[Stmt] = []
        if len(stmt.values) == 1:
            value = stmt.values[0]
            sig = self._result_sig(value)
            if sig is not None and self._call_arity(sig) == self.arity and self.arity > 1:
                # return f() forwarding every slot of a Result callee
                self._check_discards(value, allowed=value)
                set_expr_children(value, self._hoist_list(expr_children(value), pre))
                return pre + [stmt]
            if isinstance(value, TryExpr) and self.result_fn:
                count = self._try_arity(value)
                if count != 1 and count == len(self.slots):
                    self._check_discards(value)
                    call = value.inner
                    set_expr_children(call, self._hoist_list(expr_children(call), pre))
                    values = self._emit_try(call, count, pre, stmt.loc)  # type: ignore[arg-type]
                    return pre + [Return(values + [nil_ident()], loc=stmt.loc)]
        for e in stmt.values:
            self._check_discards(e)
        stmt.values = self._hoist_list(stmt.values, pre)
        if self.result_fn and len(stmt.values) == len(self.slots):
            stmt.values.append(nil_ident())
        return pre + [stmt]

    def _lower_throw(self, stmt: Throw) -> list[Stmt]:
        if not self.result_fn:
            raise LoweringError(
                "ThrowWithoutResultType",
                "throw in '" + self.where + "' whose return type is not a Result",
                stmt.loc,
            )
        pre: list[Stmt] = []
        self._check_discards(stmt.expr)
        value = self._hoist(stmt.expr, pre)
        err = as_error(value, self._is_string(value))
        self.throws += 1
        return pre + [Return(self._zeros() + [err], loc=stmt.loc)]

    def _lower_if(self, stmt: If) -> list[Stmt]:
        init: list[Stmt] = []
        if stmt.init is not None:
            init = self._lower_stmt(stmt.init)
        pre: list[Stmt] = []
        self._check_discards(stmt.cond)
        stmt.cond = self._hoist(stmt.cond, pre)
        stmt.then_body = self.lower_block(stmt.then_body)
        stmt.else_body = self.lower_block(stmt.else_body)
        if not pre and len(init) <= 1:
            stmt.init = init[0] if init else None
            return [stmt]
        stmt.init = None
        if init:
            return [Block(init + pre + [stmt], loc=stmt.loc)]
        return pre + [stmt]

    def _lower_for(self, stmt: For) -> list[Stmt]:
        init: list[Stmt] = []
        if stmt.init is not None:
            init = self._lower_stmt(stmt.init)
        if stmt.post is not None:
            if any(contains_try(e) for e in stmt_exprs(stmt.post)):
                raise LoweringError(
                    "UnsupportedConstruct", "try in a for loop post statement", stmt.post.loc
                )
            post = self._lower_stmt(stmt.post)
            stmt.post = post[0]
        head: list[Stmt] = []
        if stmt.cond is not None:
            self._check_discards(stmt.cond)
            if contains_try(stmt.cond):
                cond = self._hoist(stmt.cond, head)
                head.append(If(UnaryOp("!", cond), [Break()], loc=stmt.cond.loc))
                stmt.cond = None
        stmt.body = head + self.lower_block(stmt.body)
        if len(init) <= 1:
            stmt.init = init[0] if init else None
            return [stmt]
        if isinstance(init[-1], _SIMPLE_STMTS):
            stmt.init = init[-1]
            return [Block(init[:-1] + [stmt], loc=stmt.loc)]
        stmt.init = None
        return [Block(init + [stmt], loc=stmt.loc)]

    def _lower_dispatch(self, stmt: GoStmt | DeferStmt) -> list[Stmt]:
        sig = self._result_sig(stmt.call)
        if sig is not None:
            raise self._discarded(sig, stmt.loc)
        pre: list[Stmt] = []
        self._check_discards(stmt.call, allowed=stmt.call)
        if isinstance(stmt.call, Call):
            set_expr_children(stmt.call, self._hoist_list(expr_children(stmt.call), pre))
        else:
            raise LoweringError(
                "UnsupportedConstruct", "go/defer requires a call expression", stmt.loc
            )
        return pre + [stmt]
