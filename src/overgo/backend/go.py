"""GoBackend: lowered IR -> Go source.

Pure syntax emission - no analysis. Every extended construct must have been
lowered by the middleend; meeting one here raises UnsupportedConstruct.

Output is gofmt-shaped: tab indentation, one blank line between top-level
declarations, an import block listing user imports plus the standard
packages lowering introduced (fmt, errors, sync), and only the runtime
helpers the body references.
"""

from __future__ import annotations

from ..diagnostics import LoweringError
from ..ir import (
    Array,
    Assign,
    BasicLit,
    BinaryOp,
    Block,
    Break,
    Call,
    Channel,
    CompositeLit,
    ConstDecl,
    ConstSpec,
    Continue,
    Decl,
    DeferStmt,
    Expr,
    ExprStmt,
    For,
    ForRange,
    FuncLit,
    FunctionDecl,
    FuncType,
    Generic,
    GoStmt,
    Ident,
    If,
    IncDec,
    Index,
    KeyValue,
    Map,
    Named,
    Param,
    Pointer,
    Program,
    Return,
    Selector,
    SendStmt,
    Stmt,
    StructType,
    Tuple,
    TypeDecl,
    TypeExpr,
    TypeRef,
    UnaryOp,
    VarDecl,
)
from .util import check_identifier, escape_rune, escape_string

# Go operator precedence (higher number = tighter binding).
# From go.dev/ref/spec#Operator_precedence
_PRECEDENCE: dict[str, int] = {
    "||": 1,
    "&&": 2,
    "==": 3,
    "!=": 3,
    "<": 3,
    "<=": 3,
    ">": 3,
    ">=": 3,
    "+": 4,
    "-": 4,
    "|": 4,
    "^": 4,
    "*": 5,
    "/": 5,
    "%": 5,
    "<<": 5,
    ">>": 5,
    "&": 5,
    "&^": 5,
}


def _prec(op: str) -> int:
    return _PRECEDENCE.get(op, 6)


def _is_comparison(op: str) -> bool:
    return op in ("==", "!=", "<", "<=", ">", ">=")


# Standard packages the lowering passes may reference without a user import
AUTO_IMPORTS = frozenset({"fmt", "errors"})

_SYNC_STATE_SOURCE = """type _SyncState[T any] struct {
	once   sync.Once
	ch     chan T
	value  T
	failed any
}

func _newSyncState[T any]() *_SyncState[T] {
	return &_SyncState[T]{ch: make(chan T, 1)}
}

// Get blocks until the value arrives, then returns it on every call.
func (s *_SyncState[T]) Get() T {
	s.once.Do(func() {
		if v, ok := <-s.ch; ok {
			s.value = v
		}
	})
	if s.failed != nil {
		panic(s.failed)
	}
	return s.value
}

func (s *_SyncState[T]) fail(r any) {
	s.failed = r
	close(s.ch)
}"""

_OPTION_SOURCE = """type _Option[T any] struct {
	Value T
	Valid bool
}"""


class GoBackend:
    """Emit Go code from a lowered Program."""

    # (helper name, Go source, packages the source needs)
    _HELPERS: list[tuple[str, str, tuple[str, ...]]] = [
        ("_Option", _OPTION_SOURCE, ()),
        ("_SyncState", _SYNC_STATE_SOURCE, ("sync",)),
    ]

    def __init__(self, emit_helpers: bool = True) -> None:
        self.output: list[str] = []
        self.indent = 0
        self.emit_helpers = emit_helpers
        self._packages: set[str] = set()  # auto-imported packages referenced
        self._helpers: set[str] = set()  # runtime helpers referenced
        self._in_header = False  # inside an if/for/switch header

    def emit(self, program: Program, package: str | None = None) -> str:
        """Emit Go source for program."""
        self.output = []
        self.indent = 0
        self._packages = set()
        self._helpers = set()
        # Two-pass: emit body first, then the header with only needed imports/helpers
        chunks: list[str] = []
        for decl in program.decls:
            self.output = []
            self._emit_decl(decl)
            chunks.append("\n".join(self.output))
        self.output = []
        self._emit_header(program, package or program.package)
        parts = ["\n".join(self.output)]
        parts.extend(chunks)
        return "\n\n".join(p for p in parts if p) + "\n"

    def _emit_header(self, program: Program, package: str) -> None:
        """Emit package clause, imports, and referenced helpers."""
        self._line("package " + check_identifier(package))
        imports: list[str] = list(dict.fromkeys(program.imports))
        helpers = [h for h in self._HELPERS if h[0] in self._helpers] if self.emit_helpers else []
        needed = set(self._packages)
        for _, _, pkgs in helpers:
            needed.update(pkgs)
        for pkg in sorted(needed):
            if pkg not in imports:
                imports.append(pkg)
        imports.sort()
        if len(imports) == 1:
            self._line("")
            self._line('import "' + escape_string(imports[0]) + '"')
        elif imports:
            self._line("")
            self._line("import (")
            self.indent += 1
            for imp in imports:
                self._line('"' + escape_string(imp) + '"')
            self.indent -= 1
            self._line(")")
        for _, source, _ in helpers:
            self._line("")
            for line in source.split("\n"):
                self._line(line)

    # ============================================================
    # DECLARATIONS
    # ============================================================

    def _emit_decl(self, decl: Decl) -> None:
        if isinstance(decl, FunctionDecl):
            self._emit_function(decl)
        elif isinstance(decl, TypeDecl):
            self._emit_type_decl(decl)
        elif isinstance(decl, ConstDecl):
            self._emit_const_decl(decl)
        else:
            raise LoweringError(
                "UnsupportedConstruct",
                "cannot emit unlowered declaration " + type(decl).__name__,
                decl.loc,
            )

    def _emit_function(self, func: FunctionDecl) -> None:
        params = self._params_to_go(func.params)
        ret = self._results_to_go(func.ret)
        name = check_identifier(func.name)
        if func.receiver is not None:
            recv = self._param_to_go(func.receiver)
            header = "func (" + recv + ") " + name + "(" + params + ")"
        else:
            header = "func " + name + "(" + params + ")"
        if ret:
            header += " " + ret
        self._line(header + " {")
        self.indent += 1
        for stmt in func.body:
            self._emit_stmt(stmt)
        self.indent -= 1
        self._line("}")

    def _emit_type_decl(self, decl: TypeDecl) -> None:
        name = check_identifier(decl.name)
        if isinstance(decl.typ, StructType) and decl.typ.fields:
            self._line("type " + name + " struct {")
            self.indent += 1
            for f in decl.typ.fields:
                self._line(check_identifier(f.name) + " " + self._type_to_go(f.typ))
            self.indent -= 1
            self._line("}")
            return
        self._line("type " + name + " " + self._type_to_go(decl.typ))

    def _emit_const_decl(self, decl: ConstDecl) -> None:
        if len(decl.specs) == 1:
            self._line("const " + self._const_spec(decl.specs[0]))
            return
        self._line("const (")
        self.indent += 1
        for spec in decl.specs:
            self._line(self._const_spec(spec))
        self.indent -= 1
        self._line(")")

    def _const_spec(self, spec: ConstSpec) -> str:
        text = check_identifier(spec.name)
        if spec.typ is not None:
            text += " " + self._type_to_go(spec.typ)
        if spec.value is not None:
            text += " = " + self._emit_expr(spec.value)
        return text

    def _param_to_go(self, p: Param) -> str:
        return check_identifier(p.name) + " " + self._type_to_go(p.typ)

    def _params_to_go(self, params: list[Param]) -> str:
        return ", ".join(self._param_to_go(p) for p in params)

    def _results_to_go(self, ret: TypeExpr | None) -> str:
        if ret is None:
            return ""
        if isinstance(ret, Tuple):
            return self._result_list_to_go(ret.elements)
        return self._type_to_go(ret)

    def _result_list_to_go(self, results: list[TypeExpr]) -> str:
        if not results:
            return ""
        if len(results) == 1:
            return self._type_to_go(results[0])
        return "(" + ", ".join(self._type_to_go(r) for r in results) + ")"

    # ============================================================
    # STATEMENT EMISSION
    # ============================================================

    def _emit_stmt(self, stmt: Stmt) -> None:
        """Emit a statement."""
        if isinstance(stmt, (Assign, IncDec, ExprStmt, SendStmt)):
            self._line(self._emit_simple_stmt(stmt))
        elif isinstance(stmt, VarDecl):
            self._emit_stmt_VarDecl(stmt)
        elif isinstance(stmt, Return):
            self._emit_stmt_Return(stmt)
        elif isinstance(stmt, If):
            self._emit_stmt_If(stmt)
        elif isinstance(stmt, For):
            self._emit_stmt_For(stmt)
        elif isinstance(stmt, ForRange):
            self._emit_stmt_ForRange(stmt)
        elif isinstance(stmt, Block):
            self._emit_stmt_Block(stmt)
        elif isinstance(stmt, Break):
            self._line("break " + stmt.label if stmt.label else "break")
        elif isinstance(stmt, Continue):
            self._line("continue " + stmt.label if stmt.label else "continue")
        elif isinstance(stmt, GoStmt):
            self._line("go " + self._emit_expr(stmt.call))
        elif isinstance(stmt, DeferStmt):
            self._line("defer " + self._emit_expr(stmt.call))
        else:
            raise LoweringError(
                "UnsupportedConstruct",
                "cannot emit unlowered statement " + type(stmt).__name__,
                stmt.loc,
            )

    def _emit_simple_stmt(self, stmt: Stmt) -> str:
        """Statements legal in if/for headers."""
        if isinstance(stmt, Assign):
            targets = ", ".join(self._emit_expr(t) for t in stmt.targets)
            values = ", ".join(self._emit_expr(v) for v in stmt.values)
            return targets + " " + stmt.op + " " + values
        if isinstance(stmt, IncDec):
            return self._emit_expr(stmt.target) + stmt.op
        if isinstance(stmt, ExprStmt):
            return self._emit_expr(stmt.expr)
        if isinstance(stmt, SendStmt):
            return self._emit_expr(stmt.channel) + " <- " + self._emit_expr(stmt.value)
        if isinstance(stmt, VarDecl) and stmt.typ is None and stmt.value is not None:
            return check_identifier(stmt.name) + " := " + self._emit_expr(stmt.value)
        raise LoweringError(
            "UnsupportedConstruct",
            type(stmt).__name__ + " is not allowed in a statement header",
            stmt.loc,
        )

    def _emit_stmt_VarDecl(self, stmt: VarDecl) -> None:
        text = "var " + check_identifier(stmt.name)
        if stmt.typ is not None:
            text += " " + self._type_to_go(stmt.typ)
        if stmt.value is not None:
            text += " = " + self._emit_expr(stmt.value)
        self._line(text)

    def _emit_stmt_Return(self, stmt: Return) -> None:
        if not stmt.values:
            self._line("return")
            return
        self._line("return " + ", ".join(self._emit_expr(v) for v in stmt.values))

    def _header(self, stmt: Stmt | None) -> str:
        if stmt is None:
            return ""
        saved = self._in_header
        self._in_header = True
        try:
            return self._emit_simple_stmt(stmt)
        finally:
            self._in_header = saved

    def _header_expr(self, expr: Expr) -> str:
        saved = self._in_header
        self._in_header = True
        try:
            return self._emit_expr(expr)
        finally:
            self._in_header = saved

    def _if_header(self, stmt: If) -> str:
        cond = self._header_expr(stmt.cond)
        if stmt.init is not None:
            return "if " + self._header(stmt.init) + "; " + cond + " {"
        return "if " + cond + " {"

    def _emit_stmt_If(self, stmt: If) -> None:
        self._line(self._if_header(stmt))
        self._emit_if_rest(stmt)

    def _emit_if_rest(self, stmt: If) -> None:
        self.indent += 1
        for s in stmt.then_body:
            self._emit_stmt(s)
        self.indent -= 1
        if stmt.else_body:
            # Single If in else body renders as an else-if chain
            if len(stmt.else_body) == 1 and isinstance(stmt.else_body[0], If):
                nested = stmt.else_body[0]
                self._line("} else " + self._if_header(nested))
                self._emit_if_rest(nested)
                return
            self._line("} else {")
            self.indent += 1
            for s in stmt.else_body:
                self._emit_stmt(s)
            self.indent -= 1
        self._line("}")

    def _emit_stmt_For(self, stmt: For) -> None:
        if stmt.init is None and stmt.post is None:
            if stmt.cond is None:
                self._line("for {")
            else:
                self._line("for " + self._header_expr(stmt.cond) + " {")
        else:
            init = self._header(stmt.init)
            cond = self._header_expr(stmt.cond) if stmt.cond is not None else ""
            post = self._header(stmt.post)
            self._line("for " + init + "; " + cond + "; " + post + " {")
        self._emit_body(stmt.body)

    def _emit_stmt_ForRange(self, stmt: ForRange) -> None:
        iterable = self._header_expr(stmt.iterable)
        op = ":=" if stmt.define else "="
        if stmt.key is None and stmt.value is None:
            self._line("for range " + iterable + " {")
        else:
            key = self._emit_expr(stmt.key) if stmt.key is not None else "_"
            if stmt.value is not None:
                key += ", " + self._emit_expr(stmt.value)
            self._line("for " + key + " " + op + " range " + iterable + " {")
        self._emit_body(stmt.body)

    def _emit_stmt_Block(self, stmt: Block) -> None:
        self._line("{")
        self._emit_body(stmt.body)

    def _emit_body(self, body: list[Stmt]) -> None:
        """Emit body statements and the closing brace."""
        self.indent += 1
        for s in body:
            self._emit_stmt(s)
        self.indent -= 1
        self._line("}")

    # ============================================================
    # EXPRESSION EMISSION
    # ============================================================

    def _maybe_paren(self, expr: Expr, parent_op: str, is_left: bool) -> str:
        """Emit expr, adding parens if its precedence requires it."""
        s = self._emit_expr(expr)
        if isinstance(expr, BinaryOp):
            # Go doesn't allow chained comparisons
            if _is_comparison(parent_op) and _is_comparison(expr.op):
                return "(" + s + ")"
            child_prec = _prec(expr.op)
            parent_prec = _prec(parent_op)
            if not is_left:
                if child_prec <= parent_prec:
                    return "(" + s + ")"
            else:
                if child_prec < parent_prec:
                    return "(" + s + ")"
        return s

    def _operand(self, expr: Expr) -> str:
        """Emit expr as the primary operand of a call, selector or index."""
        s = self._emit_expr(expr)
        if isinstance(expr, (BinaryOp, UnaryOp)):
            return "(" + s + ")"
        return s

    def _emit_expr(self, expr: Expr) -> str:
        """Emit an expression and return Go code string."""
        if isinstance(expr, BasicLit):
            return self._emit_expr_BasicLit(expr)
        if isinstance(expr, Ident):
            return self._emit_expr_Ident(expr)
        if isinstance(expr, Call):
            return self._emit_expr_Call(expr)
        if isinstance(expr, Selector):
            return self._emit_expr_Selector(expr)
        if isinstance(expr, Index):
            return self._operand(expr.obj) + "[" + self._emit_expr(expr.index) + "]"
        if isinstance(expr, BinaryOp):
            left = self._maybe_paren(expr.left, expr.op, is_left=True)
            right = self._maybe_paren(expr.right, expr.op, is_left=False)
            return left + " " + expr.op + " " + right
        if isinstance(expr, UnaryOp):
            return self._emit_expr_UnaryOp(expr)
        if isinstance(expr, KeyValue):
            return self._emit_expr(expr.key) + ": " + self._emit_expr(expr.value)
        if isinstance(expr, CompositeLit):
            return self._emit_expr_CompositeLit(expr)
        if isinstance(expr, TypeRef):
            return self._type_to_go(expr.typ)
        if isinstance(expr, FuncLit):
            return self._emit_expr_FuncLit(expr)
        raise LoweringError(
            "UnsupportedConstruct",
            "cannot emit unlowered expression " + type(expr).__name__,
            expr.loc,
        )

    def _emit_expr_BasicLit(self, expr: BasicLit) -> str:
        if expr.kind == "string":
            return '"' + escape_string(expr.value) + '"'
        if expr.kind == "rune":
            return "'" + escape_rune(expr.value) + "'"
        return expr.value

    def _emit_expr_Ident(self, expr: Ident) -> str:
        if expr.name == "_newSyncState":
            self._helpers.add("_SyncState")
        return check_identifier(expr.name)

    def _emit_expr_Call(self, expr: Call) -> str:
        args = ", ".join(self._emit_expr(a) for a in expr.args)
        if expr.ellipsis:
            args += "..."
        return self._operand(expr.func) + "(" + args + ")"

    def _emit_expr_Selector(self, expr: Selector) -> str:
        if isinstance(expr.obj, Ident) and expr.obj.name in AUTO_IMPORTS:
            self._packages.add(expr.obj.name)
        return self._operand(expr.obj) + "." + check_identifier(expr.name)

    def _emit_expr_UnaryOp(self, expr: UnaryOp) -> str:
        operand = self._emit_expr(expr.operand)
        if isinstance(expr.operand, BinaryOp):
            operand = "(" + operand + ")"
        elif isinstance(expr.operand, UnaryOp) and expr.operand.op[0] == expr.op[-1]:
            # - -x and & &x would lex as -- and &&
            operand = "(" + operand + ")"
        return expr.op + operand

    def _emit_expr_CompositeLit(self, expr: CompositeLit) -> str:
        elems = ", ".join(self._emit_expr(e) for e in expr.elements)
        s = self._type_to_go(expr.typ) + "{" + elems + "}"
        if self._in_header and isinstance(expr.typ, (Named, Generic)):
            # T{} in an if/for header parses as the block
            return "(" + s + ")"
        return s

    def _emit_expr_FuncLit(self, expr: FuncLit) -> str:
        header = "func(" + self._params_to_go(expr.params) + ")"
        results = self._result_list_to_go(expr.results)
        if results:
            header += " " + results
        if not expr.body:
            return header + " {}"
        saved_output, saved_header = self.output, self._in_header
        self.output = []
        self._in_header = False
        self.indent += 1
        for s in expr.body:
            self._emit_stmt(s)
        self.indent -= 1
        lines = self.output
        self.output, self._in_header = saved_output, saved_header
        return header + " {\n" + "\n".join(lines) + "\n" + "\t" * self.indent + "}"

    # ============================================================
    # TYPES
    # ============================================================

    def _type_to_go(self, typ: TypeExpr) -> str:
        """Convert a lowered type to Go type syntax."""
        if isinstance(typ, Named):
            return typ.name
        if isinstance(typ, Array):
            return "[]" + self._type_to_go(typ.element)
        if isinstance(typ, Map):
            return "map[" + self._type_to_go(typ.key) + "]" + self._type_to_go(typ.value)
        if isinstance(typ, Pointer):
            return "*" + self._type_to_go(typ.inner)
        if isinstance(typ, Channel):
            inner = self._type_to_go(typ.inner)
            if typ.direction == "send":
                return "chan<- " + inner
            if typ.direction == "recv":
                return "<-chan " + inner
            if isinstance(typ.inner, Channel) and typ.inner.direction == "recv":
                # chan <-chan T would parse as chan<- (chan T)
                return "chan (" + inner + ")"
            return "chan " + inner
        if isinstance(typ, Generic):
            if typ.name == "_Option":
                self._helpers.add("_Option")
            return typ.name + "[" + ", ".join(self._type_to_go(a) for a in typ.args) + "]"
        if isinstance(typ, StructType):
            if not typ.fields:
                return "struct{}"
            fields = "; ".join(
                check_identifier(f.name) + " " + self._type_to_go(f.typ) for f in typ.fields
            )
            return "struct{ " + fields + " }"
        if isinstance(typ, FuncType):
            params = ", ".join(self._type_to_go(p) for p in typ.params)
            results = self._result_list_to_go(typ.results)
            if results:
                return "func(" + params + ") " + results
            return "func(" + params + ")"
        raise LoweringError(
            "UnsupportedConstruct",
            "cannot emit unlowered type " + type(typ).__name__,
            typ.loc,
        )

    # ============================================================
    # OUTPUT HELPERS
    # ============================================================

    def _line(self, text: str) -> None:
        """Emit a line with current indentation."""
        if text:
            self.output.append("\t" * self.indent + text)
        else:
            self.output.append("")


def emit_go(program: Program, package: str | None = None, emit_helpers: bool = True) -> str:
    """Render a fully lowered program as Go source."""
    return GoBackend(emit_helpers=emit_helpers).emit(program, package)
