"""Signature collection: declared parameter and return types of callees."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from ..ir import (
    Call,
    Expr,
    FunctionDecl,
    Ident,
    Loc,
    Named,
    Pointer,
    Program,
    Result,
    Selector,
    TypeExpr,
    loc_unknown,
)

logger = logging.getLogger(__name__)


@dataclass
class Signature:
    """Source-level signature of a callable.

    ret keeps the source spelling (possibly Result-wrapped); lowered result
    slots are derived by middleend.types.lower_return.
    """

    name: str
    params: list[TypeExpr] = field(default_factory=list)
    ret: TypeExpr | None = None
    loc: Loc = field(default_factory=loc_unknown, compare=False)

    @property
    def is_result(self) -> bool:
        return isinstance(self.ret, Result)


class SignatureTable:
    """Callee lookup by spelling.

    "Fetch" for program functions, "pkg.Fetch" for externs, "Recv.Name" for
    methods. A method call x.Name() resolves through x's declared type when
    the caller knows it, else by name when every method so named agrees.
    """

    def __init__(self) -> None:
        self.functions: dict[str, Signature] = {}
        self.methods: dict[str, Signature] = {}  # "Recv.Name"
        self.packages: set[str] = {"fmt", "errors"}

    def add(self, sig: Signature) -> None:
        self.functions[sig.name] = sig

    def add_method(self, recv: str, sig: Signature) -> None:
        self.methods[recv + "." + sig.name] = sig

    def lookup(
        self, callee: Expr, local_types: Mapping[str, TypeExpr] | None = None
    ) -> Signature | None:
        """Resolve a call's callee; None when it cannot be known."""
        if isinstance(callee, Ident):
            return self.functions.get(callee.name)
        if not isinstance(callee, Selector):
            return None
        if isinstance(callee.obj, Ident):
            sig = self.functions.get(callee.obj.name + "." + callee.name)
            if sig is not None:
                return sig
            if callee.obj.name in self.packages:
                return None
            if local_types is not None and callee.obj.name in local_types:
                recv = receiver_type_name(local_types[callee.obj.name])
                if recv is not None:
                    return self.methods.get(recv + "." + callee.name)
        return self._method_by_name(callee.name)

    def _method_by_name(self, name: str) -> Signature | None:
        found: Signature | None = None
        for key, sig in self.methods.items():
            if key.rsplit(".", 1)[1] != name:
                continue
            if found is not None and found != sig:
                return None
            found = sig
        return found

    def lookup_call(
        self, expr: Expr, local_types: Mapping[str, TypeExpr] | None = None
    ) -> Signature | None:
        if not isinstance(expr, Call):
            return None
        return self.lookup(expr.func, local_types)


def callee_key(callee: Expr) -> str | None:
    if isinstance(callee, Ident):
        return callee.name
    if isinstance(callee, Selector) and isinstance(callee.obj, Ident):
        return callee.obj.name + "." + callee.name
    return None


def receiver_type_name(typ: TypeExpr | None) -> str | None:
    """Named type a method set hangs off: T for both T and *T."""
    if isinstance(typ, Pointer):
        typ = typ.inner
    if isinstance(typ, Named):
        return typ.name
    return None


def signature_of(decl: FunctionDecl) -> Signature:
    return Signature(
        name=decl.name,
        params=[p.typ for p in decl.params],
        ret=decl.ret,
        loc=decl.loc,
    )


def collect_signatures(
    program: Program, externs: dict[str, Signature] | None = None
) -> SignatureTable:
    """Collect signatures of top-level functions, methods and caller-supplied externs.

    Program functions shadow externs with the same spelling. The qualifier
    of every import path and extern key names a package, never a receiver.
    """
    table = SignatureTable()
    for path in program.imports:
        table.packages.add(path.rsplit("/", 1)[-1])
    if externs is not None:
        for key, sig in externs.items():
            table.functions[key] = sig
            if "." in key:
                table.packages.add(key.split(".", 1)[0])
    for decl in program.decls:
        if not isinstance(decl, FunctionDecl):
            continue
        sig = signature_of(decl)
        if decl.receiver is not None:
            table.add_method(receiver_type_name(decl.receiver.typ) or "?", sig)
        else:
            table.add(sig)
    logger.debug(
        "collected %d function and %d method signatures",
        len(table.functions),
        len(table.methods),
    )
    return table
