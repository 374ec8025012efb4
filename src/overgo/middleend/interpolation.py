"""Interpolation expansion: InterpolatedString -> fmt.Sprintf(template, args...)."""

from __future__ import annotations

import logging
import re

from ..diagnostics import LoweringError
from ..ir import (
    ConstDecl,
    Embed,
    Expr,
    FunctionDecl,
    InterpolatedString,
    Program,
    pkg_call,
    string_lit,
)
from .walk import any_expr, map_stmt_exprs

logger = logging.getLogger(__name__)

# flags, width, precision, one verb letter
_VERB_RE = re.compile(r"^[-+# 0]*(\d+|\*)?(\.(\d+|\*)?)?[vTtbcdoOqxXUeEfFgGsp]$")

DEFAULT_VERB = "v"


def check_verb(verb: str, embed: Embed) -> str:
    if not _VERB_RE.match(verb):
        if verb == "":
            msg = "empty format verb in interpolated string"
        else:
            msg = "unknown format verb '" + verb + "' in interpolated string"
        raise LoweringError("MalformedInterpolation", msg, embed.loc)
    return verb


def expand(s: InterpolatedString) -> Expr:
    """Build the fmt.Sprintf call for one interpolated string.

    Embedded expressions must already be expanded (callers go bottom-up).
    """
    template: list[str] = []
    args: list[Expr] = []
    for seg in s.segments:
        if isinstance(seg, Embed):
            verb = DEFAULT_VERB if seg.verb is None else check_verb(seg.verb, seg)
            template.append("%" + verb)
            args.append(seg.expr)
        else:
            template.append(seg.replace("%", "%%"))
    call = pkg_call("fmt", "Sprintf", [string_lit("".join(template))] + args)
    call.loc = s.loc
    return call


def expand_interpolations(program: Program) -> None:
    count = 0

    def visit(e: Expr) -> Expr:
        nonlocal count
        if isinstance(e, InterpolatedString):
            count += 1
            return expand(e)
        return e

    for decl in program.decls:
        if isinstance(decl, FunctionDecl):
            map_stmt_exprs(decl.body, visit)
        elif isinstance(decl, ConstDecl):
            for spec in decl.specs:
                if spec.value is not None and any_expr(
                    spec.value, lambda e: isinstance(e, InterpolatedString)
                ):
                    raise LoweringError(
                        "UnsupportedConstruct",
                        "interpolated string in constant '" + spec.name + "'",
                        spec.value.loc,
                    )
    logger.debug("expanded %d interpolated strings", count)
