"""overgo: lowering engine from a Go superset to plain Go.

    from overgo import lower_program
    go_source = lower_program(program)

Pipeline: signatures -> types -> interpolation -> propagation -> concurrency
-> Go backend. The input Program is never modified.
"""

from __future__ import annotations

import copy
import logging
from typing import Callable

from .backend.go import emit_go
from .diagnostics import Diagnostic, DiagnosticKind, LoweringError
from .ir import Program
from .middleend import lower
from .middleend.signatures import Signature
from .options import LowerOptions

__all__ = [
    "Diagnostic",
    "DiagnosticKind",
    "LowerOptions",
    "LoweringError",
    "Signature",
    "lower_program",
    "transpile",
]

logger = logging.getLogger(__name__)


def lower_program(program: Program, options: LowerOptions | None = None) -> str:
    """Lower program and render it as Go source.

    Raises LoweringError at the first rejected construct.
    """
    if options is None:
        options = LowerOptions()
    work = copy.deepcopy(program)
    lower(work, options)
    return emit_go(work, options.package, options.emit_helpers)


def transpile(
    program: Program,
    report: Callable[[Diagnostic], None] | None = None,
    options: LowerOptions | None = None,
) -> str | None:
    """Like lower_program, but hand diagnostics to report and return None."""
    try:
        return lower_program(program, options)
    except LoweringError as e:
        logger.debug("lowering of package %s failed: %s", program.package, e)
        if report is not None:
            report(e.diagnostic)
        return None
