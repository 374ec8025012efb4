"""Middleend: lowering passes from the extended AST to base-Go AST."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..ir import Program
from .concurrency import lower_concurrency
from .interpolation import expand_interpolations
from .propagation import lower_propagation
from .signatures import collect_signatures
from .types import TypeEnv, lower_types
from .walk import program_names

if TYPE_CHECKING:
    from ..options import LowerOptions

logger = logging.getLogger(__name__)


def lower(program: Program, options: LowerOptions | None = None) -> None:
    """Run every lowering pass over program, in place.

    Raises LoweringError at the first rejected construct.
    """
    externs = options.extern_signatures if options is not None else None
    prefix = options.hidden_prefix if options is not None else "_"
    sigs = collect_signatures(program, externs)
    env = TypeEnv.from_program(program)
    lower_types(program, sigs, env)
    expand_interpolations(program)
    names = program_names(program)
    lower_propagation(program, sigs, env, names, prefix)
    lower_concurrency(program, sigs, env, names, prefix)
    logger.debug("lowered package %s", program.package)
