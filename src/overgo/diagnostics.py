"""Lowering diagnostics: structured errors surfaced to the caller."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .ir import Loc, loc_unknown

DiagnosticKind = Literal[
    "InvalidTypeUsage",
    "DiscardedResult",
    "ThrowWithoutResultType",
    "UnsupportedConstruct",
    "MalformedInterpolation",
]
"""Every construct the lowering engine rejects.

| Kind                   | Raised when                                             |
|------------------------|---------------------------------------------------------|
| InvalidTypeUsage       | Result in a value position, nil into a *T!, bad try use |
| DiscardedResult        | Result call neither propagated nor fully captured       |
| ThrowWithoutResultType | throw/try in a function without a Result return type    |
| UnsupportedConstruct   | node with no lowering rule (enum associated values, ...) |
| MalformedInterpolation | empty or unknown verb in an interpolated string         |
"""


@dataclass
class Diagnostic:
    """A rejected construct: kind, source location, message."""

    kind: DiagnosticKind
    loc: Loc
    message: str

    def __str__(self) -> str:
        return (
            self.kind
            + ": "
            + self.message
            + " at line "
            + str(self.loc.line)
            + " col "
            + str(self.loc.col)
        )


class LoweringError(Exception):
    """Lowering halted for the current program unit."""

    def __init__(self, kind: DiagnosticKind, message: str, loc: Loc | None = None):
        if loc is None:
            loc = loc_unknown()
        self.diagnostic: Diagnostic = Diagnostic(kind, loc, message)
        super().__init__(str(self.diagnostic))

    @property
    def kind(self) -> DiagnosticKind:
        return self.diagnostic.kind

    @property
    def loc(self) -> Loc:
        return self.diagnostic.loc

    @property
    def message(self) -> str:
        return self.diagnostic.message
