"""Lowering configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

from .middleend.signatures import Signature


@dataclass
class LowerOptions:
    """Knobs for one lowering run.

    - package: overrides Program.package in the emitted file
    - extern_signatures: signatures of functions defined outside the program
      unit, keyed by callee spelling ("Fetch" or "pkg.Fetch")
    - emit_helpers: emit runtime helper types (_SyncState, _Option) inline;
      disable when the caller links a shared helper file into the package
    - hidden_prefix: prefix of compiler-introduced local names
    """

    package: str | None = None
    extern_signatures: dict[str, Signature] = field(default_factory=dict)
    emit_helpers: bool = True
    hidden_prefix: str = "_"
