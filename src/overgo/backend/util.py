"""Shared utilities for the Go emitter."""

from __future__ import annotations

from ..diagnostics import LoweringError

# Go reserved words; never valid as identifiers
GO_RESERVED = frozenset(
    {
        "break",
        "case",
        "chan",
        "const",
        "continue",
        "default",
        "defer",
        "else",
        "fallthrough",
        "for",
        "func",
        "go",
        "goto",
        "if",
        "import",
        "interface",
        "map",
        "package",
        "range",
        "return",
        "select",
        "struct",
        "switch",
        "type",
        "var",
    }
)


def escape_string(value: str) -> str:
    """Escape a string for use in a Go interpreted string literal (without quotes)."""
    return _escape(value).replace('"', '\\"')


def escape_rune(value: str) -> str:
    """Escape a single character for use in a Go rune literal (without quotes)."""
    return _escape(value).replace("'", "\\'")


def _escape(value: str) -> str:
    out: list[str] = []
    for ch in value:
        if ch == "\\":
            out.append("\\\\")
        elif ch in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append("\\x" + format(ord(ch), "02x"))
        else:
            out.append(ch)
    return "".join(out)


_SIMPLE_ESCAPES: dict[str, str] = {
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    "\f": "\\f",
    "\v": "\\v",
    "\a": "\\a",
    "\b": "\\b",
}


def check_identifier(name: str) -> str:
    """Names reaching the emitter are used verbatim; reserved words cannot be."""
    if name in GO_RESERVED:
        raise LoweringError("UnsupportedConstruct", "'" + name + "' is a Go reserved word")
    return name
