"""Serialization of IR objects to and from JSON-compatible dicts.

Every node becomes {"_type": "<ClassName>", <field>: <value>, ...}; lists
stay lists, strings, numbers, booleans and None pass through. This is the
interchange format with parsers living outside this package.
"""

from __future__ import annotations

import dataclasses

from . import ir
from .diagnostics import LoweringError

_NODE_TYPES: dict[str, type] = {
    name: obj
    for name, obj in vars(ir).items()
    if isinstance(obj, type) and dataclasses.is_dataclass(obj) and obj.__module__ == ir.__name__
}

# Abstract bases are never serialized on their own
for _base in ("TypeExpr", "Expr", "Stmt", "Decl"):
    del _NODE_TYPES[_base]


def serialize(obj: object) -> object:
    """Serialize an IR object (or plain value) to a JSON-compatible value."""
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, (list, tuple)):
        return [serialize(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): serialize(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and type(obj).__name__ in _NODE_TYPES:
        out: dict[str, object] = {"_type": type(obj).__name__}
        for f in dataclasses.fields(obj):
            out[f.name] = serialize(getattr(obj, f.name))
        return out
    raise LoweringError("UnsupportedConstruct", "cannot serialize " + type(obj).__name__)


def deserialize(data: object) -> object:
    """Rebuild IR objects from the output of serialize."""
    if data is None or isinstance(data, (bool, int, float, str)):
        return data
    if isinstance(data, list):
        return [deserialize(x) for x in data]
    if isinstance(data, dict):
        if "_type" not in data:
            return {k: deserialize(v) for k, v in data.items()}
        name = data["_type"]
        cls = _NODE_TYPES.get(name) if isinstance(name, str) else None
        if cls is None:
            raise LoweringError("UnsupportedConstruct", "unknown node type " + repr(name))
        kwargs = {}
        for f in dataclasses.fields(cls):
            if f.name in data:
                kwargs[f.name] = deserialize(data[f.name])
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise LoweringError("UnsupportedConstruct", "malformed " + name + " node: " + str(e))
    raise LoweringError("UnsupportedConstruct", "cannot deserialize " + type(data).__name__)


def to_dict(program: ir.Program) -> dict[str, object]:
    if not isinstance(program, ir.Program):
        raise LoweringError(
            "UnsupportedConstruct", "expected a Program, got " + type(program).__name__
        )
    return serialize(program)  # type: ignore[return-value]


def from_dict(data: dict[str, object]) -> ir.Program:
    program = deserialize(data)
    if not isinstance(program, ir.Program):
        raise LoweringError("UnsupportedConstruct", "expected a Program, got " + repr(data.get("_type")))
    return program
