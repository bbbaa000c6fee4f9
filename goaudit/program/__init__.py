"""Input boundary: the parsed and type-resolved program the engine consumes."""

from goaudit.program.loader import load_program
from goaudit.program.model import (
    Comment,
    Declaration,
    FieldDecl,
    MethodSpec,
    Node,
    Package,
    Param,
    Program,
    Span,
)

__all__ = [
    "Comment",
    "Declaration",
    "FieldDecl",
    "MethodSpec",
    "Node",
    "Package",
    "Param",
    "Program",
    "Span",
    "load_program",
]
