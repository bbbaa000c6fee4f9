"""Immutable records for a parsed and type-resolved Go program.

These are produced by an external front end (see ``loader.load_program``) and
are never mutated by the engine.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


@dataclass(frozen=True, order=True)
class Span:
    file: str
    line: int
    column: int = 1
    end_line: int = 0
    end_column: int = 0

    def key(self) -> tuple[str, int, int]:
        return (self.file, self.line, self.column)

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True)
class Node:
    """One syntax node.

    ``role`` is the field name this node fills in its parent (``cond``,
    ``body``, ``x``...). ``type`` is the resolved Go type of an expression and
    ``ref`` the handle of the declaration an identifier or selector resolves to.
    """

    kind: str
    span: Span
    role: str = ""
    name: str = ""
    op: str = ""
    value: str = ""
    type: str = ""
    ref: str = ""
    children: tuple[Node, ...] = ()

    def field(self, role: str) -> Node | None:
        for child in self.children:
            if child.role == role:
                return child
        return None

    def fields(self, role: str) -> tuple[Node, ...]:
        return tuple(child for child in self.children if child.role == role)

    def walk(self) -> Iterator[Node]:
        """Pre-order traversal including self."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    @property
    def statements(self) -> tuple[Node, ...]:
        """Statements of a block node (children in order)."""
        return self.children if self.kind == "block" else (self,)


@dataclass(frozen=True)
class Param:
    name: str
    type: str


@dataclass(frozen=True)
class FieldDecl:
    name: str
    type: str
    span: Span
    tag: str = ""
    embedded: bool = False
    doc: str | None = None


@dataclass(frozen=True)
class MethodSpec:
    name: str
    signature: str
    span: Span
    doc: str | None = None


@dataclass(frozen=True)
class Declaration:
    kind: str
    name: str
    package: str
    span: Span
    doc: str | None = None
    type: str = ""
    fields: tuple[FieldDecl, ...] = ()
    methods: tuple[MethodSpec, ...] = ()
    embeds: tuple[str, ...] = ()
    receiver: str = ""
    params: tuple[Param, ...] = ()
    results: tuple[str, ...] = ()
    body: Node | None = None
    value: Node | None = None

    @property
    def is_test(self) -> bool:
        return self.span.file.endswith("_test.go")

    @property
    def receiver_name(self) -> str:
        # Type parameters are not part of the name: *List[K, V] -> List.
        return self.receiver.lstrip("*").partition("[")[0].strip()

    @property
    def pointer_receiver(self) -> bool:
        return self.receiver.startswith("*")

    @property
    def handle(self) -> str:
        if self.receiver:
            return f"{self.package}.{self.receiver_name}.{self.name}"
        return f"{self.package}.{self.name}"

    def signature(self) -> str:
        """Go func type of a func/method declaration (receiver excluded)."""
        params = ", ".join(p.type for p in self.params)
        if not self.results:
            return f"func({params})"
        if len(self.results) == 1:
            return f"func({params}) {self.results[0]}"
        return f"func({params}) ({', '.join(self.results)})"


@dataclass(frozen=True)
class Comment:
    span: Span
    text: str
    scope: str = ""
    is_doc: bool = False


@dataclass(frozen=True)
class Package:
    path: str
    name: str
    files: tuple[str, ...] = ()

    @property
    def is_main(self) -> bool:
        return self.name == "main"


@dataclass(frozen=True)
class Program:
    packages: tuple[Package, ...]
    declarations: tuple[Declaration, ...]
    comments: tuple[Comment, ...] = ()
    go_version: str = ""
    field_heat: Mapping[str, float] = field(
        default_factory=lambda: MappingProxyType({})
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
]
