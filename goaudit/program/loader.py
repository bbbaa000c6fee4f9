"""Load the front end's program document (JSON) into immutable records."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from goaudit.core.errors import ProgramLoadError
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

logger = logging.getLogger(__name__)

DECLARATION_KINDS = frozenset(
    {"struct", "interface", "type", "func", "method", "const", "var"}
)
_NODE_STRING_KEYS = ("role", "name", "op", "value", "type", "ref")


def _require(raw: Mapping, key: str, where: str) -> Any:
    if key not in raw:
        raise ProgramLoadError(f"{where}: missing required key {key!r}")
    return raw[key]


def _span(raw: Mapping, file: str, where: str) -> Span:
    try:
        return Span(
            file=str(raw.get("file", file)),
            line=int(_require(raw, "line", where)),
            column=int(raw.get("column", 1)),
            end_line=int(raw.get("end_line", 0)),
            end_column=int(raw.get("end_column", 0)),
        )
    except (TypeError, ValueError) as exc:
        raise ProgramLoadError(f"{where}: invalid position: {exc}") from exc


def node_from_dict(raw: Mapping, file: str) -> Node:
    """Build a Node tree; children inherit ``file`` unless they set their own."""
    if not isinstance(raw, Mapping):
        raise ProgramLoadError(f"{file}: node must be an object, got {type(raw).__name__}")
    kind = str(_require(raw, "kind", f"{file}: node"))
    span = _span(raw, file, f"{file}: {kind} node")
    children = tuple(node_from_dict(child, span.file) for child in raw.get("children", ()))
    extra = {key: str(raw.get(key, "")) for key in _NODE_STRING_KEYS}
    return Node(kind=kind, span=span, children=children, **extra)


def _field(raw: Mapping, file: str, where: str) -> FieldDecl:
    return FieldDecl(
        name=str(_require(raw, "name", where)),
        type=str(_require(raw, "type", where)),
        span=_span(raw, file, where),
        tag=str(raw.get("tag", "")),
        embedded=bool(raw.get("embedded", False)),
        doc=raw.get("doc"),
    )


def _method(raw: Mapping, file: str, where: str) -> MethodSpec:
    return MethodSpec(
        name=str(_require(raw, "name", where)),
        signature=str(_require(raw, "signature", where)),
        span=_span(raw, file, where),
        doc=raw.get("doc"),
    )


def declaration_from_dict(raw: Mapping, package: str, file: str) -> Declaration:
    where = f"{file}: declaration {raw.get('name', '?')!r}"
    kind = str(_require(raw, "kind", where))
    if kind not in DECLARATION_KINDS:
        raise ProgramLoadError(
            f"{where}: unknown kind {kind!r} (expected: {', '.join(sorted(DECLARATION_KINDS))})"
        )
    body = raw.get("body")
    value = raw.get("value")
    return Declaration(
        kind=kind,
        name=str(_require(raw, "name", where)),
        package=package,
        span=_span(raw, file, where),
        doc=raw.get("doc"),
        type=str(raw.get("type", "")),
        fields=tuple(_field(f, file, f"{where} field") for f in raw.get("fields", ())),
        methods=tuple(_method(m, file, f"{where} method") for m in raw.get("methods", ())),
        embeds=tuple(str(e) for e in raw.get("embeds", ())),
        receiver=str(raw.get("receiver", "")),
        params=tuple(
            Param(name=str(p.get("name", "")), type=str(_require(p, "type", f"{where} param")))
            for p in raw.get("params", ())
        ),
        results=tuple(str(r) for r in raw.get("results", ())),
        body=node_from_dict(body, file) if body is not None else None,
        value=node_from_dict(value, file) if value is not None else None,
    )


def _comment(raw: Mapping, file: str) -> Comment:
    where = f"{file}: comment"
    return Comment(
        span=_span(raw, file, where),
        text=str(_require(raw, "text", where)),
        scope=str(raw.get("scope", "")),
        is_doc=bool(raw.get("doc", False)),
    )


def program_from_dict(raw: Mapping) -> Program:
    """Convert a decoded program document into a Program."""
    if not isinstance(raw, Mapping):
        raise ProgramLoadError("program document must be a JSON object")
    packages: list[Package] = []
    declarations: list[Declaration] = []
    comments: list[Comment] = []
    for pkg_raw in _require(raw, "packages", "program"):
        path = str(_require(pkg_raw, "path", "package"))
        files = pkg_raw.get("files", ())
        file_paths: list[str] = []
        for file_raw in files:
            file = str(_require(file_raw, "path", f"package {path} file"))
            file_paths.append(file)
            declarations.extend(
                declaration_from_dict(d, path, file) for d in file_raw.get("declarations", ())
            )
            comments.extend(_comment(c, file) for c in file_raw.get("comments", ()))
        packages.append(
            Package(path=path, name=str(pkg_raw.get("name", path.rsplit("/", 1)[-1])),
                    files=tuple(file_paths))
        )

    heat_raw = raw.get("field_heat", {}) or {}
    if not isinstance(heat_raw, Mapping):
        raise ProgramLoadError("field_heat must be an object of handle -> count")
    try:
        heat = {str(k): float(v) for k, v in heat_raw.items()}
    except (TypeError, ValueError) as exc:
        raise ProgramLoadError(f"field_heat: {exc}") from exc

    logger.debug(
        "Loaded program: %d packages, %d declarations, %d comments",
        len(packages), len(declarations), len(comments),
    )
    return Program(
        packages=tuple(packages),
        declarations=tuple(declarations),
        comments=tuple(comments),
        go_version=str(raw.get("go_version", "")),
        field_heat=MappingProxyType(heat),
    )


def load_program(source: str | Path | Mapping) -> Program:
    """Load a program document from a path or an already-decoded mapping."""
    if isinstance(source, Mapping):
        return program_from_dict(source)
    path = Path(source)
    try:
        raw = json.loads(path.read_text())
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProgramLoadError(f"cannot read program document {path}: {exc}") from exc
    return program_from_dict(raw)


__all__ = [
    "DECLARATION_KINDS",
    "declaration_from_dict",
    "load_program",
    "node_from_dict",
    "program_from_dict",
]
