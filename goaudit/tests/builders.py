"""Fixture builders for hand-written program documents.

Syntax nodes get increasing line numbers unless a test pins one, so every
statement has a distinct span.
"""

from __future__ import annotations

import itertools
from dataclasses import replace

from goaudit.core.config import build_config
from goaudit.engine.symbols import SymbolGraph
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

PKG = "example.com/app/store"
FILE = "store/store.go"

_lines = itertools.count(1000)


def span(line: int | None = None, file: str = FILE, column: int = 1) -> Span:
    return Span(file, next(_lines) if line is None else line, column)


def node(kind: str, *children: Node, role: str = "", line: int | None = None, **attrs) -> Node:
    return Node(kind=kind, span=span(line), role=role, children=tuple(children), **attrs)


def as_role(n: Node, role: str) -> Node:
    return replace(n, role=role)


def ident(name: str, *, type: str = "", ref: str = "", role: str = "", line: int | None = None) -> Node:
    return node("ident", role=role, line=line, name=name, type=type, ref=ref)


def sel(x: Node, name: str, *, type: str = "", ref: str = "", role: str = "") -> Node:
    return node("selector", as_role(x, "x"), role=role, name=name, type=type, ref=ref)


def lit(value: str, *, type: str = "int", role: str = "") -> Node:
    return node("basic_lit", role=role, value=value, type=type)


def call(name: str, *args: Node, fun: Node | None = None, type: str = "", ref: str = "",
         role: str = "", line: int | None = None) -> Node:
    if fun is None:
        fun = ident(name.rpartition(".")[2], ref=ref)
    children = [as_role(fun, "fun"), *(as_role(a, "arg") for a in args)]
    return node("call", *children, role=role, line=line, name=name, type=type, ref=ref)


def method_call(recv: Node, method: str, qualified: str, *args: Node, type: str = "",
                line: int | None = None) -> Node:
    """``recv.method(args)`` where ``qualified`` is the resolved callee."""
    return call(qualified, *args, fun=sel(recv, method), type=type, line=line)


def block(*stmts: Node, role: str = "body") -> Node:
    return node("block", *stmts, role=role)


def expr(x: Node, *, line: int | None = None) -> Node:
    return node("expr_stmt", as_role(x, "x"), line=line)


def assign(lhs, rhs, op: str = "=", *, line: int | None = None) -> Node:
    lhs = lhs if isinstance(lhs, (list, tuple)) else [lhs]
    rhs = rhs if isinstance(rhs, (list, tuple)) else ([] if rhs is None else [rhs])
    children = [as_role(n, "lhs") for n in lhs] + [as_role(n, "rhs") for n in rhs]
    return node("assign", *children, op=op, line=line)


def inc(x: Node, op: str = "++") -> Node:
    return node("inc_dec", as_role(x, "x"), op=op)


def ret(*results: Node, line: int | None = None) -> Node:
    return node("return", *(as_role(r, "result") for r in results), line=line)


def binary(op: str, x: Node, y: Node, *, type: str = "bool") -> Node:
    return node("binary", as_role(x, "x"), as_role(y, "y"), op=op, type=type)


def unary(op: str, x: Node, *, type: str = "") -> Node:
    return node("unary", as_role(x, "x"), op=op, type=type)


def index(x: Node, i: Node, *, type: str = "") -> Node:
    return node("index", as_role(x, "x"), as_role(i, "index"), type=type)


def if_(cond: Node, body: Node, else_: Node | None = None, *, init: Node | None = None,
        line: int | None = None) -> Node:
    children = []
    if init is not None:
        children.append(as_role(init, "init"))
    children += [as_role(cond, "cond"), as_role(body, "body")]
    if else_ is not None:
        children.append(as_role(else_, "else"))
    return node("if", *children, line=line)


def for_(body: Node, *, init: Node | None = None, cond: Node | None = None,
         post: Node | None = None, line: int | None = None) -> Node:
    children = [
        as_role(n, role)
        for n, role in ((init, "init"), (cond, "cond"), (post, "post"))
        if n is not None
    ]
    children.append(as_role(body, "body"))
    return node("for", *children, line=line)


def counting_loop(name: str, bound: Node, body: Node, *, line: int | None = None) -> Node:
    """``for name := 0; name < bound; name++ { body }``."""
    return for_(
        body,
        init=assign(ident(name, type="int"), lit("0"), ":="),
        cond=binary("<", ident(name, type="int"), bound),
        post=inc(ident(name, type="int")),
        line=line,
    )


def range_(x: Node, body: Node, *, key: Node | None = None, value: Node | None = None,
           op: str = ":=", line: int | None = None) -> Node:
    children = []
    if key is not None:
        children.append(as_role(key, "key"))
    if value is not None:
        children.append(as_role(value, "value"))
    children += [as_role(x, "x"), as_role(body, "body")]
    return node("range", *children, op=op, line=line)


def func_lit(body: Node, *params: str) -> Node:
    return node("func_lit", *(ident(p, role="param") for p in params), as_role(body, "body"))


def go(c: Node, *, line: int | None = None) -> Node:
    return node("go", as_role(c, "call"), line=line)


def defer(c: Node, *, line: int | None = None) -> Node:
    return node("defer", as_role(c, "call"), line=line)


def send(ch: Node, value: Node) -> Node:
    return node("send", as_role(ch, "ch"), as_role(value, "value"))


def select(*cases: Node) -> Node:
    return node("select", *(as_role(c, "case") for c in cases))


def case(body: Node, *, comm: Node | None = None, default: bool = False) -> Node:
    children = [as_role(comm, "comm")] if comm is not None else []
    children.append(as_role(body, "body"))
    return node("case", *children, op="default" if default else "")


def branch(op: str = "break") -> Node:
    return node("branch", op=op)


# ── declarations ──────────────────────────────────────────


def field(name: str, type: str, *, tag: str = "", embedded: bool = False,
          doc: str | None = None) -> FieldDecl:
    return FieldDecl(name=name, type=type, span=span(), tag=tag, embedded=embedded, doc=doc)


def struct(name: str, *fields, package: str = PKG, file: str = FILE,
           doc: str | None = None, line: int | None = None) -> Declaration:
    decls = tuple(f if isinstance(f, FieldDecl) else field(*f) for f in fields)
    return Declaration(
        kind="struct", name=name, package=package, span=span(line, file),
        doc=doc, fields=decls,
    )


def interface(name: str, *methods: tuple[str, str], package: str = PKG, file: str = FILE,
              doc: str | None = None, embeds: tuple[str, ...] = ()) -> Declaration:
    return Declaration(
        kind="interface", name=name, package=package, span=span(None, file), doc=doc,
        methods=tuple(MethodSpec(n, sig, span()) for n, sig in methods),
        embeds=embeds,
    )


def func(name: str, *, params: tuple[tuple[str, str], ...] = (), results: tuple[str, ...] = (),
         body: Node | None = None, receiver: str = "", doc: str | None = None,
         package: str = PKG, file: str = FILE, line: int | None = None) -> Declaration:
    return Declaration(
        kind="method" if receiver else "func",
        name=name,
        package=package,
        span=span(line, file),
        doc=doc,
        receiver=receiver,
        params=tuple(Param(n, t) for n, t in params),
        results=tuple(results),
        body=body if body is not None else block(),
    )


def value_decl(kind: str, name: str, type: str = "", *, value: Node | None = None,
               package: str = PKG, doc: str | None = None) -> Declaration:
    return Declaration(kind=kind, name=name, package=package, span=span(), doc=doc,
                       type=type, value=value)


def type_decl(name: str, type: str, *, package: str = PKG, doc: str | None = None) -> Declaration:
    return Declaration(kind="type", name=name, package=package, span=span(), doc=doc, type=type)


def comment(text: str, *, line: int, scope: str = "", is_doc: bool = False,
            file: str = FILE) -> Comment:
    return Comment(span=Span(file, line, 1), text=text, scope=scope, is_doc=is_doc)


def program(*decls: Declaration, comments: tuple[Comment, ...] = (),
            field_heat: dict[str, float] | None = None, go_version: str = "1.22",
            main: tuple[str, ...] = ()) -> Program:
    paths: dict[str, set[str]] = {}
    for decl in decls:
        paths.setdefault(decl.package, set()).add(decl.span.file)
    packages = tuple(
        Package(path=path, name="main" if path in main else path.rsplit("/", 1)[-1], files=tuple(sorted(files)))
        for path, files in paths.items()
    )
    kwargs = {"field_heat": field_heat} if field_heat is not None else {}
    return Program(packages=packages, declarations=decls, comments=comments,
                   go_version=go_version, **kwargs)


def graph(*decls: Declaration, comments: tuple[Comment, ...] = (),
          field_heat: dict[str, float] | None = None, main: tuple[str, ...] = (),
          **config) -> SymbolGraph:
    cfg = build_config(**config)
    return SymbolGraph(
        program(*decls, comments=comments, field_heat=field_heat, main=main),
        platform=cfg.platform,
        entry_points=cfg.entry_points,
    )


def rule_ids(result) -> list[str]:
    return [f.rule_id for f in result.findings]
