"""Small structural helpers over syntax Nodes shared by the analyzers.

Node conventions of the front end that these helpers rely on:

- ``call`` nodes carry the resolved callee in ``name`` as go/types prints it
  (``fmt.Sprintf``, ``sync/atomic.AddInt64``, ``sync.WaitGroup.Done``, or a
  builtin such as ``append``) and its callee expression in the ``fun`` child;
  arguments are ``arg`` children.
- ``assign`` nodes carry the token in ``op`` (``=``, ``:=``, ``+=``, ``var``)
  with ``lhs``/``rhs`` children; ``inc_dec`` has ``op`` ``++``/``--``.
- ``for`` has ``init``/``cond``/``post``/``body``; ``range`` has
  ``key``/``value``/``x``/``body``; ``if`` has ``init``/``cond``/``body``/``else``.
- ``selector`` has ``x`` and ``name``; ``index`` has ``x`` and ``index``;
  ``unary`` has ``op`` and ``x`` (``<-`` is a receive); ``send`` has
  ``ch`` and ``value``; ``func_lit`` has ``param`` idents and ``body``.
- ``go`` and ``defer`` wrap their ``call``; ``return`` holds ``result``
  expressions.
"""

from __future__ import annotations

from collections.abc import Iterator

from goaudit.engine.sizes import STD_PACKAGE_ALIASES
from goaudit.program.model import Node

LOOP_KINDS = frozenset({"for", "range"})
LOCK_METHODS = frozenset({"Lock", "RLock"})
UNLOCK_METHODS = frozenset({"Unlock", "RUnlock"})
MUTEX_METHOD_PREFIXES = ("sync.Mutex.", "sync.RWMutex.")

# Calls that run their func-literal argument on a new goroutine.
GO_LAUNCHERS = frozenset(
    {
        "sync.WaitGroup.Go",
        "golang.org/x/sync/errgroup.Group.Go",
    }
)


def canonical_callee(name: str) -> str:
    """Expand a short std package prefix (``atomic.AddInt64``)."""
    if not name or "/" in name:
        return name
    head, dot, rest = name.partition(".")
    if dot and head in STD_PACKAGE_ALIASES:
        return f"{STD_PACKAGE_ALIASES[head]}.{rest}"
    return name


def call_name(node: Node | None) -> str:
    if node is None or node.kind != "call":
        return ""
    return canonical_callee(node.name or node.ref)


def method_name(node: Node) -> str:
    """Last path element of a call's callee (``Done`` for ``wg.Done()``)."""
    return call_name(node).rpartition(".")[2]


def call_args(node: Node) -> tuple[Node, ...]:
    return node.fields("arg")


def receiver(node: Node) -> Node | None:
    """Receiver expression of a method call (``wg`` in ``wg.Done()``)."""
    fun = node.field("fun")
    if fun is not None and fun.kind == "selector":
        return fun.field("x")
    return None


def unparen(node: Node | None) -> Node | None:
    while node is not None and node.kind == "paren":
        node = node.field("x")
    return node


def expr_key(node: Node | None) -> str:
    """Stable textual key of a simple expression (``c.mu``, ``results``)."""
    node = unparen(node)
    if node is None:
        return ""
    if node.kind == "ident":
        return node.name
    if node.kind == "selector":
        base = expr_key(node.field("x"))
        return f"{base}.{node.name}" if base else node.name
    if node.kind in {"star", "unary"} and node.op in {"", "*", "&"}:
        return expr_key(node.field("x"))
    if node.kind == "index":
        return f"{expr_key(node.field('x'))}[{expr_key(node.field('index'))}]"
    if node.kind == "basic_lit":
        return node.value
    return ""


def root_ident(node: Node | None) -> Node | None:
    """Leftmost identifier of a selector/index chain."""
    node = unparen(node)
    while node is not None and node.kind in {"selector", "index", "star", "slice_expr"}:
        node = unparen(node.field("x"))
    if node is not None and node.kind == "unary" and node.op == "&":
        return root_ident(node.field("x"))
    return node if node is not None and node.kind == "ident" else None


def is_mutex_call(node: Node, methods: frozenset[str]) -> bool:
    name = call_name(node)
    return name.startswith(MUTEX_METHOD_PREFIXES) and name.rpartition(".")[2] in methods


def loop_variables(loop: Node) -> tuple[str, ...]:
    """Names a for/range header declares (``i`` in ``for i := 0; ...``)."""
    names: list[str] = []
    if loop.kind == "range" and loop.op == ":=":
        for role in ("key", "value"):
            node = loop.field(role)
            if node is not None and node.kind == "ident" and node.name != "_":
                names.append(node.name)
    elif loop.kind == "for":
        init = loop.field("init")
        if init is not None:
            names.extend(declared_names(init))
    return tuple(names)


def is_infinite_loop(node: Node) -> bool:
    return node.kind == "for" and node.field("cond") is None


def declared_names(node: Node) -> Iterator[str]:
    """Names a statement declares (``:=``, ``var``, range key/value)."""
    if node.kind == "assign" and node.op in {":=", "var"}:
        for lhs in node.fields("lhs"):
            if lhs.kind == "ident" and lhs.name != "_":
                yield lhs.name
    elif node.kind == "range" and node.op == ":=":
        for role in ("key", "value"):
            target = node.field(role)
            if target is not None and target.kind == "ident" and target.name != "_":
                yield target.name


def local_names(func: Node) -> frozenset[str]:
    """Parameters and locals declared inside a func literal or body."""
    names: set[str] = set()
    for param in func.fields("param"):
        if param.name:
            names.add(param.name)
    body = func.field("body") if func.kind == "func_lit" else func
    if body is not None:
        for node in body.walk():
            names.update(declared_names(node))
    return frozenset(names)


def walk_skip_closures(node: Node) -> Iterator[Node]:
    """Pre-order walk that does not descend into func literals."""
    stack = list(reversed(node.children))
    yield node
    while stack:
        current = stack.pop()
        yield current
        if current.kind != "func_lit":
            stack.extend(reversed(current.children))


def assigned_targets(node: Node) -> Iterator[Node]:
    """Expressions a statement writes to."""
    if node.kind == "assign":
        yield from node.fields("lhs")
    elif node.kind == "inc_dec":
        target = node.field("x")
        if target is not None:
            yield target
    elif node.kind == "range" and node.op == "=":
        for role in ("key", "value"):
            target = node.field(role)
            if target is not None:
                yield target


__all__ = [
    "GO_LAUNCHERS",
    "LOCK_METHODS",
    "LOOP_KINDS",
    "UNLOCK_METHODS",
    "assigned_targets",
    "call_args",
    "call_name",
    "canonical_callee",
    "declared_names",
    "expr_key",
    "is_infinite_loop",
    "is_mutex_call",
    "local_names",
    "loop_variables",
    "method_name",
    "receiver",
    "root_ident",
    "unparen",
    "walk_skip_closures",
]
