"""Field and captured-variable access sites, shared by concurrency and layout.

Every function body is walked once in sequential context and every execution
unit body once in goroutine context. A ``mu.Lock()`` statement opens a guarded
region that lasts until the matching ``mu.Unlock()`` in the same block, or to
the end of the function when the release is deferred.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from goaudit.core.enums import AccessContext, SymbolKind
from goaudit.engine.sizes import is_atomic_type, is_mutex_type
from goaudit.engine.symbols import ExecutionUnit, Symbol, SymbolGraph
from goaudit.engine.syntax import (
    LOCK_METHODS,
    UNLOCK_METHODS,
    assigned_targets,
    call_args,
    call_name,
    declared_names,
    expr_key,
    is_mutex_call,
    local_names,
    method_name,
    receiver,
    root_ident,
    unparen,
)
from goaudit.program.model import Node, Span
from goaudit.program.types import TypeSyntaxError, parse_type

logger = logging.getLogger(__name__)

ATOMIC_READ_OPS = frozenset({"Load"})
HANDLER_PARAM_TYPES = frozenset({"net/http.ResponseWriter", "http.ResponseWriter"})


@dataclass(frozen=True)
class AccessSite:
    """One read or write of a struct field or captured variable.

    ``target`` is a field handle, or ``<function>#<name>`` for a local of the
    launching function captured by a goroutine closure.
    """

    target: str
    span: Span
    write: bool
    context: AccessContext
    function: str
    unit: str = ""
    guard: str = ""
    region: str = ""
    loop_depth: int = 0
    is_field: bool = True


@dataclass
class AccessIndex:
    sites: list[AccessSite] = field(default_factory=list)
    units: dict[str, ExecutionUnit] = field(default_factory=dict)
    # Mutex handle -> region ids, in discovery order.
    regions: dict[str, list[str]] = field(default_factory=lambda: defaultdict(list))

    def for_target(self, target: str) -> list[AccessSite]:
        return [s for s in self.sites if s.target == target]

    def writers(self, target: str) -> set[str]:
        """Execution contexts writing ``target``: unit ids or ``seq:<function>``."""
        return {
            site.unit or f"seq:{site.function}"
            for site in self.sites
            if site.target == target and site.write
        }

    def is_multi_unit(self, writer: str) -> bool:
        unit = self.units.get(writer)
        return unit is not None and unit.in_loop


@dataclass
class _Scope:
    function: str
    package: str
    unit: ExecutionUnit | None = None
    locals: frozenset[str] = frozenset()
    exclusive_keys: frozenset[str] = frozenset()
    base_depth: int = 0


def is_handler(symbol: Symbol) -> bool:
    """HTTP handlers run once per request: treat their body as a loop."""
    if symbol.name == "ServeHTTP":
        return True
    return any(p.type.lstrip("*") in HANDLER_PARAM_TYPES for p in symbol.params)


class AccessCollector:
    def __init__(self, graph: SymbolGraph, *, per_iteration_loop_vars: bool = True) -> None:
        self.graph = graph
        self.per_iteration_loop_vars = per_iteration_loop_vars
        self.index = AccessIndex()
        self._unit_closures = {
            id(unit.closure) for unit in graph.execution_units() if unit.closure is not None
        }

    def collect(self) -> AccessIndex:
        for symbol in self.graph.callables():
            scope = _Scope(
                function=symbol.handle,
                package=symbol.package,
                base_depth=1 if is_handler(symbol) else 0,
            )
            self._visit(symbol.body, scope, {}, scope.base_depth, frozenset())
        for unit in self.graph.execution_units():
            if unit.body is None:
                continue
            self.index.units[unit.id] = unit
            launcher = self.graph.get(unit.function)
            package = launcher.package if launcher is not None else ""
            self._visit(unit.body, self._unit_scope(unit, package), {}, 0, frozenset())
        logger.debug(
            "Collected %d access sites across %d units",
            len(self.index.sites), len(self.index.units),
        )
        return self.index

    def _unit_scope(self, unit: ExecutionUnit, package: str) -> _Scope:
        if unit.closure is not None:
            names = local_names(unit.closure)
            exclusive = set(unit.bindings())
            if self.per_iteration_loop_vars:
                exclusive.update(unit.loop_vars)
        else:
            callee = self.graph.get(unit.callee)
            names = frozenset(p.name for p in callee.params if p.name) if callee else frozenset()
            if unit.body is not None:
                names |= local_names(unit.body)
            exclusive = set(names)
        return _Scope(
            function=unit.function,
            package=package,
            unit=unit,
            locals=names,
            exclusive_keys=frozenset(exclusive),
        )

    # ── walking ───────────────────────────────────────────

    def _visit(
        self,
        node: Node | None,
        scope: _Scope,
        held: dict[str, str],
        depth: int,
        writes: frozenset[int],
    ) -> None:
        if node is None:
            return
        if node.kind == "func_lit" and id(node) in self._unit_closures:
            return
        if node.kind == "block":
            self._visit_block(node, scope, held, depth)
            return
        if node.kind in {"assign", "inc_dec", "range"}:
            writes = writes | self._record_writes(node, scope, held, depth)
        if node.kind == "call" and self._record_sync_call(node, scope, held, depth):
            for arg in call_args(node):
                if not (arg.kind == "unary" and arg.op == "&"):
                    self._visit(arg, scope, held, depth, writes)
            return
        if node.kind == "selector" and id(node) not in writes:
            self._record_field(node, scope, held, depth, write=False)
        inner = depth + 1 if node.kind in {"for", "range"} else depth
        for child in node.children:
            child_depth = inner if child.role == "body" else depth
            self._visit(child, scope, held, child_depth, writes)

    def _visit_block(
        self, block: Node, scope: _Scope, held: dict[str, str], depth: int
    ) -> None:
        local_held = dict(held)
        for stmt in block.children:
            call = stmt.field("x") if stmt.kind == "expr_stmt" else None
            if call is not None and call.kind == "call":
                if is_mutex_call(call, LOCK_METHODS):
                    guard = self._guard_handle(call, scope)
                    region = f"{guard}@{call.span.line}:{call.span.column}"
                    local_held[guard] = region
                    self.index.regions[guard].append(region)
                elif is_mutex_call(call, UNLOCK_METHODS):
                    local_held.pop(self._guard_handle(call, scope), None)
            self._visit(stmt, scope, local_held, depth, frozenset())

    def _guard_handle(self, call: Node, scope: _Scope) -> str:
        recv = receiver(call)
        if recv is not None:
            symbol = self.graph.field_of(unparen(recv), scope.package)
            if symbol is not None:
                return symbol.handle
            owner = self.graph.type_symbol(self.graph.expr_type(recv, scope.package))
            if owner is not None:
                for fsym in self.graph.fields_of(owner.handle):
                    if fsym.embedded and fsym.type is not None and is_mutex_type(fsym.type.deref()):
                        return fsym.handle
        return f"{scope.function}#{expr_key(recv) or 'mu'}"

    def _context(self, scope: _Scope, held: dict[str, str]) -> AccessContext:
        if held:
            return AccessContext.MUTEX_GUARDED
        if scope.unit is not None:
            return AccessContext.GOROUTINE
        return AccessContext.SEQUENTIAL

    def _add(
        self,
        target: str,
        span: Span,
        write: bool,
        context: AccessContext,
        scope: _Scope,
        held: dict[str, str],
        depth: int,
        *,
        is_field: bool = True,
    ) -> None:
        guard, region = next(iter(reversed(held.items())), ("", ""))
        self.index.sites.append(
            AccessSite(
                target=target,
                span=span,
                write=write,
                context=context,
                function=scope.function,
                unit=scope.unit.id if scope.unit is not None else "",
                guard=guard,
                region=region,
                loop_depth=depth,
                is_field=is_field,
            )
        )

    def _record_field(
        self,
        selector: Node,
        scope: _Scope,
        held: dict[str, str],
        depth: int,
        *,
        write: bool,
        context: AccessContext | None = None,
    ) -> bool:
        symbol = self.graph.field_of(selector, scope.package)
        if symbol is None or symbol.kind != SymbolKind.FIELD:
            return False
        if context is None:
            if symbol.type is not None and is_atomic_type(symbol.type):
                context = AccessContext.ATOMIC_OP
            else:
                context = self._context(scope, held)
        self._add(symbol.handle, selector.span, write, context, scope, held, depth)
        return True

    def _record_writes(
        self, stmt: Node, scope: _Scope, held: dict[str, str], depth: int
    ) -> frozenset[int]:
        handled: set[int] = set()
        declared = set(declared_names(stmt))
        for target in assigned_targets(stmt):
            target = unparen(target)
            if target is None:
                continue
            exclusive = target.kind == "index" and self._is_exclusive_index(target, scope)
            context = AccessContext.EXCLUSIVE if exclusive else None
            field_node = _outermost_field_selector(target)
            if field_node is not None and self._record_field(
                field_node, scope, held, depth, write=True, context=context
            ):
                handled.add(id(field_node))
                continue
            if scope.unit is None:
                continue
            ident = root_ident(target)
            if ident is None or ident.name == "_" or ident.name in declared:
                continue
            if ident.name in scope.locals and not ident.ref:
                continue
            self._add(
                ident.ref or f"{scope.function}#{ident.name}",
                target.span,
                True,
                context or self._context(scope, held),
                scope,
                held,
                depth,
                is_field=False,
            )
        return frozenset(handled)

    def _is_exclusive_index(self, target: Node, scope: _Scope) -> bool:
        if scope.unit is None:
            return False
        index = unparen(target.field("index"))
        if index is None or index.kind != "ident" or index.name not in scope.exclusive_keys:
            return False
        container = target.field("x")
        container_type = container.type if container is not None else ""
        try:
            parsed = parse_type(container_type) if container_type else None
        except TypeSyntaxError:
            parsed = None
        # Concurrent map writes race even on distinct keys.
        return parsed is None or parsed.deref().kind in {"slice", "array"}

    def _record_sync_call(
        self, call: Node, scope: _Scope, held: dict[str, str], depth: int
    ) -> bool:
        """Record atomic and mutex operations; True when the call was consumed."""
        name = call_name(call)
        if name.startswith("sync/atomic.") and name.count(".") == 1:
            args = call_args(call)
            if args and args[0].kind == "unary" and args[0].op == "&":
                operand = unparen(args[0].field("x"))
                write = not name.rpartition(".")[2].startswith("Load")
                if operand is not None and operand.kind == "selector":
                    self._record_field(
                        operand, scope, held, depth, write=write,
                        context=AccessContext.ATOMIC_OP,
                    )
                return True
            return False
        if name.startswith(("sync/atomic.", "sync.Mutex.", "sync.RWMutex.")):
            recv = unparen(receiver(call))
            if recv is not None and recv.kind == "selector":
                write = method_name(call) not in ATOMIC_READ_OPS
                self._record_field(
                    recv, scope, held, depth, write=write, context=AccessContext.ATOMIC_OP
                )
            return True
        return False


def _outermost_field_selector(target: Node) -> Node | None:
    node: Node | None = target
    while node is not None and node.kind in {"index", "star", "paren", "slice_expr"}:
        node = node.field("x")
    return node if node is not None and node.kind == "selector" else None


def collect_access_sites(
    graph: SymbolGraph, *, per_iteration_loop_vars: bool = True
) -> AccessIndex:
    return AccessCollector(graph, per_iteration_loop_vars=per_iteration_loop_vars).collect()


def field_heat(
    index: AccessIndex, loop_weight: float, fields: Iterable[str] | None = None
) -> dict[str, float]:
    """Syntactic heat score per field: each access counts ``loop_weight ** depth``."""
    wanted = set(fields) if fields is not None else None
    scores: dict[str, float] = defaultdict(float)
    for site in index.sites:
        if not site.is_field or (wanted is not None and site.target not in wanted):
            continue
        unit = index.units.get(site.unit)
        if unit is not None and unit.closure is None:
            # Named callees were already counted as ordinary functions.
            continue
        scores[site.target] += loop_weight ** site.loop_depth
    return dict(scores)


__all__ = [
    "AccessCollector",
    "AccessIndex",
    "AccessSite",
    "collect_access_sites",
    "field_heat",
    "is_handler",
]
