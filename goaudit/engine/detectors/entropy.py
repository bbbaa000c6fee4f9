"""Structural entropy: abstractions and exports that carry no weight."""

from __future__ import annotations

import logging

from goaudit.core.config import AnalysisConfig
from goaudit.core.enums import Category, Severity, SymbolKind
from goaudit.engine.findings import PassResult, make_finding
from goaudit.engine.symbols import PROTOCOL_METHODS, Symbol, SymbolGraph
from goaudit.engine.syntax import call_args, expr_key, unparen
from goaudit.program.model import Node

logger = logging.getLogger(__name__)

DEAD_EXPORT_KINDS = frozenset(
    {
        SymbolKind.STRUCT,
        SymbolKind.INTERFACE,
        SymbolKind.TYPE,
        SymbolKind.FUNC,
        SymbolKind.METHOD,
        SymbolKind.CONST,
        SymbolKind.VAR,
    }
)
# The runtime calls these by name, so they cannot be inlined away.
ENTRY_FUNC_NAMES = frozenset({"main", "init"})


def _single_statement(body: Node | None) -> Node | None:
    if body is None or len(body.statements) != 1:
        return None
    return body.statements[0]


def _forwarded_call(fn: Symbol) -> Node | None:
    """The call a function body consists of, if that is all it does."""
    stmt = _single_statement(fn.body)
    if stmt is None:
        return None
    if stmt.kind == "return":
        results = stmt.fields("result")
        call = unparen(results[0]) if len(results) == 1 else None
    elif stmt.kind == "expr_stmt" and not fn.results:
        call = unparen(stmt.field("x"))
    else:
        return None
    return call if call is not None and call.kind == "call" else None


def _callee_handle(call: Node) -> str:
    fun = call.field("fun")
    return call.ref or (fun.ref if fun is not None else "")


class EntropyAuditor:
    def __init__(self, graph: SymbolGraph, config: AnalysisConfig) -> None:
        self.graph = graph
        self.config = config
        self.result = PassResult("entropy")

    def run(self) -> PassResult:
        for symbol in sorted(self.graph.symbols(), key=lambda s: s.handle):
            if not symbol.resolved or symbol.is_test:
                continue
            with self.result.isolate(symbol.handle, symbol.span):
                self._check_symbol(symbol)
        return self.result

    def _check_symbol(self, symbol: Symbol) -> None:
        if symbol.kind == SymbolKind.INTERFACE:
            self._check_interface(symbol)
        if symbol.kind in DEAD_EXPORT_KINDS:
            self._check_dead_export(symbol)
        if symbol.is_callable and symbol.body is not None:
            self._check_thin_wrapper(symbol)
        if symbol.kind == SymbolKind.METHOD and symbol.body is not None:
            self._check_trivial_accessor(symbol)

    # ── interfaces ────────────────────────────────────────

    def _check_interface(self, iface: Symbol) -> None:
        methods = self.graph.interface_method_names(iface.handle)
        if not methods:
            return
        if len(methods) >= self.config.large_interface_methods:
            self.result.add(
                make_finding(
                    Category.ENTROPY,
                    "large-interface",
                    iface.span,
                    f"interface {iface.name} has {len(methods)} methods",
                    severity=Severity.LOW,
                    suggestion="split it into smaller interfaces at the consumers",
                    evidence={
                        "methods": sorted(methods),
                        "limit": self.config.large_interface_methods,
                    },
                    symbol=iface.handle,
                )
            )

        impls = self.graph.implementations_of(iface)
        if any(impl.is_test for impl in impls):
            # A test double is a second implementation.
            return
        if len(impls) != 1:
            return
        (impl,) = impls
        self.result.add(
            make_finding(
                Category.ENTROPY,
                "single-implementation",
                iface.span,
                f"interface {iface.name} has a single implementation, {impl.name}",
                severity=Severity.LOW,
                suggestion=f"use {impl.name} directly until a second implementation exists",
                evidence={"implementation": impl.handle, "methods": sorted(methods)},
                symbol=iface.handle,
            )
        )

    # ── reachability ──────────────────────────────────────

    def _check_dead_export(self, symbol: Symbol) -> None:
        if not symbol.exported or self.graph.is_reachable(symbol):
            return
        if symbol.kind == SymbolKind.METHOD:
            owner = self.graph.get(symbol.owner)
            if owner is None or not owner.exported:
                return
        self.result.add(
            make_finding(
                Category.ENTROPY,
                "dead-export",
                symbol.span,
                f"exported {symbol.kind.value} {symbol.name} is not reachable "
                "from any entry point",
                severity=Severity.LOW,
                suggestion="delete it or unexport it",
                evidence={
                    "kind": symbol.kind.value,
                    "referenced_by": sorted(self.graph.references_to(symbol.handle)),
                    "entry_points": list(self.config.entry_points),
                },
                symbol=symbol.handle,
            )
        )

    # ── wrappers / accessors ──────────────────────────────

    def _required_by_interface(self, method: Symbol) -> bool:
        if method.name in PROTOCOL_METHODS:
            return True
        return any(
            method.name in self.graph.interface_method_names(iface)
            for iface in self.graph.interfaces_implemented_by(method.owner)
        )

    def _check_thin_wrapper(self, fn: Symbol) -> None:
        if fn.kind == SymbolKind.FUNC and fn.name in ENTRY_FUNC_NAMES:
            return
        call = _forwarded_call(fn)
        if call is None:
            return
        callee = self.graph.get(_callee_handle(call))
        if callee is None or callee.handle == fn.handle or not callee.is_callable:
            return
        if callee.type is None or fn.type is None or str(callee.type) != str(fn.type):
            return
        params = [p.name for p in fn.params]
        if [expr_key(a) for a in call_args(call)] != params:
            return
        if fn.kind == SymbolKind.METHOD and self._required_by_interface(fn):
            return
        self.result.add(
            make_finding(
                Category.ENTROPY,
                "thin-wrapper",
                fn.span,
                f"{fn.name} only forwards its arguments to {callee.name}",
                severity=Severity.LOW,
                suggestion=f"call {callee.name} directly",
                evidence={"callee": callee.handle, "signature": str(fn.type)},
                symbol=fn.handle,
            )
        )

    def _receiver_field(self, node: Node | None, method: Symbol) -> Symbol | None:
        node = unparen(node)
        if node is None or node.kind != "selector":
            return None
        base = unparen(node.field("x"))
        if base is None or base.kind != "ident" or base.name in {p.name for p in method.params}:
            return None
        field = self.graph.field_of(node, method.package)
        if field is None or field.owner != method.owner:
            return None
        return field

    def _check_trivial_accessor(self, method: Symbol) -> None:
        stmt = _single_statement(method.body)
        if stmt is None:
            return
        field: Symbol | None = None
        role = ""
        if stmt.kind == "return" and len(stmt.fields("result")) == 1 and not method.params:
            field = self._receiver_field(stmt.fields("result")[0], method)
            role = "getter"
        elif stmt.kind == "assign" and stmt.op == "=" and len(method.params) == 1:
            lhs, rhs = stmt.fields("lhs"), stmt.fields("rhs")
            if len(lhs) == 1 and len(rhs) == 1 and expr_key(rhs[0]) == method.params[0].name:
                field = self._receiver_field(lhs[0], method)
                role = "setter"
        if field is None or self._required_by_interface(method):
            return
        self.result.add(
            make_finding(
                Category.ENTROPY,
                "trivial-accessor",
                method.span,
                f"{method.name} is a trivial {role} for field {field.name}",
                severity=Severity.INFO,
                suggestion=f"access {field.name} directly or export the field",
                evidence={"field": field.handle, "role": role},
                symbol=method.handle,
            )
        )


def run(graph: SymbolGraph, config: AnalysisConfig) -> PassResult:
    return EntropyAuditor(graph, config).run()


__all__ = ["DEAD_EXPORT_KINDS", "ENTRY_FUNC_NAMES", "EntropyAuditor", "run"]
