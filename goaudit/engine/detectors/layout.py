"""Struct layout: padding, field order, hot/cold placement, large copies."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from goaudit.core.config import AnalysisConfig
from goaudit.core.enums import Category, Severity, SymbolKind
from goaudit.core.errors import InternalInvariantError, ResolutionError
from goaudit.engine.access import collect_access_sites, field_heat, is_handler
from goaudit.engine.findings import PassResult, make_finding
from goaudit.engine.sizes import CACHE_LINE
from goaudit.engine.symbols import Symbol, SymbolGraph
from goaudit.program.types import TypeRef, TypeSyntaxError, parse_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldLayout:
    name: str
    offset: int
    size: int
    align: int
    type: str = ""
    ref: TypeRef | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class TypeLayout:
    type: str
    fields: tuple[FieldLayout, ...]
    size: int
    align: int

    @property
    def padding(self) -> int:
        """All gap bytes, trailing padding included."""
        return self.size - sum(f.size for f in self.fields)

    @property
    def trailing_padding(self) -> int:
        if not self.fields:
            return self.size
        last = self.fields[-1]
        return self.size - (last.offset + last.size)

    @property
    def cache_lines(self) -> int:
        return math.ceil(self.size / CACHE_LINE)

    def gaps(self) -> list[tuple[str, int]]:
        """(field name, gap bytes before it) for every non-zero inner gap."""
        out: list[tuple[str, int]] = []
        end = 0
        for f in self.fields:
            if f.offset > end:
                out.append((f.name, f.offset - end))
            end = f.offset + f.size
        return out

    def offset_of(self, name: str) -> int | None:
        for f in self.fields:
            if f.name == name:
                return f.offset
        return None


def optimal_order(fields: tuple[FieldLayout, ...]) -> list[FieldLayout]:
    """Zero-size fields first, then descending alignment, stable on ties."""
    return sorted(fields, key=lambda f: (f.size != 0, -f.align))


class LayoutCalculator:
    """Computes TypeLayouts through the graph's sizes, one cache per pass."""

    def __init__(self, graph: SymbolGraph) -> None:
        self.graph = graph
        self._cache: dict[str, TypeLayout] = {}

    def layout(self, symbol: Symbol) -> TypeLayout:
        cached = self._cache.get(symbol.handle)
        if cached is not None:
            return cached
        if symbol.kind != SymbolKind.STRUCT or symbol.type is None or not symbol.resolved:
            raise ResolutionError(symbol.handle, "no resolved struct type")
        field_types = [f.type for f in symbol.type.fields]
        size, align, offsets = self.graph.sizes.struct_layout(field_types)
        fields = tuple(
            FieldLayout(f.name, offset, *self.graph.measure(f.type), type=str(f.type), ref=f.type)
            for f, offset in zip(symbol.type.fields, offsets)
        )
        result = TypeLayout(symbol.handle, fields, size, align)
        self._cache[symbol.handle] = result
        return result

    def reordered(self, declared: TypeLayout, order: list[FieldLayout]) -> TypeLayout:
        types = [f.ref if f.ref is not None else parse_type(f.type) for f in order]
        size, align, offsets = self.graph.sizes.struct_layout(types)
        fields = tuple(
            FieldLayout(f.name, offset, f.size, f.align, f.type, f.ref)
            for f, offset in zip(order, offsets)
        )
        return TypeLayout(declared.type, fields, size, align)

    def optimal(self, declared: TypeLayout) -> TypeLayout:
        return self.reordered(declared, optimal_order(declared.fields))


def check_layout(layout: TypeLayout, optimal: TypeLayout | None = None) -> None:
    """Raise InternalInvariantError when a computed layout is inconsistent."""
    end = 0
    for f in layout.fields:
        if f.offset < end:
            raise InternalInvariantError(
                layout.type, f"field {f.name} at offset {f.offset} overlaps previous end {end}"
            )
        end = f.offset + f.size
    total = sum(f.size for f in layout.fields)
    if layout.size < total:
        raise InternalInvariantError(
            layout.type, f"size {layout.size} is smaller than field total {total}"
        )
    if layout.size % layout.align:
        raise InternalInvariantError(
            layout.type, f"size {layout.size} is not a multiple of alignment {layout.align}"
        )
    if optimal is not None and optimal.size > layout.size:
        raise InternalInvariantError(
            layout.type, f"optimal size {optimal.size} exceeds declared size {layout.size}"
        )


class LayoutAnalyzer:
    def __init__(self, graph: SymbolGraph, config: AnalysisConfig) -> None:
        self.graph = graph
        self.config = config
        self.calculator = LayoutCalculator(graph)
        self.result = PassResult("layout")
        self._heat: dict[str, float] | None = None

    def run(self) -> PassResult:
        structs = sorted(
            (s for s in self.graph.symbols(SymbolKind.STRUCT) if s.resolved),
            key=lambda s: s.handle,
        )
        for symbol in structs:
            with self.result.isolate(symbol.handle, symbol.span):
                self._analyze_struct(symbol)
        if self.config.enabled(Category.ALLOCATION):
            for fn in sorted(self.graph.callables(), key=lambda s: s.handle):
                with self.result.isolate(fn.handle, fn.span):
                    self._check_large_copies(fn)
        return self.result

    # ── padding / order ───────────────────────────────────

    def _analyze_struct(self, symbol: Symbol) -> None:
        declared = self.calculator.layout(symbol)
        optimal = self.calculator.optimal(declared)
        check_layout(declared, optimal)
        check_layout(optimal)

        if self.config.enabled(Category.LAYOUT):
            self._check_order(symbol, declared, optimal)
            self._check_hot_fields(symbol, declared)

    def _check_order(self, symbol: Symbol, declared: TypeLayout, optimal: TypeLayout) -> None:
        if optimal.size >= declared.size:
            return
        if any(f.name == "_" for f in declared.fields):
            # Blank fields are deliberate padding.
            logger.debug("Skipping field-order for %s: blank padding fields", symbol.handle)
            return
        saved = declared.size - optimal.size
        order = [f.name for f in optimal.fields]
        self.result.add(
            make_finding(
                Category.LAYOUT,
                "field-order",
                symbol.span,
                f"{symbol.name} is {declared.size} bytes with {declared.padding} bytes of "
                f"padding; reordering fields gives {optimal.size} bytes "
                f"({saved} bytes reclaimable)",
                severity=Severity.MEDIUM if saved >= 8 else Severity.LOW,
                suggestion="reorder fields: " + ", ".join(order),
                evidence={
                    "declared_size": declared.size,
                    "optimal_size": optimal.size,
                    "padding": declared.padding,
                    "trailing_padding": declared.trailing_padding,
                    "cache_lines": declared.cache_lines,
                    "suggested_order": order,
                },
                symbol=symbol.handle,
            )
        )

    # ── hot / cold ────────────────────────────────────────

    def _scores(self, symbol: Symbol) -> dict[str, float]:
        handles = [f"{symbol.handle}.{name}" for name in self._field_names(symbol)]
        provided = {h: self.graph.program.field_heat[h] for h in handles if h in self.graph.program.field_heat}
        if provided:
            return provided
        if self._heat is None:
            index = collect_access_sites(self.graph)
            self._heat = field_heat(index, self.config.loop_weight)
        return {h: self._heat[h] for h in handles if h in self._heat}

    @staticmethod
    def _field_names(symbol: Symbol) -> list[str]:
        return [f.name for f in symbol.type.fields] if symbol.type is not None else []

    def _check_hot_fields(self, symbol: Symbol, declared: TypeLayout) -> None:
        scores = self._scores(symbol)
        if not scores:
            return
        threshold = self.config.hot_field_threshold
        hot = {
            f.name for f in declared.fields
            if scores.get(f"{symbol.handle}.{f.name}", 0.0) >= threshold and f.size > 0
        }
        sized = [f for f in declared.fields if f.size > 0]
        if not hot:
            return
        hot_fields = [f for f in sized if f.name in hot]
        evidence = {
            "hot_fields": [f.name for f in hot_fields],
            "scores": {f.name: scores.get(f"{symbol.handle}.{f.name}", 0.0) for f in sized},
            "threshold": threshold,
        }

        prefix = [f.name for f in sized[: len(hot)]]
        hot_end = max(f.offset + f.size for f in hot_fields)
        # With every field hot there is nothing cold to move out of the way.
        if len(hot) < len(sized) and (set(prefix) != hot or hot_end > CACHE_LINE):
            cold_first = [f.name for f in sized[: len(hot)] if f.name not in hot]
            self.result.add(
                make_finding(
                    Category.LAYOUT,
                    "hot-cold-separation",
                    symbol.span,
                    f"{symbol.name}: hot fields {', '.join(sorted(hot))} are not grouped "
                    f"at the start of the first cache line"
                    + (f" (cold {', '.join(cold_first)} comes first)" if cold_first else ""),
                    severity=Severity.LOW,
                    suggestion="move hot fields to the front of the struct",
                    evidence=evidence,
                    symbol=symbol.handle,
                )
            )

        lines = set()
        for f in hot_fields:
            lines.update(range(f.offset // CACHE_LINE, (f.offset + f.size - 1) // CACHE_LINE + 1))
        if len(lines) > 1:
            self.result.add(
                make_finding(
                    Category.LAYOUT,
                    "hot-fields-span-lines",
                    symbol.span,
                    f"{symbol.name}: hot fields span {len(lines)} cache lines",
                    severity=Severity.MEDIUM,
                    suggestion="group hot fields so they share one 64-byte cache line",
                    evidence={**evidence, "cache_lines": sorted(lines)},
                    symbol=symbol.handle,
                )
            )

    # ── large by-value copies ─────────────────────────────

    def _by_value_struct(self, type_text: str, package: str) -> Symbol | None:
        try:
            t = self.graph.qualify(parse_type(type_text), package)
        except TypeSyntaxError:
            return None
        if t.kind != "named":
            return None
        symbol = self.graph.get(t.name)
        if symbol is None or symbol.kind != SymbolKind.STRUCT or symbol.size is None:
            return None
        return symbol

    def _check_large_copies(self, fn: Symbol) -> None:
        limit = self.config.large_struct_bytes
        copies: list[tuple[str, str, int]] = []
        if fn.kind == SymbolKind.METHOD and not fn.pointer_receiver:
            owner = self.graph.get(fn.owner)
            if owner is not None and owner.size is not None and owner.size > limit:
                copies.append(("receiver", owner.name, owner.size))
        for param in fn.params:
            symbol = self._by_value_struct(param.type, fn.package)
            if symbol is not None and symbol.size > limit:
                copies.append((param.name or "_", symbol.name, symbol.size))
        if not copies:
            return
        described = ", ".join(f"{name} {type_name} ({size} bytes)" for name, type_name, size in copies)
        self.result.add(
            make_finding(
                Category.ALLOCATION,
                "large-value-copy",
                fn.span,
                f"{fn.name} copies large structs by value: {described}",
                severity=Severity.MEDIUM if is_handler(fn) else Severity.LOW,
                suggestion="pass a pointer instead",
                evidence={
                    "copies": [
                        {"name": name, "type": type_name, "size": size}
                        for name, type_name, size in copies
                    ],
                    "limit": limit,
                },
                symbol=fn.handle,
            )
        )


def run(graph: SymbolGraph, config: AnalysisConfig) -> PassResult:
    return LayoutAnalyzer(graph, config).run()


__all__ = [
    "FieldLayout",
    "LayoutAnalyzer",
    "LayoutCalculator",
    "TypeLayout",
    "check_layout",
    "optimal_order",
    "run",
]
