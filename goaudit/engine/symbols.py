"""SymbolGraph: read-only index over a parsed program.

The graph is an arena of frozen Symbol records keyed by string handles
(``example.com/app/store.Cache``, ``example.com/app/store.Cache.mu``). Edges
hold handles, never objects, so interface/implementation cycles need no
object cycles and analyzer threads can share the graph without locks.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from goaudit.core.enums import (
    CALLABLE_SYMBOL_KINDS,
    TYPE_SYMBOL_KINDS,
    DiagnosticKind,
    SymbolKind,
)
from goaudit.core.errors import ResolutionError
from goaudit.engine.findings import Diagnostic
from goaudit.engine.sizes import (
    PLATFORMS,
    STD_PACKAGE_ALIASES,
    Sizes,
    canonical_std_name,
    known_underlying,
)
from goaudit.engine.syntax import (
    GO_LAUNCHERS,
    call_args,
    call_name,
    expr_key,
    loop_variables,
)
from goaudit.program.model import Declaration, Node, Param, Program, Span
from goaudit.program.types import (
    StructField,
    TypeRef,
    TypeSyntaxError,
    named,
    parse_signature,
    parse_type,
)

logger = logging.getLogger(__name__)

# Methods the standard library calls through well-known interfaces.
PROTOCOL_METHODS = frozenset(
    {
        "String",
        "GoString",
        "Error",
        "Unwrap",
        "Is",
        "As",
        "Format",
        "MarshalJSON",
        "UnmarshalJSON",
        "MarshalText",
        "UnmarshalText",
        "MarshalBinary",
        "UnmarshalBinary",
        "ServeHTTP",
        "Len",
        "Less",
        "Swap",
        "Scan",
        "Value",
    }
)


@dataclass(frozen=True)
class Symbol:
    handle: str
    name: str
    kind: SymbolKind
    package: str
    span: Span
    exported: bool
    type: TypeRef | None = None
    type_text: str = ""
    size: int | None = None
    align: int | None = None
    doc: str | None = None
    owner: str = ""
    pointer_receiver: bool = False
    members: tuple[str, ...] = ()
    body: Node | None = None
    params: tuple[Param, ...] = ()
    results: tuple[str, ...] = ()
    tag: str = ""
    embedded: bool = False
    index: int = 0
    is_test: bool = False
    resolved: bool = True

    @property
    def is_type(self) -> bool:
        return self.kind in TYPE_SYMBOL_KINDS

    @property
    def is_callable(self) -> bool:
        return self.kind in CALLABLE_SYMBOL_KINDS


@dataclass(frozen=True)
class ExecutionUnit:
    """One goroutine launch: the body it runs and where it was launched.

    ``go f(x)`` and ``go func() {...}()`` statements are units, and so are
    ``wg.Go(func() {...})`` style launcher calls.
    """

    id: str
    span: Span
    function: str
    call: Node
    body: Node | None
    callee: str = ""
    closure: Node | None = None
    loop: Node | None = None
    loop_vars: tuple[str, ...] = ()

    @property
    def in_loop(self) -> bool:
        return self.loop is not None

    @property
    def is_closure(self) -> bool:
        return self.closure is not None

    def bindings(self) -> dict[str, str]:
        """Closure parameter name -> expression key of the launch argument."""
        if self.closure is None or self.call.field("fun") is not self.closure:
            return {}
        params = [p.name for p in self.closure.fields("param")]
        args = [expr_key(a) for a in call_args(self.call)]
        return {name: arg for name, arg in zip(params, args) if name}


def is_exported(name: str) -> bool:
    return bool(name) and name[0].isupper()


class SymbolGraph:
    """Declaration table, reference graph and reachability for one program."""

    def __init__(
        self,
        program: Program,
        *,
        platform: str = "amd64",
        entry_points: Iterable[str] = ("main", "tests"),
    ) -> None:
        self.program = program
        self._symbols: dict[str, Symbol] = {}
        self._diagnostics: list[Diagnostic] = []
        self._package_names = {pkg.path: pkg.name for pkg in program.packages}
        self._short_packages = self._build_short_package_index()
        self._type_decls: dict[str, Declaration] = {}
        self._underlying: dict[str, TypeRef] = {}
        self._method_sets: dict[str, dict[str, str]] = defaultdict(dict)
        self._edges: dict[str, set[str]] = defaultdict(set)
        self._reverse: dict[str, set[str]] = defaultdict(set)

        self.sizes = Sizes(PLATFORMS[platform], self._resolve_named)
        self._index_type_declarations()
        self._build_symbols()
        self.sizes.freeze()
        self._implementations = self._build_implementations()
        self._build_edges()
        self._roots = self._collect_roots(tuple(entry_points))
        self._reachable = self._compute_reachable()
        self._units = tuple(self._collect_execution_units())
        logger.debug(
            "SymbolGraph: %d symbols, %d roots, %d reachable, %d units, %d diagnostics",
            len(self._symbols), len(self._roots), len(self._reachable),
            len(self._units), len(self._diagnostics),
        )

    # ── public API ─────────────────────────────────────────

    def lookup(self, handle: str) -> Symbol:
        return self._symbols[handle]

    def get(self, handle: str) -> Symbol | None:
        return self._symbols.get(handle)

    def __contains__(self, handle: object) -> bool:
        return handle in self._symbols

    def symbols(self, *kinds: SymbolKind) -> Iterator[Symbol]:
        wanted = set(kinds)
        for symbol in self._symbols.values():
            if not wanted or symbol.kind in wanted:
                yield symbol

    @property
    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return tuple(self._diagnostics)

    @property
    def roots(self) -> frozenset[str]:
        return self._roots

    def implementations_of(self, interface: Symbol | str) -> frozenset[Symbol]:
        handle = interface if isinstance(interface, str) else interface.handle
        return frozenset(self._symbols[h] for h in self._implementations.get(handle, ()))

    def interfaces_implemented_by(self, type_handle: str) -> frozenset[str]:
        return frozenset(
            iface for iface, impls in self._implementations.items() if type_handle in impls
        )

    def is_reachable(self, symbol: Symbol | str) -> bool:
        handle = symbol if isinstance(symbol, str) else symbol.handle
        return handle in self._reachable

    def references_from(self, handle: str) -> frozenset[str]:
        return frozenset(self._edges.get(handle, ()))

    def references_to(self, handle: str) -> frozenset[str]:
        return frozenset(self._reverse.get(handle, ()))

    def execution_units(self) -> tuple[ExecutionUnit, ...]:
        return self._units

    def fields_of(self, type_handle: str) -> list[Symbol]:
        symbol = self._symbols.get(type_handle)
        if symbol is None or symbol.kind != SymbolKind.STRUCT:
            return []
        return [self._symbols[h] for h in symbol.members]

    def methods_of(self, type_handle: str) -> dict[str, Symbol]:
        return {
            name: self._symbols[handle]
            for name, handle in self._method_sets.get(type_handle, {}).items()
        }

    def interface_method_names(self, interface: str) -> frozenset[str]:
        return frozenset(name for name, _ in self._interface_method_set(interface))

    def callables(self) -> Iterator[Symbol]:
        for symbol in self._symbols.values():
            if symbol.is_callable and symbol.body is not None:
                yield symbol

    def resolve_named(self, name: str, package: str) -> Symbol | None:
        """Resolve a (possibly unqualified) type name as seen from ``package``."""
        symbol = self._symbols.get(self._qualify_name(name, package))
        return symbol if symbol is not None and symbol.is_type else None

    def qualify(self, t: TypeRef, package: str) -> TypeRef:
        """Rewrite named types in ``t`` to fully-qualified handles."""
        return t.map_named(lambda n: named(self._qualify_name(n.name, package), *n.args))

    def expr_type(self, node: Node | None, package: str) -> TypeRef | None:
        """Resolved type of an expression node, qualified; None if unknown."""
        if node is None or not node.type:
            return None
        try:
            return self.qualify(parse_type(node.type), package)
        except TypeSyntaxError:
            return None

    def type_symbol(self, t: TypeRef | None) -> Symbol | None:
        """Declared type symbol behind ``t`` (through one pointer)."""
        if t is None:
            return None
        base = t.deref()
        if base.kind != "named":
            return None
        symbol = self._symbols.get(base.name)
        return symbol if symbol is not None and symbol.is_type else None

    def field_of(self, selector: Node, package: str) -> Symbol | None:
        """Struct field symbol a selector expression denotes, if any."""
        if selector.kind != "selector":
            return None
        if selector.ref:
            symbol = self._symbols.get(selector.ref)
            if symbol is not None:
                return symbol if symbol.kind == SymbolKind.FIELD else None
        owner = self.type_symbol(self.expr_type(selector.field("x"), package))
        if owner is None:
            return None
        symbol = self._symbols.get(f"{owner.handle}.{selector.name}")
        if symbol is not None and symbol.kind == SymbolKind.FIELD:
            return symbol
        return None

    def measure(self, t: TypeRef) -> tuple[int, int]:
        """Size and alignment of an arbitrary (qualified) type."""
        return self.sizes.measure(t)

    # ── construction ───────────────────────────────────────

    def _build_short_package_index(self) -> dict[str, str]:
        counts: dict[str, list[str]] = defaultdict(list)
        for pkg in self.program.packages:
            counts[pkg.name].append(pkg.path)
            last = pkg.path.rsplit("/", 1)[-1]
            if last != pkg.name:
                counts[last].append(pkg.path)
        return {short: paths[0] for short, paths in counts.items() if len(set(paths)) == 1}

    def _qualify_name(self, name: str, package: str) -> str:
        if "." not in name:
            local = f"{package}.{name}"
            if local in self._type_decls:
                return local
            return name
        pkg, _, base = name.rpartition(".")
        if pkg in self._package_names:
            return name
        if pkg in self._short_packages:
            return f"{self._short_packages[pkg]}.{base}"
        if pkg in STD_PACKAGE_ALIASES:
            return canonical_std_name(name)
        return name

    def _record_unresolved(self, handle: str, reason: str, span: Span | None) -> None:
        logger.debug("Unresolved symbol %s: %s", handle, reason)
        self._diagnostics.append(
            Diagnostic(DiagnosticKind.RESOLUTION, handle, reason, span)
        )

    def _index_type_declarations(self) -> None:
        for decl in self.program.declarations:
            if decl.kind in {"struct", "interface", "type"}:
                self._type_decls[decl.handle] = decl

    def _underlying_of(self, decl: Declaration) -> TypeRef:
        pkg = decl.package
        if decl.kind == "struct":
            return TypeRef(
                "struct",
                fields=tuple(
                    StructField(f.name, self.qualify(parse_type(f.type), pkg), f.embedded, f.tag)
                    for f in decl.fields
                ),
            )
        if decl.kind == "interface":
            return TypeRef(
                "interface",
                methods=tuple(
                    (m.name, self.qualify(parse_signature(m.signature), pkg))
                    for m in decl.methods
                ),
                embeds=tuple(self.qualify(parse_type(e), pkg) for e in decl.embeds),
            )
        return self.qualify(parse_type(decl.type), pkg)

    def _resolve_named(self, t: TypeRef) -> TypeRef:
        underlying = self._underlying.get(t.name)
        if underlying is not None:
            # Named chains go back through Sizes.measure, which detects cycles.
            return underlying
        if t.args and t.name in self._type_decls:
            raise ResolutionError(str(t), "generic instantiation is not sized")
        known = known_underlying(t)
        if known is not None:
            return known
        raise ResolutionError(t.name, "type could not be resolved")

    def _build_symbols(self) -> None:
        for decl in self._type_decls.values():
            try:
                self._underlying[decl.handle] = self._underlying_of(decl)
            except TypeSyntaxError as exc:
                self._record_unresolved(decl.handle, f"unparsable type: {exc}", decl.span)

        for decl in self.program.declarations:
            if decl.kind in {"struct", "interface", "type"}:
                self._add_type_symbol(decl)
            elif decl.kind in {"func", "method"}:
                self._add_callable_symbol(decl)
            else:
                self._add_value_symbol(decl)

    def _add(self, symbol: Symbol) -> None:
        if symbol.handle in self._symbols:
            logger.debug("Duplicate declaration %s; keeping first", symbol.handle)
            return
        self._symbols[symbol.handle] = symbol

    def _add_type_symbol(self, decl: Declaration) -> None:
        handle = decl.handle
        underlying = self._underlying.get(handle)
        size = align = None
        resolved = underlying is not None
        if resolved and decl.kind != "interface":
            try:
                size, align = self.sizes.measure(named(handle))
            except ResolutionError as exc:
                resolved = False
                self._record_unresolved(handle, exc.reason, decl.span)

        members: list[str] = []
        if decl.kind == "struct":
            for index, fdecl in enumerate(decl.fields):
                fhandle = f"{handle}.{fdecl.name}"
                members.append(fhandle)
                ftype: TypeRef | None = None
                fsize = falign = None
                if underlying is not None:
                    ftype = underlying.fields[index].type
                    if resolved:
                        fsize, falign = self.sizes.measure(ftype)
                self._add(
                    Symbol(
                        handle=fhandle,
                        name=fdecl.name,
                        kind=SymbolKind.FIELD,
                        package=decl.package,
                        span=fdecl.span,
                        exported=is_exported(fdecl.name),
                        type=ftype,
                        type_text=fdecl.type,
                        size=fsize,
                        align=falign,
                        doc=fdecl.doc,
                        owner=handle,
                        tag=fdecl.tag,
                        embedded=fdecl.embedded,
                        index=index,
                        is_test=decl.is_test,
                        resolved=resolved,
                    )
                )
        elif decl.kind == "interface":
            for index, mspec in enumerate(decl.methods):
                mhandle = f"{handle}.{mspec.name}"
                members.append(mhandle)
                self._add(
                    Symbol(
                        handle=mhandle,
                        name=mspec.name,
                        kind=SymbolKind.INTERFACE_METHOD,
                        package=decl.package,
                        span=mspec.span,
                        exported=is_exported(mspec.name),
                        type=underlying.methods[index][1] if underlying is not None else None,
                        type_text=mspec.signature,
                        doc=mspec.doc,
                        owner=handle,
                        index=index,
                        is_test=decl.is_test,
                        resolved=resolved,
                    )
                )

        self._add(
            Symbol(
                handle=handle,
                name=decl.name,
                kind=SymbolKind(decl.kind),
                package=decl.package,
                span=decl.span,
                exported=is_exported(decl.name),
                type=underlying,
                type_text=decl.type,
                size=size,
                align=align,
                doc=decl.doc,
                members=tuple(members),
                is_test=decl.is_test,
                resolved=resolved,
            )
        )

    def _add_callable_symbol(self, decl: Declaration) -> None:
        handle = decl.handle
        owner = ""
        if decl.receiver:
            owner = self._qualify_name(decl.receiver_name, decl.package)
            self._method_sets[owner][decl.name] = handle
        try:
            sig: TypeRef | None = self.qualify(parse_signature(decl.signature()), decl.package)
        except TypeSyntaxError as exc:
            sig = None
            self._record_unresolved(handle, f"unparsable signature: {exc}", decl.span)
        self._add(
            Symbol(
                handle=handle,
                name=decl.name,
                kind=SymbolKind.METHOD if decl.receiver else SymbolKind.FUNC,
                package=decl.package,
                span=decl.span,
                exported=is_exported(decl.name),
                type=sig,
                type_text=decl.signature(),
                doc=decl.doc,
                owner=owner,
                pointer_receiver=decl.pointer_receiver,
                body=decl.body,
                params=decl.params,
                results=decl.results,
                is_test=decl.is_test,
                resolved=sig is not None,
            )
        )

    def _add_value_symbol(self, decl: Declaration) -> None:
        vtype: TypeRef | None = None
        resolved = True
        if decl.type:
            try:
                vtype = self.qualify(parse_type(decl.type), decl.package)
            except TypeSyntaxError as exc:
                resolved = False
                self._record_unresolved(decl.handle, f"unparsable type: {exc}", decl.span)
        self._add(
            Symbol(
                handle=decl.handle,
                name=decl.name,
                kind=SymbolKind(decl.kind),
                package=decl.package,
                span=decl.span,
                exported=is_exported(decl.name),
                type=vtype,
                type_text=decl.type,
                doc=decl.doc,
                body=decl.value,
                is_test=decl.is_test,
                resolved=resolved,
            )
        )

    # ── method sets / implementations ──────────────────────

    def _interface_method_set(
        self, interface: str, _seen: frozenset[str] = frozenset()
    ) -> list[tuple[str, str]]:
        if interface in _seen:
            return []
        underlying = self._underlying.get(interface)
        if underlying is None:
            underlying = known_underlying(named(interface))
        if underlying is None or underlying.kind != "interface":
            return []
        methods = [(name, str(sig)) for name, sig in underlying.methods]
        for embed in underlying.embeds:
            if embed.kind == "named":
                methods.extend(self._interface_method_set(embed.name, _seen | {interface}))
            elif embed.kind == "interface":
                methods.extend((name, str(sig)) for name, sig in embed.methods)
        return methods

    def _method_signatures(
        self, type_handle: str, _seen: frozenset[str] = frozenset()
    ) -> dict[str, str]:
        """Pointer method set of a named type, including promoted methods."""
        if type_handle in _seen:
            return {}
        out: dict[str, str] = {}
        underlying = self._underlying.get(type_handle)
        if underlying is not None and underlying.kind == "struct":
            for field in underlying.fields:
                if field.embedded:
                    base = field.type.deref()
                    if base.kind == "named":
                        out.update(self._method_signatures(base.name, _seen | {type_handle}))
        for name, handle in self._method_sets.get(type_handle, {}).items():
            symbol = self._symbols.get(handle)
            if symbol is not None and symbol.type is not None:
                out[name] = str(symbol.type)
        return out

    def _build_implementations(self) -> dict[str, frozenset[str]]:
        concrete = [
            s.handle for s in self._symbols.values()
            if s.kind in {SymbolKind.STRUCT, SymbolKind.TYPE} and s.resolved
        ]
        method_sets = {handle: self._method_signatures(handle) for handle in concrete}
        result: dict[str, frozenset[str]] = {}
        for symbol in self._symbols.values():
            if symbol.kind != SymbolKind.INTERFACE or not symbol.resolved:
                continue
            required = self._interface_method_set(symbol.handle)
            if not required:
                result[symbol.handle] = frozenset()
                continue
            result[symbol.handle] = frozenset(
                handle
                for handle, methods in method_sets.items()
                if all(methods.get(name) == sig for name, sig in required)
            )
        return result

    # ── references / reachability ──────────────────────────

    def _link(self, source: str, target: str) -> None:
        if target == source or target not in self._symbols:
            return
        self._edges[source].add(target)
        self._reverse[target].add(source)

    def _link_type(self, source: str, t: TypeRef | None) -> None:
        if t is None:
            return
        for part in t.walk():
            if part.kind == "named":
                self._link(source, part.name)

    def _link_body(self, source: str, body: Node | None, package: str) -> None:
        if body is None:
            return
        for node in body.walk():
            if node.ref:
                self._link(source, node.ref)
            if node.kind in {"composite_lit", "conversion", "type_assert"} and node.type:
                self._link_type(source, self.expr_type(node, package))

    def _build_edges(self) -> None:
        for symbol in list(self._symbols.values()):
            handle = symbol.handle
            if symbol.kind == SymbolKind.STRUCT:
                for member in symbol.members:
                    self._link(handle, member)
                    self._link_type(member, self._symbols[member].type)
            elif symbol.kind == SymbolKind.INTERFACE:
                for member in symbol.members:
                    self._link(handle, member)
                if symbol.type is not None:
                    for embed in symbol.type.embeds:
                        self._link_type(handle, embed)
            elif symbol.kind == SymbolKind.TYPE:
                self._link_type(handle, symbol.type)
            elif symbol.is_callable:
                self._link_type(handle, symbol.type)
                self._link_body(handle, symbol.body, symbol.package)
                if symbol.owner:
                    self._link(handle, symbol.owner)
                    if symbol.name in PROTOCOL_METHODS:
                        self._link(symbol.owner, handle)
            elif symbol.kind in {SymbolKind.CONST, SymbolKind.VAR}:
                self._link_type(handle, symbol.type)
                self._link_body(handle, symbol.body, symbol.package)

        for iface, impls in self._implementations.items():
            for impl in impls:
                methods = self._method_sets.get(impl, {})
                for name in self.interface_method_names(iface):
                    if name in methods:
                        self._link(f"{iface}.{name}", methods[name])

    def _collect_roots(self, entry_points: tuple[str, ...]) -> frozenset[str]:
        roots: set[str] = set()
        main_packages = {pkg.path for pkg in self.program.packages if pkg.is_main}
        for symbol in self._symbols.values():
            if "main" in entry_points and symbol.kind == SymbolKind.FUNC:
                if symbol.name == "init" or (
                    symbol.name == "main" and symbol.package in main_packages
                ):
                    roots.add(symbol.handle)
            if "tests" in entry_points and symbol.is_test:
                roots.add(symbol.handle)
            if (
                "exported" in entry_points
                and symbol.exported
                and symbol.package not in main_packages
                and "internal" not in symbol.package.split("/")
            ):
                roots.add(symbol.handle)
            if symbol.kind == SymbolKind.VAR and symbol.body is not None:
                # Package initializers run unconditionally.
                roots.update(self._edges.get(symbol.handle, ()))
        for explicit in entry_points:
            if "." in explicit and explicit in self._symbols:
                roots.add(explicit)
        return frozenset(roots)

    def _compute_reachable(self) -> frozenset[str]:
        seen = set(self._roots)
        queue = deque(self._roots)
        while queue:
            handle = queue.popleft()
            for target in self._edges.get(handle, ()):
                if target not in seen:
                    seen.add(target)
                    queue.append(target)
        return frozenset(seen)

    # ── execution units ────────────────────────────────────

    def _collect_execution_units(self) -> Iterator[ExecutionUnit]:
        for symbol in self._symbols.values():
            if not symbol.is_callable or symbol.body is None:
                continue
            yield from self._units_in(symbol, symbol.body, None)

    def _units_in(self, fn: Symbol, node: Node, loop: Node | None) -> Iterator[ExecutionUnit]:
        for child in node.children:
            if child.kind == "go":
                call = child.field("call") or (child.children[0] if child.children else child)
                yield self._make_unit(fn, child, call, call.field("fun"), loop)
            elif child.kind == "call" and call_name(child) in GO_LAUNCHERS:
                closure = next((a for a in call_args(child) if a.kind == "func_lit"), None)
                if closure is not None:
                    yield self._make_unit(fn, child, child, closure, loop)
            next_loop = child if child.kind in {"for", "range"} else loop
            if child.kind == "func_lit":
                next_loop = None
            yield from self._units_in(fn, child, next_loop)

    def _make_unit(
        self, fn: Symbol, stmt: Node, call: Node, fun: Node | None, loop: Node | None
    ) -> ExecutionUnit:
        body: Node | None = None
        closure: Node | None = None
        callee = ""
        if fun is not None and fun.kind == "func_lit":
            closure = fun
            body = fun.field("body")
        else:
            callee = call.ref or (fun.ref if fun is not None else "")
            target = self._symbols.get(callee)
            if target is not None:
                body = target.body
        return ExecutionUnit(
            id=f"{fn.handle}@{stmt.span.line}:{stmt.span.column}",
            span=stmt.span,
            function=fn.handle,
            call=call,
            body=body,
            callee=callee,
            closure=closure,
            loop=loop,
            loop_vars=loop_variables(loop) if loop is not None else (),
        )


def build_symbol_graph(program: Program, config) -> SymbolGraph:
    """Build the graph for one run from an AnalysisConfig."""
    return SymbolGraph(
        program, platform=config.platform, entry_points=config.entry_points
    )


__all__ = [
    "ExecutionUnit",
    "PROTOCOL_METHODS",
    "Symbol",
    "SymbolGraph",
    "build_symbol_graph",
    "is_exported",
]
