"""Concurrency antipatterns over goroutine launch sites and access sites."""

from __future__ import annotations

import logging
from collections.abc import Iterator

from goaudit.core.config import AnalysisConfig
from goaudit.core.enums import AccessContext, Category, Severity, SymbolKind
from goaudit.core.versioning import GoVersion
from goaudit.engine.access import AccessIndex, collect_access_sites
from goaudit.engine.detectors.layout import LayoutCalculator
from goaudit.engine.findings import PassResult, make_finding
from goaudit.engine.flow import has_cancellation, unreleased_exits
from goaudit.engine.sizes import CACHE_LINE, is_atomic_type, is_mutex_type
from goaudit.engine.symbols import ExecutionUnit, Symbol, SymbolGraph
from goaudit.engine.syntax import (
    LOCK_METHODS,
    call_args,
    call_name,
    declared_names,
    expr_key,
    is_infinite_loop,
    is_mutex_call,
    local_names,
    method_name,
    receiver,
    unparen,
    walk_skip_closures,
)
from goaudit.program.model import Node
from goaudit.program.types import TypeRef

logger = logging.getLogger(__name__)

PER_ITERATION_LOOP_VARS = GoVersion(1, 22)
_RELEASE_FOR = {"Lock": "Unlock", "RLock": "RUnlock"}

# Scalar field type -> sync/atomic replacement.
ATOMIC_REPLACEMENTS = {
    "int32": "atomic.Int32",
    "int64": "atomic.Int64",
    "uint32": "atomic.Uint32",
    "uint64": "atomic.Uint64",
    "uintptr": "atomic.Uintptr",
    "bool": "atomic.Bool",
    "int": "atomic.Int64",
    "uint": "atomic.Uint64",
}


def atomic_replacement(t: TypeRef | None) -> str | None:
    if t is None:
        return None
    if t.kind == "basic":
        return ATOMIC_REPLACEMENTS.get(t.name)
    if t.kind == "pointer" and t.elem is not None:
        return f"atomic.Pointer[{t.elem}]"
    return None


def _is_receive_of(node: Node, key: str) -> bool:
    if node.kind == "unary" and node.op == "<-":
        return expr_key(node.field("x")) == key
    if node.kind == "range":
        return expr_key(node.field("x")) == key
    return False


def _make_chan_sites(body: Node) -> Iterator[tuple[str, Node]]:
    """(channel name, make call) for ``ch := make(chan T[, n])`` in ``body``."""
    for node in walk_skip_closures(body):
        if node.kind != "assign":
            continue
        lhs = node.fields("lhs")
        rhs = node.fields("rhs")
        for target, value in zip(lhs, rhs):
            value = unparen(value)
            if (
                target.kind == "ident"
                and value is not None
                and call_name(value) == "make"
                and value.type.lstrip("<-").startswith("chan")
            ):
                yield target.name, value


def _is_unbuffered(make_call: Node) -> bool:
    args = call_args(make_call)
    return not args or (args[0].kind == "basic_lit" and args[0].value == "0")


class ConcurrencyAuditor:
    def __init__(self, graph: SymbolGraph, config: AnalysisConfig) -> None:
        self.graph = graph
        self.config = config
        self.per_iteration = config.target_version >= PER_ITERATION_LOOP_VARS
        self.result = PassResult("concurrency")
        self.index: AccessIndex = collect_access_sites(
            graph, per_iteration_loop_vars=self.per_iteration
        )

    def run(self) -> PassResult:
        with self.result.isolate("unnecessary-lock"):
            self._check_unnecessary_locks()
        self._check_false_sharing()
        for unit in self.graph.execution_units():
            if unit.body is None:
                logger.debug("Unit %s has no resolvable body; skipped", unit.id)
                continue
            with self.result.isolate(unit.function, unit.span):
                self._check_channel_collect(unit)
                self._check_unit_leaks(unit)
                if not self.per_iteration:
                    self._check_loop_var_capture(unit)
        for body, function in self._bodies():
            with self.result.isolate(function.handle, body.span):
                self._check_lock_release(body, function)
        with self.result.isolate("unguarded-write"):
            self._check_unguarded_writes()
        return self.result

    def _bodies(self) -> Iterator[tuple[Node, Symbol]]:
        for fn in sorted(self.graph.callables(), key=lambda s: s.handle):
            yield fn.body, fn
            for node in fn.body.walk():
                if node.kind == "func_lit":
                    body = node.field("body")
                    if body is not None:
                        yield body, fn

    # ── unnecessary-lock ──────────────────────────────────

    def _check_unnecessary_locks(self) -> None:
        for guard, regions in sorted(self.index.regions.items()):
            mutex = self.graph.get(guard)
            if mutex is None or mutex.kind != SymbolKind.FIELD:
                continue
            region_set = set(regions)
            touched = {
                site.target
                for site in self.index.sites
                if site.region in region_set and site.target != guard
            }
            if len(touched) != 1:
                continue
            target = self.graph.get(next(iter(touched)))
            if target is None or target.kind != SymbolKind.FIELD or target.owner != mutex.owner:
                continue
            replacement = atomic_replacement(target.type)
            if replacement is None:
                continue
            self.result.add(
                make_finding(
                    Category.CONCURRENCY,
                    "unnecessary-lock",
                    mutex.span,
                    f"{mutex.name} only guards the scalar field {target.name}",
                    severity=Severity.LOW,
                    suggestion=f"make {target.name} an {replacement} and drop {mutex.name}",
                    evidence={
                        "mutex": mutex.name,
                        "field": target.name,
                        "field_type": str(target.type),
                        "regions": len(regions),
                        "replacement": replacement,
                    },
                    symbol=mutex.handle,
                )
            )

    # ── false-sharing ─────────────────────────────────────

    def _check_false_sharing(self) -> None:
        calculator = LayoutCalculator(self.graph)
        for symbol in sorted(self.graph.symbols(SymbolKind.STRUCT), key=lambda s: s.handle):
            if not symbol.resolved:
                continue
            with self.result.isolate(symbol.handle, symbol.span):
                self._check_struct_sharing(symbol, calculator)

    def _check_struct_sharing(self, symbol: Symbol, calculator: LayoutCalculator) -> None:
        layout = calculator.layout(symbol)
        pairs = self._sharing_pairs(symbol, {f.name: f.offset for f in layout.fields})
        if not pairs:
            return
        (a, off_a), (b, off_b) = pairs[0]
        self.result.add(
            make_finding(
                Category.CONCURRENCY,
                "false-sharing",
                symbol.span,
                f"{symbol.name}.{a} (offset {off_a}) and {symbol.name}.{b} (offset {off_b}) "
                f"are written concurrently within one {CACHE_LINE}-byte cache line",
                severity=Severity.MEDIUM,
                suggestion=f"pad {b} onto its own cache line or split the struct",
                evidence={
                    "field_a": a,
                    "offset_a": off_a,
                    "field_b": b,
                    "offset_b": off_b,
                    "pairs": [
                        {"field_a": pa, "offset_a": oa, "field_b": pb, "offset_b": ob}
                        for (pa, oa), (pb, ob) in pairs
                    ],
                },
                symbol=symbol.handle,
            )
        )

    def _write_guards(self, handle: str) -> set[str]:
        return {s.guard for s in self.index.for_target(handle) if s.write}

    def _sharing_candidates(self, symbol: Symbol) -> list[tuple[Symbol, set[str], str]]:
        """(field, writers, kind) for atomic, mutex and lock-guarded fields."""
        out = []
        for fsym in self.graph.fields_of(symbol.handle):
            if fsym.type is None or fsym.name == "_":
                continue
            writers = self.index.writers(fsym.handle)
            if is_atomic_type(fsym.type):
                out.append((fsym, writers or {"*"}, "atomic"))
            elif is_mutex_type(fsym.type):
                if writers:
                    out.append((fsym, writers, "mutex"))
            elif writers and "" not in self._write_guards(fsym.handle):
                out.append((fsym, writers, "guarded"))
        return out

    def _distinct(self, wa: set[str], wb: set[str]) -> bool:
        for a in wa:
            for b in wb:
                if a != b or a == "*" or self.index.is_multi_unit(a):
                    return True
        return False

    def _sharing_pairs(
        self, symbol: Symbol, offsets: dict[str, int]
    ) -> list[tuple[tuple[str, int], tuple[str, int]]]:
        candidates = sorted(
            self._sharing_candidates(symbol), key=lambda c: offsets.get(c[0].name, 0)
        )
        pairs = []
        for i, (fa, wa, kind_a) in enumerate(candidates):
            for fb, wb, kind_b in candidates[i + 1:]:
                off_a, off_b = offsets[fa.name], offsets[fb.name]
                if off_b - off_a >= CACHE_LINE:
                    continue
                guards_a = self._write_guards(fa.handle)
                guards_b = self._write_guards(fb.handle)
                if kind_a == "guarded" and kind_b == "guarded" and guards_a == guards_b:
                    continue
                if kind_a == "mutex" and kind_b == "guarded" and guards_b == {fa.handle}:
                    continue
                if kind_b == "mutex" and kind_a == "guarded" and guards_a == {fb.handle}:
                    continue
                if not self._distinct(wa, wb):
                    continue
                pairs.append(((fa.name, off_a), (fb.name, off_b)))
        pairs.sort(key=lambda p: (p[1][1] - p[0][1], p[0][1]))
        return pairs

    # ── channel-collect ───────────────────────────────────

    def _unit_locals(self, unit: ExecutionUnit) -> frozenset[str]:
        if unit.closure is not None:
            return local_names(unit.closure)
        callee = self.graph.get(unit.callee)
        names = frozenset(p.name for p in callee.params if p.name) if callee else frozenset()
        return names | local_names(unit.body)

    def _launcher_key(self, unit: ExecutionUnit, key: str, locals_: frozenset[str]) -> str:
        """Translate a unit-side expression key into the launcher's terms."""
        head, dot, rest = key.partition(".")
        if unit.closure is not None:
            bound = unit.bindings()
            if head in bound:
                return bound[head] + dot + rest
            return "" if head in locals_ else key
        callee = self.graph.get(unit.callee)
        if callee is None:
            return ""
        args = [expr_key(a) for a in call_args(unit.call)]
        for param, arg in zip(callee.params, args):
            if param.name == head:
                return arg + dot + rest
        return ""

    def _loop_derived(self, unit: ExecutionUnit) -> set[str]:
        derived = set(unit.loop_vars) if unit.closure is not None else set()
        if unit.closure is not None:
            derived.update(p for p, arg in unit.bindings().items() if arg in unit.loop_vars)
        else:
            callee = self.graph.get(unit.callee)
            if callee is not None:
                args = [expr_key(a) for a in call_args(unit.call)]
                derived.update(
                    p.name for p, arg in zip(callee.params, args) if arg in unit.loop_vars
                )
        for node in walk_skip_closures(unit.body):
            if node.kind == "assign" and any(
                n.kind == "ident" and n.name in derived
                for rhs in node.fields("rhs")
                for n in rhs.walk()
            ):
                derived.update(declared_names(node))
                derived.update(expr_key(lhs) for lhs in node.fields("lhs") if lhs.kind == "ident")
        return derived

    def _sends(self, unit: ExecutionUnit) -> list[Node]:
        return [n for n in walk_skip_closures(unit.body) if n.kind == "send"]

    def _channel_escapes(self, body: Node, name: str, unit_calls: set[int]) -> bool:
        for node in walk_skip_closures(body):
            if node.kind == "return" and any(
                expr_key(r) == name for r in node.fields("result")
            ):
                return True
            if node.kind == "call" and id(node) not in unit_calls and call_name(node) not in {
                "close", "len", "cap"
            }:
                if any(expr_key(a) == name for a in call_args(node)):
                    return True
        return False

    def _check_channel_collect(self, unit: ExecutionUnit) -> None:
        if not unit.in_loop:
            return
        sends = self._sends(unit)
        if len(sends) != 1:
            return
        send = sends[0]
        locals_ = self._unit_locals(unit)
        chan = self._launcher_key(unit, expr_key(send.field("ch")), locals_)
        if not chan:
            return
        derived = self._loop_derived(unit)
        value = send.field("value")
        if value is None or not any(n.kind == "ident" and n.name in derived for n in value.walk()):
            return
        launcher = self.graph.get(unit.function)
        if launcher is None or launcher.body is None:
            return
        made = dict(_make_chan_sites(launcher.body))
        if chan not in made:
            return
        unit_calls = {id(u.call) for u in self.graph.execution_units() if u.function == unit.function}
        if self._channel_escapes(launcher.body, chan, unit_calls):
            return
        if not any(_is_receive_of(n, chan) for n in walk_skip_closures(launcher.body)):
            return
        for other in self.graph.execution_units():
            if other.id == unit.id or other.function != unit.function or other.body is None:
                continue
            if any(
                _is_receive_of(n, self._launcher_key(other, expr_key(n.field("x")), self._unit_locals(other)))
                for n in walk_skip_closures(other.body)
                if n.kind in {"unary", "range"}
            ):
                return
        self.result.add(
            make_finding(
                Category.CONCURRENCY,
                "channel-collect",
                made[chan].span,
                f"channel {chan} only collects one result per goroutine launched in the loop",
                severity=Severity.LOW,
                suggestion=(
                    f"drop {chan}; write each result into a pre-sized slice at the loop index "
                    "and wait with a sync.WaitGroup"
                ),
                evidence={"channel": chan, "unit": unit.id},
                symbol=unit.function,
            )
        )

    # ── leak-risk ─────────────────────────────────────────

    def _leak(self, node: Node, unit_or_fn: str, message: str, suggestion: str, **evidence) -> None:
        self.result.add(
            make_finding(
                Category.CONCURRENCY,
                "leak-risk",
                node.span,
                message,
                severity=Severity.HIGH,
                suggestion=suggestion,
                evidence={"scope": unit_or_fn, **evidence},
                symbol=unit_or_fn,
            )
        )

    def _check_unit_leaks(self, unit: ExecutionUnit) -> None:
        body = unit.body
        done_calls = [
            n for n in walk_skip_closures(body) if call_name(n) == "sync.WaitGroup.Done"
        ]
        if done_calls:
            exits = unreleased_exits(body, lambda n: call_name(n) == "sync.WaitGroup.Done")
            if exits:
                self._leak(
                    done_calls[0],
                    unit.id,
                    f"WaitGroup.Done is skipped on {len(exits)} exit path(s) of the goroutine",
                    "call defer wg.Done() at the top of the goroutine",
                    exits=[e.line for e in exits],
                )

        for loop in walk_skip_closures(body):
            if is_infinite_loop(loop) and not has_cancellation(loop):
                self._leak(
                    loop,
                    unit.id,
                    "goroutine runs an unconditional for loop with no way to stop",
                    "select on ctx.Done() or a quit channel and return",
                )

        self._check_unbuffered_sends(unit)

    def _check_unbuffered_sends(self, unit: ExecutionUnit) -> None:
        launcher = self.graph.get(unit.function)
        if launcher is None or launcher.body is None:
            return
        made = dict(_make_chan_sites(launcher.body))
        locals_ = self._unit_locals(unit)
        unit_calls = {id(u.call) for u in self.graph.execution_units() if u.function == unit.function}
        for send in self._sends(unit):
            chan = self._launcher_key(unit, expr_key(send.field("ch")), locals_)
            if chan not in made or not _is_unbuffered(made[chan]):
                continue
            if self._channel_escapes(launcher.body, chan, unit_calls):
                continue

            def launched(node: Node, call: Node = unit.call) -> bool:
                return node is call or (node.kind == "go" and node.field("call") is call)

            exits = unreleased_exits(
                launcher.body, lambda n, c=chan: _is_receive_of(n, c), acquire=launched
            )
            if exits:
                self._leak(
                    send,
                    unit.id,
                    f"goroutine sends on unbuffered channel {chan} but {launcher.name} can "
                    "return before receiving",
                    f"give {chan} a buffer of one or receive on every return path",
                    channel=chan,
                    exits=[e.line for e in exits],
                )

    def _check_lock_release(self, body: Node, function: Symbol) -> None:
        nodes = list(walk_skip_closures(body))
        for lock in nodes:
            if lock.kind != "call" or not is_mutex_call(lock, LOCK_METHODS):
                continue
            key = expr_key(receiver(lock))
            release_name = _RELEASE_FOR[method_name(lock)]

            def releases(node: Node, key: str = key, release_name: str = release_name) -> bool:
                return (
                    node.kind == "call"
                    and is_mutex_call(node, frozenset({release_name}))
                    and expr_key(receiver(node)) == key
                )

            if not any(releases(n) for n in nodes):
                # Released by another function (lock handoff).
                continue
            exits = unreleased_exits(body, releases, acquire=lambda n, lock=lock: n is lock)
            if exits:
                self._leak(
                    lock,
                    function.handle,
                    f"{key}.{release_name} is not reached on {len(exits)} exit path(s) "
                    f"of {function.name}",
                    f"defer {key}.{release_name}() right after locking",
                    exits=[e.line for e in exits],
                )

    # ── unguarded-write / loop-var-capture ────────────────

    def _check_unguarded_writes(self) -> None:
        reported: set[tuple[str, str]] = set()
        for site in self.index.sites:
            if not site.unit or not site.write or site.context != AccessContext.GOROUTINE:
                continue
            unit = self.index.units.get(site.unit)
            if unit is None or (site.is_field and unit.closure is None):
                continue
            key = (site.unit, site.target)
            if key in reported:
                continue
            # Launcher accesses are usually ordered by wg.Wait or a channel receive.
            others = [
                s for s in self.index.for_target(site.target) if s.unit and s.unit != site.unit
            ]
            if not unit.in_loop and not others:
                continue
            reported.add(key)
            name = site.target.rpartition("#")[2] if not site.is_field else site.target.rpartition(".")[2]
            self.result.add(
                make_finding(
                    Category.CONCURRENCY,
                    "unguarded-write",
                    site.span,
                    f"goroutine writes {name} without a lock, atomic operation or "
                    "per-goroutine index",
                    severity=Severity.HIGH,
                    suggestion="guard the write with a mutex, use sync/atomic, or give each "
                    "goroutine its own slot",
                    evidence={"target": site.target, "unit": site.unit, "in_loop": unit.in_loop},
                    symbol=site.function,
                )
            )

    def _check_loop_var_capture(self, unit: ExecutionUnit) -> None:
        if unit.closure is None or not unit.loop_vars:
            return
        shadowed = local_names(unit.closure)
        for node in walk_skip_closures(unit.body):
            if node.kind == "ident" and node.name in unit.loop_vars and node.name not in shadowed:
                self.result.add(
                    make_finding(
                        Category.CONCURRENCY,
                        "loop-var-capture",
                        unit.span,
                        f"goroutine captures loop variable {node.name}, which every "
                        f"iteration shares before Go {PER_ITERATION_LOOP_VARS}",
                        severity=Severity.HIGH,
                        suggestion=f"pass {node.name} as an argument to the goroutine",
                        evidence={"variable": node.name, "target_version": str(self.config.target_version)},
                        symbol=unit.function,
                    )
                )
                return


def run(graph: SymbolGraph, config: AnalysisConfig) -> PassResult:
    return ConcurrencyAuditor(graph, config).run()


__all__ = ["ATOMIC_REPLACEMENTS", "ConcurrencyAuditor", "atomic_replacement", "run"]
