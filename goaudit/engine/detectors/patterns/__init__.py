"""PatternMatcher: version-gated structural rules over function bodies.

Rules live in ``rules.py`` as data; ``matchers.py`` holds the predicates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from goaudit.core.config import AnalysisConfig
from goaudit.engine.detectors.patterns.matchers import MatchContext
from goaudit.engine.detectors.patterns.rules import (
    DECL_SCOPE,
    PATTERN_RULES,
    PatternRule,
)
from goaudit.engine.findings import PassResult, make_finding
from goaudit.engine.symbols import Symbol, SymbolGraph
from goaudit.engine.syntax import LOOP_KINDS
from goaudit.program.model import Declaration, Node

logger = logging.getLogger(__name__)


def _walk_with_depth(body: Node) -> Iterator[tuple[Node, int]]:
    """(node, loop depth); a func literal starts again at depth 0."""
    stack: list[tuple[Node, int]] = [(body, 0)]
    while stack:
        node, depth = stack.pop()
        yield node, depth
        if node.kind == "func_lit":
            inner = 0
        elif node.kind in LOOP_KINDS:
            inner = depth + 1
        else:
            inner = depth
        for child in reversed(node.children):
            nested = inner if node.kind not in LOOP_KINDS or child.role == "body" else depth
            stack.append((child, nested))


class PatternMatcher:
    def __init__(
        self,
        graph: SymbolGraph,
        config: AnalysisConfig,
        rules: tuple[PatternRule, ...] = PATTERN_RULES,
    ) -> None:
        self.graph = graph
        self.config = config
        self.rules = tuple(r for r in rules if self._applies(r))
        self.result = PassResult("patterns")
        self._by_kind: dict[str, list[PatternRule]] = {}
        for rule in self.rules:
            if rule.scope == DECL_SCOPE:
                continue
            for kind in rule.node_kinds:
                self._by_kind.setdefault(kind, []).append(rule)

    def _applies(self, rule: PatternRule) -> bool:
        if not self.config.enabled(rule.category):
            return False
        if rule.min_version > self.config.target_version:
            logger.debug(
                "Rule %s needs Go %s (target %s); skipped",
                rule.rule_id, rule.min_version, self.config.target_version,
            )
            return False
        return True

    def run(self) -> PassResult:
        decl_rules = [r for r in self.rules if r.scope == DECL_SCOPE]
        if decl_rules:
            for decl in self.graph.program.declarations:
                with self.result.isolate(decl.handle, decl.span):
                    self._scan_decl(decl, decl_rules)
        if self._by_kind:
            for fn in sorted(self.graph.callables(), key=lambda s: s.handle):
                with self.result.isolate(fn.handle, fn.span):
                    self._scan_body(fn)
        return self.result

    def _scan_decl(self, decl: Declaration, rules: list[PatternRule]) -> None:
        ctx = MatchContext(self.graph, self.graph.get(decl.handle), decl.package)
        for rule in rules:
            for span, subject in rule.matcher(decl, ctx):
                self._emit(rule, span, subject, decl.handle)

    def _scan_body(self, fn: Symbol) -> None:
        for node, depth in _walk_with_depth(fn.body):
            rules = self._by_kind.get(node.kind)
            if not rules:
                continue
            ctx = MatchContext(self.graph, fn, fn.package, depth)
            for rule in rules:
                for span, subject in rule.matcher(node, ctx):
                    self._emit(rule, span, subject, fn.handle)

    def _emit(self, rule: PatternRule, span, subject: str, symbol: str) -> None:
        self.result.add(
            make_finding(
                rule.category,
                rule.rule_id,
                span,
                rule.describe(subject),
                severity=rule.severity,
                suggestion=f"use {rule.replacement}",
                evidence={
                    "replacement": rule.replacement,
                    "min_version": str(rule.min_version),
                    "match": subject,
                },
                symbol=symbol,
            )
        )


def run(graph: SymbolGraph, config: AnalysisConfig) -> PassResult:
    return PatternMatcher(graph, config).run()


__all__ = ["PatternMatcher", "run"]
