"""Run orchestration: build the graph once, run passes in parallel, join."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from goaudit.core.config import AnalysisConfig
from goaudit.core.enums import Category, DiagnosticKind
from goaudit.core.errors import ConfigurationError
from goaudit.core.fallbacks import log_best_effort_failure
from goaudit.engine import aggregate as aggregate_mod
from goaudit.engine.detectors import comments, concurrency, entropy, layout, patterns
from goaudit.engine.findings import Diagnostic, Finding, PassResult
from goaudit.engine.symbols import SymbolGraph, build_symbol_graph
from goaudit.program.model import Program

logger = logging.getLogger(__name__)

PassRunner = Callable[[SymbolGraph, AnalysisConfig], PassResult]


@dataclass(frozen=True)
class PassSpec:
    name: str
    categories: frozenset[Category]
    runner: PassRunner


PASSES: tuple[PassSpec, ...] = (
    PassSpec("layout", frozenset({Category.LAYOUT, Category.ALLOCATION}), layout.run),
    PassSpec("concurrency", frozenset({Category.CONCURRENCY}), concurrency.run),
    PassSpec(
        "patterns",
        frozenset({Category.MODERNIZATION, Category.ALLOCATION}),
        patterns.run,
    ),
    PassSpec("entropy", frozenset({Category.ENTROPY}), entropy.run),
    PassSpec("comments", frozenset({Category.COMMENT}), comments.run),
)


@dataclass(frozen=True)
class AnalysisResult:
    findings: tuple[Finding, ...]
    diagnostics: tuple[Diagnostic, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def enabled_passes(config: AnalysisConfig) -> list[PassSpec]:
    return [spec for spec in PASSES if spec.categories & config.categories]


def _collect(future: Future, spec: PassSpec) -> PassResult:
    try:
        return future.result()
    except Exception as exc:  # one failed pass must not lose the others
        log_best_effort_failure(logger, f"pass {spec.name}", exc, level=logging.WARNING)
        failed = PassResult(spec.name)
        failed.diagnose(
            DiagnosticKind.PASS_FAILURE, spec.name, f"{type(exc).__name__}: {exc}"
        )
        return failed


def run_passes(
    graph: SymbolGraph,
    config: AnalysisConfig,
    passes: list[PassSpec] | None = None,
) -> list[PassResult]:
    """Run passes concurrently; results come back in pass order."""
    specs = enabled_passes(config) if passes is None else passes
    if not specs:
        return []
    results: dict[str, PassResult] = {}
    with ThreadPoolExecutor(max_workers=min(config.max_workers, len(specs))) as executor:
        futures = {executor.submit(spec.runner, graph, config): spec for spec in specs}
        for future in as_completed(futures):
            spec = futures[future]
            results[spec.name] = _collect(future, spec)
            logger.debug(
                "Pass %s done: %d findings, %d diagnostics",
                spec.name, len(results[spec.name].findings), len(results[spec.name].diagnostics),
            )
    return [results[spec.name] for spec in specs]


def run_analysis(program: Program, config: AnalysisConfig) -> AnalysisResult:
    """Analyze one program; partial results win over aborting."""
    if not isinstance(program, Program):
        raise ConfigurationError(f"expected a Program, got {type(program).__name__}")
    if not isinstance(config, AnalysisConfig):
        raise ConfigurationError(f"expected an AnalysisConfig, got {type(config).__name__}")

    graph = build_symbol_graph(program, config)
    results = run_passes(graph, config)
    for result in results:
        # A pass may emit a sibling category; honor the selection here too.
        result.findings[:] = [f for f in result.findings if config.enabled(f.category)]

    findings = aggregate_mod.aggregate(results, min_severity=config.min_severity)
    diagnostics = list(graph.diagnostics)
    for result in results:
        diagnostics.extend(result.diagnostics)
    logger.info(
        "Analysis finished: %d findings, %d diagnostics", len(findings), len(diagnostics)
    )
    return AnalysisResult(findings=findings, diagnostics=tuple(diagnostics))


__all__ = [
    "AnalysisResult",
    "PASSES",
    "PassSpec",
    "enabled_passes",
    "run_analysis",
    "run_passes",
]
