"""Finding and diagnostic records plus their builders."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from goaudit.core.enums import Category, DiagnosticKind, Severity
from goaudit.core.errors import InternalInvariantError, ResolutionError
from goaudit.core.fallbacks import log_best_effort_failure
from goaudit.program.model import Span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Finding:
    category: Category
    rule_id: str
    severity: Severity
    span: Span
    message: str
    suggestion: str | None = None
    evidence: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, hash=False
    )
    symbol: str = ""

    @property
    def dedupe_key(self) -> tuple[str, tuple[str, int, int], str]:
        return (self.category.value, self.span.key(), self.rule_id)

    def with_severity(self, severity: Severity) -> Finding:
        return replace(self, severity=severity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "rule_id": self.rule_id,
            "severity": self.severity.label,
            "file": self.span.file,
            "line": self.span.line,
            "column": self.span.column,
            "message": self.message,
            "suggestion": self.suggestion,
            "symbol": self.symbol,
            "evidence": dict(self.evidence),
        }


@dataclass(frozen=True)
class Diagnostic:
    """A skipped or degraded symbol, kept apart from findings."""

    kind: DiagnosticKind
    handle: str
    message: str
    span: Span | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "kind": self.kind.value,
            "handle": self.handle,
            "message": self.message,
        }
        if self.span is not None:
            out.update(file=self.span.file, line=self.span.line, column=self.span.column)
        return out


@dataclass
class PassResult:
    """Output collection owned by exactly one analyzer pass."""

    name: str
    findings: list[Finding] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def add(self, finding: Finding) -> None:
        self.findings.append(finding)

    def diagnose(
        self, kind: DiagnosticKind, handle: str, message: str, span: Span | None = None
    ) -> None:
        self.diagnostics.append(Diagnostic(kind, handle, message, span))

    @contextmanager
    def isolate(self, handle: str, span: Span | None = None) -> Iterator[None]:
        """Run one symbol's analysis; a failure skips only that symbol."""
        try:
            yield
        except ResolutionError as exc:
            logger.debug("%s: skipping %s: %s", self.name, exc.handle, exc.reason)
            self.diagnose(DiagnosticKind.RESOLUTION, exc.handle, exc.reason, span)
        except InternalInvariantError as exc:
            logger.error("%s: invariant violated for %s: %s", self.name, exc.handle, exc.detail)
            self.diagnose(DiagnosticKind.INTERNAL, exc.handle, exc.detail, span)
        except Exception as exc:
            log_best_effort_failure(
                logger, f"{self.name} analysis of {handle}", exc, level=logging.WARNING
            )
            self.diagnose(DiagnosticKind.INTERNAL, handle, f"{type(exc).__name__}: {exc}", span)


def make_finding(
    category: Category | str,
    rule_id: str,
    span: Span,
    message: str,
    *,
    severity: Severity = Severity.LOW,
    suggestion: str | None = None,
    evidence: Mapping[str, Any] | None = None,
    symbol: str = "",
) -> Finding:
    """Create an immutable finding; ``rule_id`` is namespaced by category."""
    cat = Category(category)
    qualified = rule_id if "/" in rule_id else f"{cat.value}/{rule_id}"
    return Finding(
        category=cat,
        rule_id=qualified,
        severity=severity,
        span=span,
        message=message,
        suggestion=suggestion,
        evidence=MappingProxyType(dict(evidence or {})),
        symbol=symbol,
    )


__all__ = ["Diagnostic", "Finding", "PassResult", "make_finding"]
