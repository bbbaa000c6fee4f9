"""Join analyzer outputs into one ordered, de-duplicated finding list."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable

from goaudit.core.enums import Severity
from goaudit.engine.findings import Finding, PassResult

logger = logging.getLogger(__name__)


def _sort_key(finding: Finding) -> tuple:
    span = finding.span
    return (span.file, span.line, span.column, finding.category.value, finding.rule_id, finding.message)


def aggregate(
    results: Iterable[PassResult],
    *,
    min_severity: Severity = Severity.INFO,
) -> tuple[Finding, ...]:
    """Merge pass results; input order does not affect the output.

    Duplicates (same category, span and rule) keep their highest severity.
    Findings at a span reported by more than one pass are raised to the
    highest severity seen at that span.
    """
    best: dict[tuple, Finding] = {}
    total = 0
    sources: dict[tuple[str, int, int], set[str]] = defaultdict(set)
    for result in results:
        for finding in result.findings:
            total += 1
            sources[finding.span.key()].add(result.name)
            current = best.get(finding.dedupe_key)
            if current is None or (finding.severity, _sort_key(current)) > (
                current.severity, _sort_key(finding)
            ):
                best[finding.dedupe_key] = finding

    peak: dict[tuple[str, int, int], Severity] = {}
    for finding in best.values():
        key = finding.span.key()
        peak[key] = max(peak.get(key, Severity.INFO), finding.severity)

    merged: list[Finding] = []
    for finding in best.values():
        key = finding.span.key()
        if len(sources[key]) > 1 and finding.severity < peak[key]:
            finding = finding.with_severity(peak[key])
        if finding.severity < min_severity:
            continue
        merged.append(finding)

    merged.sort(key=_sort_key)
    logger.debug(
        "Aggregated %d findings (%d after dedupe, %d kept)",
        total, len(best), len(merged),
    )
    return tuple(merged)


__all__ = ["aggregate"]
