"""Tests for merging pass results."""

from __future__ import annotations

from goaudit.core.enums import Category, Severity
from goaudit.engine.aggregate import aggregate
from goaudit.engine.findings import PassResult, make_finding
from goaudit.program.model import Span


def _finding(category, rule, line, severity=Severity.LOW, file="a.go", column=1):
    return make_finding(category, rule, Span(file, line, column), f"{rule} at {line}",
                        severity=severity)


def _result(name, *findings):
    result = PassResult(name)
    result.findings.extend(findings)
    return result


def test_duplicates_keep_highest_severity():
    merged = aggregate([
        _result(
            "patterns",
            _finding(Category.ALLOCATION, "defer-in-loop", 4),
            _finding(Category.ALLOCATION, "defer-in-loop", 4, Severity.HIGH),
        )
    ])
    [finding] = merged
    assert finding.severity == Severity.HIGH


def test_span_reported_by_two_passes_is_escalated():
    layout = _result("layout", _finding(Category.LAYOUT, "field-order", 10))
    concurrency = _result(
        "concurrency", _finding(Category.CONCURRENCY, "false-sharing", 10, Severity.HIGH)
    )
    merged = aggregate([layout, concurrency])
    assert [f.rule_id for f in merged] == ["concurrency/false-sharing", "layout/field-order"]
    assert {f.severity for f in merged} == {Severity.HIGH}


def test_one_pass_at_a_span_is_not_escalated():
    merged = aggregate([
        _result(
            "patterns",
            _finding(Category.MODERNIZATION, "range-over-int", 7, Severity.INFO),
            _finding(Category.ALLOCATION, "string-concat-in-loop", 7, Severity.MEDIUM),
        )
    ])
    assert [f.severity for f in merged] == [Severity.MEDIUM, Severity.INFO]


def test_min_severity_applies_after_escalation():
    layout = _result("layout", _finding(Category.LAYOUT, "field-order", 3, Severity.INFO))
    entropy = _result("entropy", _finding(Category.ENTROPY, "dead-export", 3, Severity.MEDIUM))
    comments = _result("comments", _finding(Category.COMMENT, "missing-doc", 9, Severity.LOW))
    merged = aggregate([layout, entropy, comments], min_severity=Severity.MEDIUM)
    assert [f.rule_id for f in merged] == ["entropy/dead-export", "layout/field-order"]


def test_order_is_by_location_then_category():
    findings = [
        _finding(Category.COMMENT, "missing-doc", 2, file="b.go"),
        _finding(Category.LAYOUT, "field-order", 9, file="a.go"),
        _finding(Category.COMMENT, "content-free", 2, file="a.go", column=5),
        _finding(Category.ALLOCATION, "map-without-size-hint", 2, file="a.go", column=5),
    ]
    merged = aggregate([_result("mixed", *findings)])
    assert [(f.span.file, f.span.line, f.rule_id) for f in merged] == [
        ("a.go", 2, "allocation/map-without-size-hint"),
        ("a.go", 2, "comment/content-free"),
        ("a.go", 9, "layout/field-order"),
        ("b.go", 2, "comment/missing-doc"),
    ]


def test_input_order_does_not_matter():
    a = _result("layout", _finding(Category.LAYOUT, "field-order", 1),
                _finding(Category.LAYOUT, "hot-cold", 5))
    b = _result("entropy", _finding(Category.ENTROPY, "thin-wrapper", 5, Severity.MEDIUM))
    assert aggregate([a, b]) == aggregate([b, a])


def test_empty_input():
    assert aggregate([]) == ()
