"""Tests for the comment auditor and its word helpers."""

from __future__ import annotations

import pytest

from goaudit.core.config import build_config
from goaudit.core.enums import Severity
from goaudit.engine.detectors import comments
from goaudit.engine.detectors.comments import (
    clean_comment,
    content_stems,
    doc_body,
    referenced_names,
    split_identifier,
    starts_with_name,
    stem,
)
from goaudit.tests.builders import (
    FILE,
    PKG,
    block,
    comment,
    call,
    expr,
    func,
    graph,
    ident,
    inc,
    sel,
    struct,
)


def _run(*decls, notes=(), **config):
    return comments.run(graph(*decls, comments=tuple(notes), **config), build_config(**config))


# ── helpers ───────────────────────────────────────────────


@pytest.mark.parametrize(
    "name, words",
    [
        ("parseHTTPHeader", ["parse", "http", "header"]),
        ("DoThing", ["do", "thing"]),
        ("maxRetries2", ["max", "retries", "2"]),
    ],
)
def test_split_identifier(name, words):
    assert split_identifier(name) == words


@pytest.mark.parametrize(
    "word, expected",
    [("entries", "entry"), ("returns", "return"), ("loading", "load"), ("class", "class"), ("is", "is")],
)
def test_stem(word, expected):
    assert stem(word) == expected


def test_content_stems_drop_stop_words():
    assert content_stems("DoThing does the thing.") == ["thing", "thing"]


def test_clean_comment_strips_markers():
    assert clean_comment("// Cache holds entries.") == "Cache holds entries."
    assert clean_comment("/* one\n * two */") == "one\ntwo"


def test_doc_body_skips_deprecated_paragraph():
    doc = "// Deprecated: use Open.\n//\n// Dial connects to addr."
    assert doc_body(doc) == "Dial connects to addr."


def test_starts_with_name_allows_articles():
    assert starts_with_name("A Cache holds entries.", "Cache")
    assert starts_with_name("Cache's size is fixed.", "Cache")
    assert not starts_with_name("Holds entries.", "Cache")


def test_referenced_names():
    text = "Flush calls `writeBatch` and then [Cache.Reset]; see also lastSeen."
    assert referenced_names(text) == ["writeBatch", "Cache.Reset", "lastSeen"]


# ── doc comments ──────────────────────────────────────────


def test_restating_doc_is_content_free():
    [finding] = _run(func("DoThing", doc="// DoThing does the thing.")).findings
    assert finding.rule_id == "comment/content-free"
    assert finding.evidence["novel_words"] == []


def test_informative_doc_is_fine():
    doc = "// DoThing retries the upload until the deadline passes."
    assert _run(func("DoThing", doc=doc)).findings == []


def test_novel_word_allowance():
    doc = "// GetName returns the name, trimmed."
    assert _run(func("GetName", doc=doc)).findings == []
    [finding] = _run(func("GetName", doc=doc), max_novel_words=1).findings
    assert finding.evidence["novel_words"] == ["trimm"]


def test_missing_doc_on_exported_symbols_only():
    result = _run(
        func("Open"),
        func("open"),
        struct("cursor", ("pos", "int")),
        func("Next", receiver="*cursor"),
    )
    [finding] = result.findings
    assert finding.rule_id == "comment/missing-doc"
    assert finding.symbol == f"{PKG}.Open"


def test_test_files_need_no_docs():
    assert _run(func("TestOpen", file="store/store_test.go")).findings == []


def test_doc_must_begin_with_name():
    [finding] = _run(func("Size", doc="// Returns how many entries are cached.")).findings
    assert finding.rule_id == "comment/doc-name-prefix"
    assert finding.severity == Severity.INFO


def test_stale_reference_in_doc():
    doc = "// Flush writes pending entries through `writeBatch`."
    [finding] = _run(func("Flush", doc=doc)).findings
    assert finding.rule_id == "comment/stale-reference"
    assert finding.evidence["missing"] == ["writeBatch"]
    assert finding.severity == Severity.MEDIUM

    assert _run(func("Flush", doc=doc), func("writeBatch")).findings == []


def test_qualified_references():
    cache = struct("Cache", ("size", "int"), doc="// Cache holds recently used entries.")
    reset = func("Reset", receiver="*Cache", doc="// Reset empties the cache before reuse.")
    doc = "// Evict drops an entry; see [Cache.Reset], [Cache.Purge] and [bytes.Buffer]."
    result = _run(cache, reset, func("Evict", doc=doc))
    [finding] = result.findings
    assert finding.evidence["missing"] == ["Cache.Purge"]


# ── inline comments ───────────────────────────────────────


def _counter_method(*stmts):
    return (
        struct("Counter", ("hits", "int"), doc="// Counter tracks cache lookups for metrics."),
        func("Hit", receiver="*Counter", body=block(*stmts),
             doc="// Hit records a lookup that found its entry."),
    )


def test_inline_comment_restating_the_statement():
    stmt = inc(sel(ident("c", type="*Counter"), "hits"))
    note = comment("// increment hits", line=stmt.span.line, scope=f"{PKG}.Counter.Hit")
    [finding] = _run(*_counter_method(stmt), notes=[note]).findings
    assert finding.rule_id == "comment/content-free"
    assert finding.span.line == stmt.span.line


def test_inline_comment_with_reasoning_is_fine():
    stmt = inc(sel(ident("c", type="*Counter"), "hits"))
    note = comment("// readers poll this without the lock, so keep it word sized",
                   line=stmt.span.line, scope=f"{PKG}.Counter.Hit")
    assert _run(*_counter_method(stmt), notes=[note]).findings == []


def test_directives_are_ignored():
    stmt = expr(call("flush"))
    note = comment("//nolint:errcheck", line=stmt.span.line, scope=f"{PKG}.Counter.Hit")
    assert _run(*_counter_method(stmt), notes=[note]).findings == []


def test_inline_stale_reference():
    stmt = expr(call("flush"))
    note = comment("// must run after `resetStats`", line=stmt.span.line,
                   scope=f"{PKG}.Counter.Hit", file=FILE)
    [finding] = _run(*_counter_method(stmt), notes=[note]).findings
    assert finding.rule_id == "comment/stale-reference"
    assert finding.evidence["missing"] == ["resetStats"]


def test_product_names_are_not_code_references():
    doc = "// Connect opens a PostgreSQL connection pool, as GitHub and JavaScript clients do."
    assert _run(func("Connect", doc=doc)).findings == []


def test_bare_name_from_another_package_is_stale():
    doc = "// Flush writes pending entries through writeBatch."
    wal = func("writeBatch", package="example.com/app/wal", file="wal/wal.go")
    [finding] = _run(func("Flush", doc=doc), wal).findings
    assert finding.evidence["missing"] == ["writeBatch"]
    assert _run(func("Flush", doc=doc)).findings == []
