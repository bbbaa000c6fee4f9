"""Tests for the structural entropy auditor."""

from __future__ import annotations

from goaudit.core.config import build_config
from goaudit.core.enums import Severity
from goaudit.engine.detectors import entropy
from goaudit.tests.builders import (
    PKG,
    assign,
    block,
    call,
    expr,
    func,
    graph,
    ident,
    interface,
    lit,
    ret,
    rule_ids,
    sel,
    struct,
)


def _run(*decls, entry_points=("exported",), main=(), **config):
    config["entry_points"] = list(entry_points)
    return entropy.run(graph(*decls, main=main, **config), build_config(**config))


def _getter(type_name: str, receiver: str = "*Mem", file: str | None = None):
    kwargs = {"file": file} if file else {}
    return (
        struct(type_name, ("data", "map[string]int"), **kwargs),
        func("Get", receiver=receiver, params=(("key", "string"),), results=("int",), **kwargs),
    )


_STORE = interface("Store", ("Get", "(key string) int"))


# ── interfaces ────────────────────────────────────────────


def test_single_implementation():
    result = _run(_STORE, *_getter("Mem"))
    [finding] = result.findings
    assert finding.rule_id == "entropy/single-implementation"
    assert finding.evidence["implementation"] == f"{PKG}.Mem"


def test_second_implementation_clears_the_finding():
    assert _run(_STORE, *_getter("Mem"), *_getter("Disk", receiver="*Disk")).findings == []


def test_test_double_counts_as_second_implementation():
    fake = _getter("fakeStore", receiver="*fakeStore", file="store/store_test.go")
    assert _run(_STORE, *_getter("Mem"), *fake).findings == []


def test_large_interface():
    wide = interface("Backend", *((name, "()") for name in ("Open", "Close", "Read", "Write", "Sync")))
    result = _run(wide)
    assert rule_ids(result) == ["entropy/large-interface"]
    assert result.findings[0].evidence["methods"] == ["Close", "Open", "Read", "Sync", "Write"]


def test_interface_below_limit():
    narrow = interface("Backend", ("Open", "()"), ("Close", "()"))
    assert _run(narrow).findings == []
    assert rule_ids(_run(narrow, large_interface_methods=2)) == ["entropy/large-interface"]


# ── dead exports ──────────────────────────────────────────


def test_unreachable_export_is_dead():
    result = _run(
        func("Used"),
        func("Unused"),
        func("hidden"),
        func("TestUsed", file="store/store_test.go",
             body=block(expr(call("Used", ref=f"{PKG}.Used")))),
        entry_points=("main", "tests"),
    )
    [finding] = result.findings
    assert finding.rule_id == "entropy/dead-export"
    assert finding.symbol == f"{PKG}.Unused"
    assert finding.evidence["entry_points"] == ["main", "tests"]


def test_methods_of_unexported_types_are_not_exports():
    result = _run(
        struct("cursor", ("pos", "int")),
        func("Next", receiver="*cursor", body=block(expr(call("work")))),
        entry_points=("main",),
    )
    assert result.findings == []


def test_main_package_symbols_need_a_path_from_main():
    result = _run(
        func("main", package=PKG, body=block(expr(call("Run", ref=f"{PKG}.Run")))),
        func("Run"),
        func("Stray"),
        entry_points=("main",),
        main=(PKG,),
    )
    assert [f.symbol for f in result.findings] == [f"{PKG}.Stray"]


# ── wrappers / accessors ──────────────────────────────────


def _fetch_impl():
    return func("fetch", params=(("key", "string"),), results=("int",), body=block(ret(lit("1"))))


def test_thin_wrapper():
    wrapper = func(
        "Fetch",
        params=(("key", "string"),),
        results=("int",),
        body=block(ret(call("fetch", ident("key"), ref=f"{PKG}.fetch", type="int"))),
    )
    [finding] = _run(wrapper, _fetch_impl()).findings
    assert finding.rule_id == "entropy/thin-wrapper"
    assert finding.evidence["callee"] == f"{PKG}.fetch"


def test_wrapper_that_adapts_arguments_is_kept():
    adapting = func(
        "Fetch",
        params=(("key", "string"),),
        results=("int",),
        body=block(ret(call("fetch", call("strings.ToLower", ident("key")), ref=f"{PKG}.fetch"))),
    )
    assert _run(adapting, _fetch_impl()).findings == []


def test_wrapper_required_by_interface_is_kept():
    decls = (
        interface("Fetcher", ("Fetch", "(key string) int")),
        struct("Client", ("n", "int")),
        struct("Other", ("n", "int")),
        func("Fetch", receiver="*Client", params=(("key", "string"),), results=("int",),
             body=block(ret(call("fetch", ident("key"), ref=f"{PKG}.fetch")))),
        func("Fetch", receiver="*Other", params=(("key", "string"),), results=("int",),
             body=block(ret(lit("0")))),
        _fetch_impl(),
    )
    assert _run(*decls).findings == []


def _conf():
    return struct("Conf", ("name", "string"))


def _c():
    return ident("c", type="*Conf")


def test_trivial_getter_and_setter():
    getter = func("Name", receiver="*Conf", results=("string",),
                  body=block(ret(sel(_c(), "name"))))
    setter = func("SetName", receiver="*Conf", params=(("v", "string"),),
                  body=block(assign(sel(_c(), "name"), ident("v"))))
    result = _run(_conf(), getter, setter)
    assert sorted(f.evidence["role"] for f in result.findings) == ["getter", "setter"]
    assert all(f.severity == Severity.INFO for f in result.findings)


def test_protocol_method_accessor_is_exempt():
    stringer = func("String", receiver="Conf", results=("string",),
                    body=block(ret(sel(ident("c", type="Conf"), "name"))))
    assert _run(_conf(), stringer).findings == []


def test_accessor_with_logic_is_fine():
    getter = func("Name", receiver="*Conf", results=("string",),
                  body=block(expr(call("c.mu.Lock")), ret(sel(_c(), "name"))))
    assert _run(_conf(), getter).findings == []


def test_unresolved_symbols_are_skipped():
    result = _run(interface("Broken", ("Do", "(x missing.T")))
    assert result.findings == []
