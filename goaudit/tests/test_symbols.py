"""Tests for the symbol graph: resolution, implementations, reachability, units."""

from __future__ import annotations

import pytest

from goaudit.core.enums import DiagnosticKind, SymbolKind
from goaudit.tests.builders import (
    PKG,
    block,
    call,
    expr,
    field,
    func,
    func_lit,
    go,
    graph,
    ident,
    interface,
    method_call,
    range_,
    sel,
    struct,
    value_decl,
)


def _store_types():
    return (
        interface("Store", ("Get", "(key string) int")),
        struct("Mem", ("data", "map[string]int")),
        func("Get", receiver="*Mem", params=(("key", "string"),), results=("int",)),
    )


def test_lookup_unknown_handle_raises_key_error():
    g = graph(struct("S", ("a", "int")))
    with pytest.raises(KeyError):
        g.lookup(f"{PKG}.Missing")
    assert g.get(f"{PKG}.Missing") is None
    assert f"{PKG}.S" in g


def test_struct_symbols_carry_sizes_and_field_members():
    g = graph(struct("S", ("a", "bool"), ("b", "int64")))
    s = g.lookup(f"{PKG}.S")
    assert (s.size, s.align) == (16, 8)
    assert s.members == (f"{PKG}.S.a", f"{PKG}.S.b")
    b = g.lookup(f"{PKG}.S.b")
    assert b.kind == SymbolKind.FIELD
    assert (b.owner, b.index, b.size) == (f"{PKG}.S", 1, 8)
    assert [f.name for f in g.fields_of(f"{PKG}.S")] == ["a", "b"]


def test_recursive_value_type_is_unresolved():
    g = graph(struct("Node", ("next", "Node")), struct("List", ("head", "*List")))
    assert not g.lookup(f"{PKG}.Node").resolved
    assert g.lookup(f"{PKG}.List").resolved
    [diag] = g.diagnostics
    assert diag.kind == DiagnosticKind.RESOLUTION
    assert diag.handle == f"{PKG}.Node"


def test_implementations_by_method_set():
    g = graph(*_store_types(), struct("Other", ("n", "int")))
    impls = g.implementations_of(f"{PKG}.Store")
    assert {s.handle for s in impls} == {f"{PKG}.Mem"}
    assert g.interfaces_implemented_by(f"{PKG}.Mem") == {f"{PKG}.Store"}
    assert g.interface_method_names(f"{PKG}.Store") == {"Get"}
    assert set(g.methods_of(f"{PKG}.Mem")) == {"Get"}


def test_embedded_field_promotes_methods():
    g = graph(*_store_types(), struct("Cached", field("Mem", "*Mem", embedded=True)))
    impls = {s.handle for s in g.implementations_of(f"{PKG}.Store")}
    assert impls == {f"{PKG}.Mem", f"{PKG}.Cached"}


def test_mismatched_signature_does_not_implement():
    g = graph(
        interface("Store", ("Get", "(key string) int")),
        struct("Mem", ("data", "map[string]int")),
        func("Get", receiver="*Mem", params=(("key", "int"),), results=("int",)),
    )
    assert g.implementations_of(f"{PKG}.Store") == frozenset()


def test_value_and_pointer_receivers_both_implement():
    g = graph(
        interface("Store", ("Get", "(key string) int")),
        interface("Any"),
        struct("Mem", ("data", "map[string]int")),
        func("Get", receiver="Mem", params=(("key", "string"),), results=("int",)),
        struct("Disk", ("path", "string")),
        func("Get", receiver="*Disk", params=(("key", "string"),), results=("int",)),
    )
    assert g.lookup(f"{PKG}.Mem.Get").pointer_receiver is False
    assert g.lookup(f"{PKG}.Disk.Get").pointer_receiver is True
    impls = g.implementations_of(f"{PKG}.Store")
    assert {s.handle for s in impls} == {f"{PKG}.Mem", f"{PKG}.Disk"}
    assert g.implementations_of(f"{PKG}.Any") == frozenset()


def test_generic_receiver_methods_join_the_method_set():
    g = graph(
        interface("Sized", ("Len", "() int")),
        struct("List", ("items", "[]int")),
        func("Len", receiver="*List[T]", results=("int",)),
    )
    method = g.lookup(f"{PKG}.List.Len")
    assert method.owner == f"{PKG}.List"
    assert set(g.methods_of(f"{PKG}.List")) == {"Len"}
    assert {s.handle for s in g.implementations_of(f"{PKG}.Sized")} == {f"{PKG}.List"}


def test_reachability_from_main():
    g = graph(
        func("main", body=block(expr(call("helper", ref=f"{PKG}.helper")))),
        func("helper"),
        func("orphan"),
        main=(PKG,),
    )
    assert g.roots == {f"{PKG}.main"}
    assert g.is_reachable(f"{PKG}.helper")
    assert not g.is_reachable(f"{PKG}.orphan")
    assert g.references_to(f"{PKG}.helper") == {f"{PKG}.main"}
    assert g.references_from(f"{PKG}.main") == {f"{PKG}.helper"}
    assert g.references_from(f"{PKG}.orphan") == frozenset()


def test_test_files_and_exported_entry_points():
    test_fn = func("TestGet", file="store/store_test.go")
    g = graph(test_fn, func("Exported"), func("hidden"))
    assert g.is_reachable(test_fn.handle)
    assert not g.is_reachable(f"{PKG}.Exported")

    g = graph(test_fn, func("Exported"), func("hidden"), entry_points=["exported"])
    assert g.is_reachable(f"{PKG}.Exported")
    assert not g.is_reachable(f"{PKG}.hidden")


def test_explicit_entry_point_handle():
    g = graph(func("serve"), entry_points=[f"{PKG}.serve"])
    assert g.roots == {f"{PKG}.serve"}


def test_package_var_initializer_is_a_root():
    g = graph(
        value_decl("var", "registry", value=call("newRegistry", ref=f"{PKG}.newRegistry")),
        func("newRegistry"),
        entry_points=[],
    )
    assert g.is_reachable(f"{PKG}.newRegistry")


def test_protocol_methods_reachable_through_their_type():
    g = graph(
        struct("ID", ("v", "int")),
        func("String", receiver="ID", results=("string",)),
        func("Helper", receiver="ID"),
        func("main", body=block(expr(ident("id", type="ID", ref=f"{PKG}.ID")))),
        main=(PKG,),
    )
    assert g.is_reachable(f"{PKG}.ID.String")
    assert not g.is_reachable(f"{PKG}.ID.Helper")


def test_field_of_by_ref_and_by_receiver_type():
    g = graph(struct("Cache", ("hits", "int64")))
    by_ref = sel(ident("c"), "hits", ref=f"{PKG}.Cache.hits")
    by_type = sel(ident("c", type="*Cache"), "hits")
    unknown = sel(ident("c", type="*Cache"), "misses")
    assert g.field_of(by_ref, PKG).handle == f"{PKG}.Cache.hits"
    assert g.field_of(by_type, PKG).handle == f"{PKG}.Cache.hits"
    assert g.field_of(unknown, PKG) is None


def test_short_package_names_qualify_across_packages():
    other = "example.com/app/api"
    g = graph(
        struct("Cache", ("n", "int64")),
        struct("Server", ("cache", "store.Cache"), package=other, file="api/api.go"),
    )
    server = g.lookup(f"{other}.Server")
    assert server.size == 8
    assert str(g.lookup(f"{other}.Server.cache").type) == f"{PKG}.Cache"


# ── execution units ───────────────────────────────────────


def test_go_closure_in_range_loop_is_a_unit():
    launch = go(call("func", ident("item"), fun=func_lit(block(expr(call("work"))), "v")))
    body = block(range_(ident("items", type="[]int"), block(launch),
                        key=ident("i"), value=ident("item")))
    g = graph(func("Fan", body=body))
    [unit] = g.execution_units()
    assert unit.function == f"{PKG}.Fan"
    assert unit.is_closure and unit.in_loop
    assert unit.loop_vars == ("i", "item")
    assert unit.bindings() == {"v": "item"}
    assert unit.body.kind == "block"


def test_go_named_function_unit_uses_callee_body():
    worker_body = block(expr(call("work")))
    g = graph(
        func("Start", body=block(go(call("worker", ref=f"{PKG}.worker")))),
        func("worker", body=worker_body),
    )
    [unit] = g.execution_units()
    assert unit.callee == f"{PKG}.worker"
    assert unit.body is worker_body
    assert not unit.in_loop


def test_waitgroup_go_launcher_is_a_unit():
    wg = ident("wg", type="sync.WaitGroup")
    launch = method_call(wg, "Go", "sync.WaitGroup.Go", func_lit(block(expr(call("work")))))
    g = graph(func("Run", body=block(expr(launch))))
    [unit] = g.execution_units()
    assert unit.is_closure
    assert unit.bindings() == {}
