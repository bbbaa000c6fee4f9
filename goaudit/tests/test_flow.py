"""Tests for exit-path analysis and access-site collection."""

from __future__ import annotations

from goaudit.core.enums import AccessContext
from goaudit.engine.access import collect_access_sites, field_heat, is_handler
from goaudit.engine.flow import has_cancellation, unreleased_exits
from goaudit.engine.syntax import call_name
from goaudit.tests.builders import (
    PKG,
    as_role,
    assign,
    block,
    branch,
    call,
    case,
    counting_loop,
    defer,
    expr,
    for_,
    func,
    func_lit,
    go,
    graph,
    ident,
    if_,
    inc,
    index,
    lit,
    method_call,
    node,
    range_,
    ret,
    sel,
    select,
    struct,
    unary,
)


def _calls(name):
    return lambda n: n.kind == "call" and call_name(n) == name


_lock = _calls("sync.Mutex.Lock")
_unlock = _calls("sync.Mutex.Unlock")
_done = _calls("sync.WaitGroup.Done")


def _mu(method: str):
    return method_call(ident("mu", type="sync.Mutex"), method, f"sync.Mutex.{method}")


def _wg_done():
    return method_call(ident("wg", type="*sync.WaitGroup"), "Done", "sync.WaitGroup.Done")


# ── exit paths ────────────────────────────────────────────


def test_early_return_while_locked():
    early = ret()
    body = block(
        expr(_mu("Lock")),
        if_(ident("bad"), block(early)),
        expr(_mu("Unlock")),
        ret(),
    )
    assert unreleased_exits(body, _unlock, acquire=_lock) == [early.span]


def test_deferred_release_covers_later_exits():
    body = block(
        expr(_mu("Lock")),
        defer(_mu("Unlock")),
        if_(ident("bad"), block(ret())),
        ret(),
    )
    assert unreleased_exits(body, _unlock, acquire=_lock) == []


def test_release_on_both_branches():
    body = block(
        expr(_mu("Lock")),
        if_(ident("bad"), block(expr(_mu("Unlock")), ret()), block(expr(_mu("Unlock")))),
        ret(),
    )
    assert unreleased_exits(body, _unlock, acquire=_lock) == []


def test_pending_from_start_without_acquire():
    early = ret()
    body = block(if_(ident("skip"), block(early)), expr(_wg_done()))
    assert unreleased_exits(body, _done) == [early.span]
    assert unreleased_exits(block(defer(_wg_done()), if_(ident("skip"), block(ret()))), _done) == []


def test_falling_off_the_end_counts_as_exit():
    body = block(expr(call("work")))
    [exit_span] = unreleased_exits(body, _done)
    assert exit_span.line == body.span.line


def test_panic_is_an_exit_but_os_exit_is_not():
    assert len(unreleased_exits(block(expr(call("panic", lit('"x"', type="string")))), _done)) == 1
    assert unreleased_exits(block(expr(call("os.Exit", lit("1")))), _done) == []


def test_infinite_loop_never_falls_through():
    body = block(for_(block(expr(call("work")))))
    assert unreleased_exits(body, _done) == []


def test_loop_with_break_falls_through():
    body = block(for_(block(if_(ident("stop"), block(branch("break"))))))
    assert len(unreleased_exits(body, _done)) == 1


def test_select_case_bodies_join():
    early = ret()
    recv = expr(unary("<-", ident("quit", type="chan struct{}")))
    body = block(
        select(
            case(block(early), comm=recv),
            case(block(expr(_wg_done())), default=True),
        ),
        expr(_wg_done()),
    )
    assert unreleased_exits(body, _done) == [early.span]


def test_has_cancellation():
    recv = expr(unary("<-", method_call(ident("ctx"), "Done", "context.Context.Done")))
    with_select = for_(block(select(case(block(ret()), comm=recv))))
    spinning = for_(block(expr(call("work"))))
    breaking = for_(block(if_(ident("stop"), block(branch("break")))))
    assert has_cancellation(with_select)
    assert not has_cancellation(spinning)
    assert has_cancellation(breaking)


def test_receiving_work_is_not_a_way_out():
    job = assign(ident("j"), unary("<-", ident("jobs", type="chan int")), ":=")
    worker = for_(block(select(case(block(expr(call("process", ident("j")))), comm=job))))
    assert not has_cancellation(worker)
    quitting = for_(block(select(
        case(block(expr(call("process", ident("j")))), comm=job),
        case(block(ret()), comm=expr(unary("<-", ident("quit", type="chan struct{}")))),
    )))
    assert has_cancellation(quitting)


# ── access sites ──────────────────────────────────────────


def _counter():
    return struct("Counter", ("mu", "sync.Mutex"), ("n", "int64"))


def _c():
    return ident("c", type="*Counter")


def test_sequential_field_write():
    g = graph(_counter(), func("Inc", receiver="*Counter", body=block(inc(sel(_c(), "n")))))
    [site] = collect_access_sites(g).for_target(f"{PKG}.Counter.n")
    assert site.write
    assert site.context == AccessContext.SEQUENTIAL
    assert site.function == f"{PKG}.Counter.Inc"


def test_mutex_guarded_region():
    lock = method_call(sel(_c(), "mu"), "Lock", "sync.Mutex.Lock")
    unlock = method_call(sel(_c(), "mu"), "Unlock", "sync.Mutex.Unlock")
    body = block(expr(lock), inc(sel(_c(), "n")), expr(unlock), expr(call("use", sel(_c(), "n"))))
    g = graph(_counter(), func("Inc", receiver="*Counter", body=body))
    index_ = collect_access_sites(g)
    guarded, after = index_.for_target(f"{PKG}.Counter.n")
    assert guarded.context == AccessContext.MUTEX_GUARDED
    assert guarded.guard == f"{PKG}.Counter.mu"
    assert guarded.region in index_.regions[f"{PKG}.Counter.mu"]
    assert after.context == AccessContext.SEQUENTIAL
    assert not after.write


def test_field_heat_weights_loop_depth():
    body = block(
        expr(call("use", sel(_c(), "n"))),
        counting_loop("i", lit("10"), block(expr(call("use", sel(_c(), "n"))))),
    )
    g = graph(_counter(), func("Sum", receiver="*Counter", body=body))
    heat = field_heat(collect_access_sites(g), 4.0)
    assert heat == {f"{PKG}.Counter.n": 5.0}


def test_handler_body_counts_as_a_loop():
    handler = func(
        "handle",
        params=(("w", "http.ResponseWriter"), ("r", "*http.Request")),
        body=block(expr(call("use", sel(_c(), "n")))),
    )
    assert is_handler(handler)
    g = graph(_counter(), handler)
    [site] = collect_access_sites(g).for_target(f"{PKG}.Counter.n")
    assert site.loop_depth == 1


def test_goroutine_writes_captured_local():
    closure = func_lit(block(assign(ident("total"), lit("1"))))
    body = block(assign(ident("total"), lit("0"), ":="), go(call("func", fun=closure)))
    g = graph(func("Run", body=body))
    index_ = collect_access_sites(g)
    [site] = index_.for_target(f"{PKG}.Run#total")
    assert site.write and not site.is_field
    assert site.context == AccessContext.GOROUTINE
    assert index_.writers(f"{PKG}.Run#total") == {site.unit}
    assert not index_.is_multi_unit(site.unit)


def test_per_iteration_slice_index_is_exclusive():
    write = assign(index(ident("results", type="[]int"), ident("i")), ident("item"))
    launch = go(call("func", fun=func_lit(block(write))))
    loop = range_(ident("items", type="[]int"), block(launch), key=ident("i"), value=ident("item"))
    g = graph(func("Fan", body=block(loop)))
    index_ = collect_access_sites(g)
    [site] = index_.for_target(f"{PKG}.Fan#results")
    assert site.context == AccessContext.EXCLUSIVE
    assert index_.is_multi_unit(site.unit)


def test_map_index_is_never_exclusive():
    write = assign(index(ident("seen", type="map[int]bool"), ident("i")), ident("true"))
    launch = go(call("func", fun=func_lit(block(write))))
    loop = range_(ident("items", type="[]int"), block(launch), key=ident("i"))
    g = graph(func("Fan", body=block(loop)))
    [site] = collect_access_sites(g).for_target(f"{PKG}.Fan#seen")
    assert site.context == AccessContext.GOROUTINE


def test_atomic_call_on_field_is_an_atomic_op():
    add = call("sync/atomic.AddInt64", unary("&", sel(_c(), "n")), lit("1"))
    g = graph(_counter(), func("Inc", receiver="*Counter", body=block(expr(add))))
    [site] = collect_access_sites(g).for_target(f"{PKG}.Counter.n")
    assert site.context == AccessContext.ATOMIC_OP
    assert site.write


def test_paren_node_is_transparent():
    write = assign(node("paren", as_role(sel(_c(), "n"), "x")), lit("1"))
    g = graph(_counter(), func("Set", receiver="*Counter", body=block(write)))
    [site] = collect_access_sites(g).for_target(f"{PKG}.Counter.n")
    assert site.write
