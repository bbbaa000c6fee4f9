"""Structural predicates behind the pattern rule table.

Node matchers take ``(node, ctx)`` and yield ``(span, subject)`` pairs; the
subject fills the ``{subject}`` slot of the rule message. Declaration
matchers take ``(declaration, ctx)`` instead. Matchers look at node kinds,
names, operators and resolved types only.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from goaudit.engine.symbols import Symbol, SymbolGraph
from goaudit.engine.syntax import (
    assigned_targets,
    call_args,
    call_name,
    expr_key,
    loop_variables,
    receiver,
    root_ident,
    unparen,
    walk_skip_closures,
)
from goaudit.program.model import Declaration, Node, Span
from goaudit.program.types import INTEGER_TYPES, TypeRef, TypeSyntaxError, parse_signature, parse_type

Match = tuple[Span, str]

COMPARISON_OPS = frozenset({"<", ">", "<=", ">="})
IOUTIL_REPLACEMENTS = {
    "ReadAll": "io.ReadAll",
    "ReadFile": "os.ReadFile",
    "WriteFile": "os.WriteFile",
    "ReadDir": "os.ReadDir",
    "TempDir": "os.MkdirTemp",
    "TempFile": "os.CreateTemp",
    "NopCloser": "io.NopCloser",
}
SORT_REPLACEMENTS = {
    "sort.Slice": "slices.SortFunc",
    "sort.SliceStable": "slices.SortStableFunc",
    "sort.Strings": "slices.Sort",
    "sort.Ints": "slices.Sort",
    "sort.Float64s": "slices.Sort",
    "sort.SearchInts": "slices.BinarySearch",
    "sort.SearchStrings": "slices.BinarySearch",
}
ATOMIC_FUNC_TYPES = {
    "Int32": "atomic.Int32",
    "Int64": "atomic.Int64",
    "Uint32": "atomic.Uint32",
    "Uint64": "atomic.Uint64",
    "Uintptr": "atomic.Uintptr",
    "Pointer": "atomic.Pointer",
}
ATOMIC_FUNC_OPS = ("Add", "Load", "Store", "Swap", "CompareAndSwap")


@dataclass(frozen=True)
class MatchContext:
    graph: SymbolGraph
    function: Symbol | None
    package: str
    loop_depth: int = 0

    @property
    def function_name(self) -> str:
        return self.function.name if self.function is not None else ""


# ── small helpers ─────────────────────────────────────────


def _single_statement(block: Node | None) -> Node | None:
    if block is None:
        return None
    stmts = block.statements
    return stmts[0] if len(stmts) == 1 else None


def _is_int_literal(node: Node | None, value: str) -> bool:
    node = unparen(node)
    if node is None:
        return False
    if node.kind == "basic_lit":
        return node.value == value
    if node.kind == "unary" and node.op == "-" and value.startswith("-"):
        return _is_int_literal(node.field("x"), value[1:])
    return False


def _is_integer_type(type_text: str) -> bool:
    return type_text in INTEGER_TYPES or type_text in {"byte", "rune"}


def _simple_assign(stmt: Node | None, ops: frozenset[str] = frozenset({"="})) -> tuple[str, Node] | None:
    """(target key, value) of ``x = v`` with one target and one value."""
    if stmt is None or stmt.kind != "assign" or stmt.op not in ops:
        return None
    lhs, rhs = stmt.fields("lhs"), stmt.fields("rhs")
    if len(lhs) != 1 or len(rhs) != 1:
        return None
    key = expr_key(lhs[0])
    return (key, rhs[0]) if key else None


def _parsed(type_text: str) -> TypeRef | None:
    if not type_text:
        return None
    try:
        return parse_type(type_text)
    except TypeSyntaxError:
        return None


def _kind_of(node: Node | None) -> str:
    parsed = _parsed(node.type) if node is not None else None
    return parsed.deref().kind if parsed is not None else ""


def _modifies(body: Node, name: str) -> bool:
    for node in body.walk():
        for target in assigned_targets(node):
            ident = root_ident(target)
            if ident is not None and ident.name == name and unparen(target).kind == "ident":
                return True
        if node.kind == "unary" and node.op == "&" and expr_key(node.field("x")) == name:
            return True
    return False


# ── modernization ─────────────────────────────────────────


def match_error_type_assertion(node: Node, ctx: MatchContext) -> Iterator[Match]:
    if node.op == "switch":
        return
    x = node.field("x")
    if x is None or x.type != "error":
        return
    asserted = _parsed(node.type)
    if asserted is None or asserted.deref().kind == "interface":
        return
    yield node.span, f"{expr_key(x) or 'err'}.({node.type})"


def match_errors_as_pointer(node: Node, ctx: MatchContext) -> Iterator[Match]:
    if call_name(node) != "errors.As":
        return
    args = call_args(node)
    if len(args) == 2 and args[1].kind == "unary" and args[1].op == "&":
        yield node.span, f"errors.As({expr_key(args[0])}, &{expr_key(args[1])})"


def _min_max_name(op: str, picked_x: bool) -> str:
    # a < b ? a : b is min; a > b ? a : b is max.
    smaller_first = op in {"<", "<="}
    return "min" if smaller_first == picked_x else "max"


def match_min_max_if_else(node: Node, ctx: MatchContext) -> Iterator[Match]:
    cond = unparen(node.field("cond"))
    if node.field("init") is not None or cond is None or cond.kind != "binary" or cond.op not in COMPARISON_OPS:
        return
    a, b = expr_key(cond.field("x")), expr_key(cond.field("y"))
    then = _simple_assign(_single_statement(node.field("body")), frozenset({"=", ":="}))
    other = node.field("else")
    otherwise = _simple_assign(_single_statement(other), frozenset({"=", ":="})) if other is not None and other.kind == "block" else None
    if not a or not b or then is None or otherwise is None or then[0] != otherwise[0]:
        return
    picked = (expr_key(then[1]), expr_key(otherwise[1]))
    if picked == (a, b):
        yield node.span, f"{then[0]} = {_min_max_name(cond.op, True)}({a}, {b})"
    elif picked == (b, a):
        yield node.span, f"{then[0]} = {_min_max_name(cond.op, False)}({a}, {b})"


def match_min_max_seeded(node: Node, ctx: MatchContext) -> Iterator[Match]:
    stmts = node.children
    for first, second in zip(stmts, stmts[1:]):
        seeded = _simple_assign(first, frozenset({"=", ":="}))
        if seeded is None or second.kind != "if" or second.field("else") is not None:
            continue
        target, seed = seeded
        cond = unparen(second.field("cond"))
        update = _simple_assign(_single_statement(second.field("body")))
        if cond is None or cond.kind != "binary" or cond.op not in COMPARISON_OPS or update is None:
            continue
        x, y = expr_key(cond.field("x")), expr_key(cond.field("y"))
        other = expr_key(update[1])
        if update[0] != target or not other:
            continue
        if x == other and y == target:
            func = "min" if cond.op in {"<", "<="} else "max"
        elif y == other and x == target:
            func = "max" if cond.op in {"<", "<="} else "min"
        else:
            continue
        yield first.span, f"{target} := {func}({expr_key(seed)}, {other})"


def match_waitgroup_go(node: Node, ctx: MatchContext) -> Iterator[Match]:
    stmts = node.children
    for first, second in zip(stmts, stmts[1:]):
        add = unparen(first.field("x")) if first.kind == "expr_stmt" else None
        if call_name(add) != "sync.WaitGroup.Add" or not _is_int_literal(
            (call_args(add) or (None,))[0], "1"
        ):
            continue
        if second.kind != "go":
            continue
        call = second.field("call")
        fun = call.field("fun") if call is not None else None
        if fun is None or fun.kind != "func_lit" or call_args(call):
            continue
        body = fun.field("body")
        head = body.statements[0] if body is not None and body.children else None
        if head is None or head.kind != "defer":
            continue
        done = head.field("call")
        wg = expr_key(receiver(add))
        if call_name(done) == "sync.WaitGroup.Done" and expr_key(receiver(done)) == wg:
            yield first.span, f"{wg}.Go(func() {{ ... }})"


def _empty_interfaces(t: TypeRef) -> bool:
    return any(part.is_empty_interface and not part.spelled_any for part in t.walk())


def match_interface_literal(decl: Declaration, ctx: MatchContext) -> Iterator[Match]:
    texts: list[tuple[Span, str, bool]] = []
    if decl.kind in {"type", "var", "const"} and decl.type:
        texts.append((decl.span, decl.type, False))
    for f in decl.fields:
        texts.append((f.span, f.type, False))
    for m in decl.methods:
        texts.append((m.span, m.signature, True))
    if decl.kind in {"func", "method"}:
        texts.append((decl.span, decl.signature(), True))
    for span, text, is_sig in texts:
        try:
            parsed = parse_signature(text) if is_sig else parse_type(text)
        except TypeSyntaxError:
            continue
        if _empty_interfaces(parsed):
            yield span, decl.name
            return


def match_ioutil(node: Node, ctx: MatchContext) -> Iterator[Match]:
    name = call_name(node)
    if name.startswith("io/ioutil."):
        func = name.rpartition(".")[2]
        yield node.span, f"ioutil.{func} -> {IOUTIL_REPLACEMENTS.get(func, 'os/io')}"


def match_sort_call(node: Node, ctx: MatchContext) -> Iterator[Match]:
    name = call_name(node)
    if name in SORT_REPLACEMENTS:
        yield node.span, f"{name} -> {SORT_REPLACEMENTS[name]}"


def match_contains_loop(node: Node, ctx: MatchContext) -> Iterator[Match]:
    key, value = node.field("key"), node.field("value")
    item = value
    if item is None or item.kind != "ident":
        return
    if key is not None and key.kind == "ident" and key.name != "_":
        return
    stmt = _single_statement(node.field("body"))
    if stmt is None or stmt.kind != "if" or stmt.field("else") is not None:
        return
    cond = unparen(stmt.field("cond"))
    ret = _single_statement(stmt.field("body"))
    if cond is None or cond.kind != "binary" or cond.op != "==" or ret is None or ret.kind != "return":
        return
    sides = {expr_key(cond.field("x")), expr_key(cond.field("y"))}
    results = ret.fields("result")
    if item.name in sides and len(results) == 1 and results[0].kind == "ident" and results[0].name == "true":
        target = (sides - {item.name}) or {"x"}
        yield node.span, f"slices.Contains({expr_key(node.field('x'))}, {next(iter(target))})"


def match_index_then_slice(node: Node, ctx: MatchContext) -> Iterator[Match]:
    stmts = node.children
    for pos, stmt in enumerate(stmts):
        assigned = _simple_assign(stmt, frozenset({":=", "="}))
        if assigned is None:
            continue
        index_var, value = assigned
        call = unparen(value)
        if call_name(call) not in {"strings.Index", "strings.IndexByte", "bytes.Index"}:
            continue
        haystack = expr_key((call_args(call) or (None,))[0])
        compared = sliced = False
        for later in stmts[pos + 1:]:
            for n in later.walk():
                if n.kind == "binary" and index_var in {expr_key(n.field("x")), expr_key(n.field("y"))}:
                    compared = True
                if n.kind == "slice_expr" and expr_key(n.field("x")) == haystack and any(
                    m.kind == "ident" and m.name == index_var
                    for role in ("low", "high")
                    for bound in n.fields(role)
                    for m in bound.walk()
                ):
                    sliced = True
        if compared and sliced:
            yield stmt.span, f"{haystack} split at {call_name(call)} result {index_var}"


def _counting_loop(node: Node) -> tuple[str, Node] | None:
    """(index name, bound) for ``for i := 0; i < n; i++``."""
    init = node.field("init")
    seeded = _simple_assign(init, frozenset({":="}))
    if seeded is None or not _is_int_literal(seeded[1], "0"):
        return None
    cond = unparen(node.field("cond"))
    post = node.field("post")
    name = seeded[0]
    if cond is None or cond.kind != "binary" or cond.op != "<" or expr_key(cond.field("x")) != name:
        return None
    if post is None or post.kind != "inc_dec" or post.op != "++" or expr_key(post.field("x")) != name:
        return None
    bound = cond.field("y")
    return (name, bound) if bound is not None else None


def _is_benchmark_n(node: Node | None) -> bool:
    node = unparen(node)
    if node is None or node.kind != "selector" or node.name != "N":
        return False
    x = node.field("x")
    return x is not None and x.type.lstrip("*") == "testing.B"


def match_range_over_int(node: Node, ctx: MatchContext) -> Iterator[Match]:
    loop = _counting_loop(node)
    if loop is None:
        return
    name, bound = loop
    if _is_benchmark_n(bound) or (bound.type and not _is_integer_type(bound.type)):
        return
    body = node.field("body")
    if body is not None and _modifies(body, name):
        return
    yield node.span, f"for {name} := range {expr_key(bound) or 'n'}"


def match_delete_all(node: Node, ctx: MatchContext) -> Iterator[Match]:
    if not node.field("x") or not node.field("x").type.startswith("map["):
        return
    key = node.field("key")
    stmt = _single_statement(node.field("body"))
    call = unparen(stmt.field("x")) if stmt is not None and stmt.kind == "expr_stmt" else None
    if key is None or call_name(call) != "delete":
        return
    args = call_args(call)
    container = expr_key(node.field("x"))
    if len(args) == 2 and expr_key(args[0]) == container and expr_key(args[1]) == key.name:
        yield node.span, f"clear({container})"


def match_loop_var_copy(node: Node, ctx: MatchContext) -> Iterator[Match]:
    names = set(loop_variables(node))
    body = node.field("body")
    if not names or body is None:
        return
    for stmt in body.statements:
        copied = _simple_assign(stmt, frozenset({":="}))
        if copied is not None and copied[0] in names and expr_key(copied[1]) == copied[0]:
            yield stmt.span, f"{copied[0]} := {copied[0]}"


def match_replace_all(node: Node, ctx: MatchContext) -> Iterator[Match]:
    name = call_name(node)
    if name not in {"strings.Replace", "bytes.Replace"}:
        return
    args = call_args(node)
    if len(args) == 4 and _is_int_literal(args[3], "-1"):
        yield node.span, f"{name}(..., -1) -> {name}All"


def match_now_sub(node: Node, ctx: MatchContext) -> Iterator[Match]:
    if call_name(node) != "time.Time.Sub":
        return
    recv = unparen(receiver(node))
    if call_name(recv) == "time.Now":
        args = call_args(node)
        yield node.span, f"time.Since({expr_key(args[0]) if args else 't'})"


def match_reflect_typeof_nil(node: Node, ctx: MatchContext) -> Iterator[Match]:
    if call_name(node) != "reflect.Type.Elem":
        return
    inner = unparen(receiver(node))
    if call_name(inner) != "reflect.TypeOf":
        return
    args = call_args(inner)
    if len(args) == 1 and args[0].type.startswith("*") and any(
        n.kind == "ident" and n.name == "nil" for n in args[0].walk()
    ):
        yield node.span, f"reflect.TypeFor[{args[0].type[1:]}]()"


def match_benchmark_loop(node: Node, ctx: MatchContext) -> Iterator[Match]:
    loop = _counting_loop(node)
    if loop is not None and _is_benchmark_n(loop[1]):
        yield node.span, f"for {expr_key(loop[1])} loop -> for b.Loop()"


def _tag_options(tag: str, key: str) -> list[str]:
    text = tag.strip("`")
    marker = f'{key}:"'
    start = text.find(marker)
    if start < 0:
        return []
    end = text.find('"', start + len(marker))
    return text[start + len(marker): end].split(",")[1:] if end > 0 else []


def match_omitempty_struct(decl: Declaration, ctx: MatchContext) -> Iterator[Match]:
    if decl.kind != "struct":
        return
    for f in decl.fields:
        if "omitempty" not in _tag_options(f.tag, "json"):
            continue
        parsed = _parsed(f.type)
        if parsed is None or parsed.kind != "named":
            continue
        qualified = ctx.graph.qualify(parsed, decl.package)
        target = ctx.graph.get(qualified.name)
        if qualified.name == "time.Time" or (target is not None and target.kind == "struct"):
            yield f.span, f"{decl.name}.{f.name}"


def match_map_keys_collect(node: Node, ctx: MatchContext) -> Iterator[Match]:
    x = node.field("x")
    if x is None or not x.type.startswith("map["):
        return
    key, value = node.field("key"), node.field("value")
    if key is None or key.kind != "ident" or (value is not None and value.name != "_"):
        return
    appended = _simple_assign(_single_statement(node.field("body")))
    if appended is None:
        return
    target, call = appended
    call = unparen(call)
    args = call_args(call) if call is not None else ()
    if call_name(call) == "append" and len(args) == 2 and expr_key(args[0]) == target and expr_key(args[1]) == key.name:
        yield node.span, f"{target} = slices.Collect(maps.Keys({expr_key(x)}))"


def match_atomic_func_on_field(node: Node, ctx: MatchContext) -> Iterator[Match]:
    name = call_name(node)
    if not name.startswith("sync/atomic.") or name.count(".") != 1:
        return
    func = name.rpartition(".")[2]
    op = next((o for o in ATOMIC_FUNC_OPS if func.startswith(o)), None)
    typed = ATOMIC_FUNC_TYPES.get(func[len(op):]) if op else None
    args = call_args(node)
    if typed is None or not args or args[0].kind != "unary" or args[0].op != "&":
        return
    operand = unparen(args[0].field("x"))
    if operand is not None and ctx.graph.field_of(operand, ctx.package) is not None:
        yield node.span, f"{expr_key(operand)} as {typed}"


# ── allocation ────────────────────────────────────────────


def _empty_slice_decl(stmt: Node) -> str:
    """Name declared by ``var xs []T``, ``xs := []T{}`` or ``xs := make([]T, 0)``."""
    if stmt.kind != "assign":
        return ""
    lhs, rhs = stmt.fields("lhs"), stmt.fields("rhs")
    if len(lhs) != 1 or lhs[0].kind != "ident":
        return ""
    name = lhs[0].name
    if stmt.op == "var" and not rhs and lhs[0].type.startswith("[]"):
        return name
    if stmt.op != ":=" or len(rhs) != 1:
        return ""
    value = unparen(rhs[0])
    if value.kind == "composite_lit" and value.type.startswith("[]") and not value.fields("elt"):
        return name
    if call_name(value) == "make" and value.type.startswith("[]"):
        args = call_args(value)
        if len(args) == 1 and _is_int_literal(args[0], "0"):
            return name
    return ""


def _sized_range(stmt: Node) -> Node | None:
    if stmt.kind != "range":
        return None
    if _kind_of(stmt.field("x")) in {"slice", "array", "map"}:
        return stmt
    return None


def match_append_without_capacity(node: Node, ctx: MatchContext) -> Iterator[Match]:
    stmts = node.children
    for pos, stmt in enumerate(stmts):
        name = _empty_slice_decl(stmt)
        if not name:
            continue
        for later in stmts[pos + 1:]:
            loop = _sized_range(later)
            body = loop.field("body") if loop is not None else None
            if body is None:
                continue
            for inner in body.statements:
                appended = _simple_assign(inner)
                call = unparen(appended[1]) if appended is not None else None
                if (
                    appended is not None
                    and appended[0] == name
                    and call_name(call) == "append"
                    and expr_key((call_args(call) or (None,))[0]) == name
                ):
                    yield stmt.span, f"{name} (filled from {expr_key(loop.field('x'))})"
                    break
            else:
                continue
            break


def match_map_without_hint(node: Node, ctx: MatchContext) -> Iterator[Match]:
    stmts = node.children
    for pos, stmt in enumerate(stmts):
        made = _simple_assign(stmt, frozenset({":=", "="}))
        call = unparen(made[1]) if made is not None else None
        if call is None or call_name(call) != "make" or not call.type.startswith("map[") or call_args(call):
            continue
        name = made[0]
        for later in stmts[pos + 1:]:
            loop = _sized_range(later)
            body = loop.field("body") if loop is not None else None
            if body is None:
                continue
            if any(
                target.kind == "index" and expr_key(target.field("x")) == name
                for inner in body.statements
                for target in assigned_targets(inner)
            ):
                yield stmt.span, f"{name} (filled from {expr_key(loop.field('x'))})"
                break


def match_string_concat_in_loop(node: Node, ctx: MatchContext) -> Iterator[Match]:
    if ctx.loop_depth == 0:
        return
    lhs = node.fields("lhs")
    if len(lhs) != 1 or lhs[0].type != "string":
        return
    target = expr_key(lhs[0])
    if node.op == "+=":
        yield node.span, target
    elif node.op == "=":
        rhs = node.fields("rhs")
        value = unparen(rhs[0]) if len(rhs) == 1 else None
        if value is not None and value.kind == "binary" and value.op == "+" and expr_key(value.field("x")) == target:
            yield node.span, target


def match_sprintf_int(node: Node, ctx: MatchContext) -> Iterator[Match]:
    name = call_name(node)
    args = call_args(node)
    if name == "fmt.Sprintf" and len(args) == 2 and args[0].kind == "basic_lit" and args[0].value.strip('"`') == "%d":
        value = args[1]
    elif name == "fmt.Sprint" and len(args) == 1:
        value = args[0]
    else:
        return
    if _is_integer_type(value.type):
        func = "strconv.Itoa" if value.type == "int" else "strconv.FormatInt"
        yield node.span, f"{name}({expr_key(value) or '...'}) -> {func}"


def match_defer_in_loop(node: Node, ctx: MatchContext) -> Iterator[Match]:
    if ctx.loop_depth > 0:
        yield node.span, call_name(node.field("call")) or "deferred call"


def match_regexp_in_function(node: Node, ctx: MatchContext) -> Iterator[Match]:
    name = call_name(node)
    if name not in {"regexp.MustCompile", "regexp.Compile"} or ctx.function_name == "init":
        return
    args = call_args(node)
    if args and args[0].kind == "basic_lit":
        yield node.span, f"{name}({args[0].value})"


__all__ = [
    "Match",
    "MatchContext",
    "match_append_without_capacity",
    "match_atomic_func_on_field",
    "match_benchmark_loop",
    "match_contains_loop",
    "match_defer_in_loop",
    "match_delete_all",
    "match_error_type_assertion",
    "match_errors_as_pointer",
    "match_index_then_slice",
    "match_interface_literal",
    "match_ioutil",
    "match_loop_var_copy",
    "match_map_keys_collect",
    "match_map_without_hint",
    "match_min_max_if_else",
    "match_min_max_seeded",
    "match_now_sub",
    "match_omitempty_struct",
    "match_range_over_int",
    "match_reflect_typeof_nil",
    "match_regexp_in_function",
    "match_replace_all",
    "match_sort_call",
    "match_sprintf_int",
    "match_string_concat_in_loop",
    "match_waitgroup_go",
]
