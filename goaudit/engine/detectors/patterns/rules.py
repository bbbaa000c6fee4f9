"""Pattern rule table: outdated idioms and allocation hot-spots.

Each rule pairs a structural matcher with the Go version that introduced its
replacement. Rules are pure data; ``PatternMatcher`` decides which apply.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass

from goaudit.core.enums import Category, Severity
from goaudit.core.versioning import GoVersion
from goaudit.engine.detectors.patterns import matchers as m

NODE_SCOPE = "node"
DECL_SCOPE = "decl"


@dataclass(frozen=True)
class PatternRule:
    """Metadata and matcher for one rewrite suggestion."""

    rule_id: str
    category: Category
    min_version: GoVersion
    node_kinds: frozenset[str]
    matcher: Callable[..., Iterator[m.Match]]
    replacement: str
    message: str
    severity: Severity = Severity.LOW
    scope: str = NODE_SCOPE

    def describe(self, subject: str) -> str:
        return self.message.format(subject=subject)


def _rule(
    rule_id: str,
    category: Category,
    min_version: tuple[int, int],
    kinds: tuple[str, ...],
    matcher: Callable[..., Iterator[m.Match]],
    replacement: str,
    message: str,
    *,
    severity: Severity = Severity.LOW,
    scope: str = NODE_SCOPE,
) -> PatternRule:
    return PatternRule(
        rule_id=rule_id,
        category=category,
        min_version=GoVersion(*min_version),
        node_kinds=frozenset(kinds),
        matcher=matcher,
        replacement=replacement,
        message=message,
        severity=severity,
        scope=scope,
    )


_MOD = Category.MODERNIZATION
_ALLOC = Category.ALLOCATION

MODERNIZATION_RULES: tuple[PatternRule, ...] = (
    _rule(
        "errors-type-assertion", _MOD, (1, 13), ("type_assert",),
        m.match_error_type_assertion,
        "errors.As",
        "type assertion {subject} misses wrapped errors",
        severity=Severity.MEDIUM,
    ),
    _rule(
        "errors-as-generic", _MOD, (1, 26), ("call",),
        m.match_errors_as_pointer,
        "errors.AsType[T](err)",
        "{subject} can use the generic errors.AsType",
    ),
    _rule(
        "builtin-min-max", _MOD, (1, 21), ("if",),
        m.match_min_max_if_else,
        "min/max builtins",
        "if/else selects a bound: {subject}",
    ),
    _rule(
        "builtin-min-max", _MOD, (1, 21), ("block",),
        m.match_min_max_seeded,
        "min/max builtins",
        "seeded comparison computes a bound: {subject}",
    ),
    _rule(
        "waitgroup-go", _MOD, (1, 25), ("block",),
        m.match_waitgroup_go,
        "sync.WaitGroup.Go",
        "Add(1) plus go func with deferred Done is {subject}",
    ),
    _rule(
        "any-alias", _MOD, (1, 18), (),
        m.match_interface_literal,
        "any",
        "{subject} spells the empty interface as interface{{}}",
        severity=Severity.INFO,
        scope=DECL_SCOPE,
    ),
    _rule(
        "ioutil-deprecated", _MOD, (1, 16), ("call",),
        m.match_ioutil,
        "os/io equivalents",
        "io/ioutil is deprecated: {subject}",
    ),
    _rule(
        "slices-sort", _MOD, (1, 21), ("call",),
        m.match_sort_call,
        "slices.Sort/slices.SortFunc",
        "{subject}",
    ),
    _rule(
        "slices-contains", _MOD, (1, 21), ("range",),
        m.match_contains_loop,
        "slices.Contains",
        "membership loop is {subject}",
    ),
    _rule(
        "strings-cut", _MOD, (1, 18), ("block",),
        m.match_index_then_slice,
        "strings.Cut",
        "{subject} can use strings.Cut",
    ),
    _rule(
        "range-over-int", _MOD, (1, 22), ("for",),
        m.match_range_over_int,
        "range over int",
        "counting loop can be {subject}",
        severity=Severity.INFO,
    ),
    _rule(
        "builtin-clear", _MOD, (1, 21), ("range",),
        m.match_delete_all,
        "clear builtin",
        "delete loop empties the map: {subject}",
    ),
    _rule(
        "loop-var-copy", _MOD, (1, 22), ("for", "range"),
        m.match_loop_var_copy,
        "remove the copy",
        "{subject} is redundant with per-iteration loop variables",
        severity=Severity.INFO,
    ),
    _rule(
        "strings-replace-all", _MOD, (1, 12), ("call",),
        m.match_replace_all,
        "strings.ReplaceAll",
        "{subject}",
    ),
    _rule(
        "time-since", _MOD, (1, 0), ("call",),
        m.match_now_sub,
        "time.Since",
        "time.Now().Sub is {subject}",
        severity=Severity.INFO,
    ),
    _rule(
        "reflect-type-for", _MOD, (1, 22), ("call",),
        m.match_reflect_typeof_nil,
        "reflect.TypeFor",
        "nil-pointer TypeOf is {subject}",
    ),
    _rule(
        "benchmark-loop", _MOD, (1, 24), ("for",),
        m.match_benchmark_loop,
        "testing.B.Loop",
        "{subject}",
    ),
    _rule(
        "json-omitzero", _MOD, (1, 24), (),
        m.match_omitempty_struct,
        "omitzero",
        "omitempty never omits struct field {subject}",
        severity=Severity.MEDIUM,
        scope=DECL_SCOPE,
    ),
    _rule(
        "maps-keys-collect", _MOD, (1, 23), ("range",),
        m.match_map_keys_collect,
        "slices.Collect(maps.Keys(m))",
        "key collection loop is {subject}",
        severity=Severity.INFO,
    ),
    _rule(
        "atomic-typed", _MOD, (1, 19), ("call",),
        m.match_atomic_func_on_field,
        "typed sync/atomic values",
        "declare {subject} instead of calling sync/atomic functions",
    ),
)

ALLOCATION_RULES: tuple[PatternRule, ...] = (
    _rule(
        "append-without-capacity", _ALLOC, (1, 0), ("block",),
        m.match_append_without_capacity,
        "make([]T, 0, len(xs))",
        "slice {subject} grows by append without a capacity hint",
    ),
    _rule(
        "map-without-size-hint", _ALLOC, (1, 0), ("block",),
        m.match_map_without_hint,
        "make(map[K]V, len(xs))",
        "map {subject} is made without a size hint",
    ),
    _rule(
        "string-concat-in-loop", _ALLOC, (1, 0), ("assign",),
        m.match_string_concat_in_loop,
        "strings.Builder",
        "string {subject} is concatenated inside a loop",
        severity=Severity.MEDIUM,
    ),
    _rule(
        "sprintf-int", _ALLOC, (1, 0), ("call",),
        m.match_sprintf_int,
        "strconv.Itoa",
        "{subject}",
    ),
    _rule(
        "defer-in-loop", _ALLOC, (1, 0), ("defer",),
        m.match_defer_in_loop,
        "close explicitly or extract a function",
        "defer of {subject} inside a loop runs only when the function returns",
        severity=Severity.MEDIUM,
    ),
    _rule(
        "regexp-compile-in-function", _ALLOC, (1, 0), ("call",),
        m.match_regexp_in_function,
        "package-level regexp variable",
        "{subject} recompiles on every call",
    ),
)

PATTERN_RULES: tuple[PatternRule, ...] = MODERNIZATION_RULES + ALLOCATION_RULES


def rules_by_id() -> dict[str, list[PatternRule]]:
    out: dict[str, list[PatternRule]] = {}
    for rule in PATTERN_RULES:
        out.setdefault(rule.rule_id, []).append(rule)
    return out


__all__ = [
    "ALLOCATION_RULES",
    "DECL_SCOPE",
    "MODERNIZATION_RULES",
    "NODE_SCOPE",
    "PATTERN_RULES",
    "PatternRule",
    "rules_by_id",
]
