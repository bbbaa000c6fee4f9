"""Exit-path analysis over structured statement trees.

``unreleased_exits`` answers "is there a way out of this body while an
acquired resource is still held?". The walk is path-insensitive inside
expressions and joins branch states conservatively: a resource is pending
after an ``if`` when it is pending on either branch, and a ``defer`` covers
only the exits that follow it on every path. Loop bodies are assumed to
run at least once, so a receive loop after a launch settles the launch.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass

from goaudit.engine.syntax import call_name, walk_skip_closures
from goaudit.program.model import Node, Span

NodePredicate = Callable[[Node], bool]

EXITING_CALLS = frozenset({"panic", "runtime.Goexit"})
PROCESS_EXIT_CALLS = frozenset(
    {"os.Exit", "log.Fatal", "log.Fatalf", "log.Fatalln", "testing.T.FailNow", "testing.T.Fatal", "testing.T.Fatalf"}
)
_BODY_ROLES = frozenset({"body", "else", "case", "stmt"})


@dataclass(frozen=True)
class _State:
    pending: bool
    deferred: bool = False

    @property
    def leaking(self) -> bool:
        return self.pending and not self.deferred


def _join(a: _State | None, b: _State | None) -> _State | None:
    if a is None:
        return b
    if b is None:
        return a
    return _State(a.pending or b.pending, a.deferred and b.deferred)


def _header_nodes(stmt: Node) -> Iterator[Node]:
    yield stmt
    for child in stmt.children:
        if child.role not in _BODY_ROLES:
            yield from walk_skip_closures(child)


def _contains_break(loop_body: Node) -> bool:
    """True when a ``break`` may leave this loop (labels are assumed to target it)."""
    stack = list(loop_body.children)
    while stack:
        node = stack.pop()
        if node.kind == "branch" and node.op == "break":
            return True
        if node.kind in {"for", "range", "switch", "type_switch", "select", "func_lit"}:
            # An unlabeled break inside these targets the inner statement.
            stack.extend(
                n for n in node.walk() if n.kind == "branch" and n.op == "break" and n.name
            )
            continue
        stack.extend(node.children)
    return False


class _ExitWalker:
    def __init__(self, acquire: NodePredicate | None, release: NodePredicate) -> None:
        self.acquire = acquire
        self.release = release
        self.violations: list[Span] = []

    def _exit(self, span: Span, state: _State) -> None:
        if state.leaking:
            self.violations.append(span)

    def _apply(self, nodes: Iterator[Node], state: _State) -> _State:
        pending = state.pending
        for node in nodes:
            if self.acquire is not None and self.acquire(node):
                pending = True
            elif self.release(node):
                pending = False
        return _State(pending, state.deferred)

    def block(self, stmts: tuple[Node, ...], state: _State | None) -> _State | None:
        for stmt in stmts:
            if state is None:
                return None
            state = self.stmt(stmt, state)
        return state

    def stmt(self, stmt: Node, state: _State) -> _State | None:
        kind = stmt.kind
        if kind == "block":
            return self.block(stmt.children, state)
        if kind == "return":
            state = self._apply(walk_skip_closures(stmt), state)
            self._exit(stmt.span, state)
            return None
        if kind == "defer":
            call = stmt.field("call")
            if call is not None and any(self.release(n) for n in call.walk()):
                return _State(state.pending, True)
            return state
        if kind == "expr_stmt":
            call = stmt.field("x")
            name = call_name(call)
            if name in PROCESS_EXIT_CALLS:
                return None
            state = self._apply(walk_skip_closures(stmt), state)
            if name in EXITING_CALLS:
                self._exit(stmt.span, state)
                return None
            return state
        if kind == "labeled":
            inner = stmt.field("stmt")
            return self.stmt(inner, state) if inner is not None else state
        if kind == "if":
            state = self._apply(_header_nodes(stmt), state)
            body = stmt.field("body")
            then = self.stmt(body, state) if body is not None else state
            other = stmt.field("else")
            otherwise = self.stmt(other, state) if other is not None else state
            if then is None and otherwise is None:
                return None
            return _join(then, otherwise)
        if kind in {"for", "range"}:
            state = self._apply(_header_nodes(stmt), state)
            body = stmt.field("body")
            after = self.stmt(body, state) if body is not None else state
            if kind == "for" and stmt.field("cond") is None and (
                body is None or not _contains_break(body)
            ):
                return None
            return after if after is not None else state
        if kind in {"switch", "type_switch", "select"}:
            state = self._apply(_header_nodes(stmt), state)
            result: _State | None = None
            has_default = False
            cases = stmt.fields("case")
            for case in cases:
                has_default = has_default or case.op == "default"
                case_state: _State | None = state
                comm = case.field("comm")
                if comm is not None:
                    case_state = self.stmt(comm, state)
                body = case.field("body")
                if body is not None:
                    case_state = self.block(body.statements, case_state)
                result = _join(result, case_state)
            if kind != "select" and not has_default:
                result = _join(result, state)
            if kind == "select" and not cases:
                return None  # select {} blocks forever
            return result
        if kind == "go":
            return self._apply(walk_skip_closures(stmt), state)
        return self._apply(walk_skip_closures(stmt), state)


def unreleased_exits(
    body: Node,
    release: NodePredicate,
    *,
    acquire: NodePredicate | None = None,
) -> list[Span]:
    """Spans of exits reached while the resource is pending.

    With no ``acquire`` predicate the resource is pending from the start of
    ``body`` (a ``wg.Done()`` owed by a goroutine).
    """
    walker = _ExitWalker(acquire, release)
    initial = _State(pending=acquire is None)
    final = walker.block(body.statements, initial)
    if final is not None:
        end = Span(
            body.span.file,
            body.span.end_line or body.span.line,
            body.span.end_column or body.span.column,
        )
        walker._exit(end, final)
    return walker.violations


def has_cancellation(loop: Node) -> bool:
    """Whether an unconditional ``for {}`` loop has a way to stop."""
    body = loop.field("body")
    if body is None:
        return False
    if _contains_break(body):
        return True
    for node in walk_skip_closures(body):
        if node.kind == "return":
            return True
        if node.kind == "call" and call_name(node) in {"context.Context.Done"} | EXITING_CALLS:
            return True
        if node.kind == "call" and call_name(node) in PROCESS_EXIT_CALLS:
            return True
    return False


__all__ = ["EXITING_CALLS", "PROCESS_EXIT_CALLS", "has_cancellation", "unreleased_exits"]
