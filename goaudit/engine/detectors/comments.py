"""Comment quality: missing docs, misnamed docs, restating and stale comments.

Word comparison works on stems: comments and identifiers are split into
lowercase words (``parseHTTPHeader`` -> parse, http, header), stop words are
dropped and a light suffix stemmer folds ``does``/``do`` and
``returns``/``return`` together. A comment is content-free when at most
``max_novel_words`` of its stems are not covered by the names it describes.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator

from goaudit.core.config import AnalysisConfig
from goaudit.core.enums import Category, Severity, SymbolKind
from goaudit.engine.findings import PassResult, make_finding
from goaudit.engine.symbols import Symbol, SymbolGraph
from goaudit.program.model import Comment, Node, Span

logger = logging.getLogger(__name__)

DOC_REQUIRED_KINDS = frozenset(
    {
        SymbolKind.STRUCT,
        SymbolKind.INTERFACE,
        SymbolKind.TYPE,
        SymbolKind.FUNC,
        SymbolKind.METHOD,
        SymbolKind.CONST,
        SymbolKind.VAR,
    }
)
ARTICLES = frozenset({"A", "An", "The"})
STOP_WORDS = frozenset(
    """
    a an the this that these those it its is are was were be been being of to
    for in on at by with and or from as into onto than then so if when which
    who whose what will would can could should may might must just also here
    there all any each every some given specified provided new its our we you
    i me my do does did done
    """.split()
)
# Verbs and nouns a doc comment can use without adding information.
FILLER_WORDS = frozenset(
    """
    return returns get gets set sets create creates make makes function func
    method type struct interface value values object instance field variable
    constant helper call calls
    """.split()
)
OP_WORDS = {
    "++": ("increment", "add", "increase"),
    "--": ("decrement", "subtract", "decrease"),
    "+=": ("add", "append", "increase"),
    "-=": ("subtract", "decrease"),
    "=": ("set", "assign", "store"),
    ":=": ("set", "assign", "create"),
    "==": ("check", "compare", "equal"),
    "!=": ("check", "compare"),
    "<-": ("receive", "send", "wait"),
}
KIND_WORDS = {
    "return": ("return",),
    "for": ("loop", "iterate"),
    "range": ("loop", "iterate", "each"),
    "if": ("check", "if"),
    "go": ("start", "launch", "spawn", "goroutine"),
    "defer": ("defer", "close", "cleanup"),
    "send": ("send",),
    "call": ("call",),
}
GO_PREDECLARED = frozenset(
    """
    nil true false iota error bool string int int8 int16 int32 int64 uint uint8
    uint16 uint32 uint64 uintptr float32 float64 complex64 complex128 byte
    rune any comparable append cap clear close complex copy delete imag len
    make max min new panic print println real recover
    """.split()
)
DIRECTIVE_PREFIXES = ("go:", "nolint", "lint:", "TODO", "FIXME", "XXX", "+build", "export ")

_WORD_RE = re.compile(r"[A-Za-z][A-Za-z0-9]*")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")
_BACKTICK_RE = re.compile(r"`([A-Za-z_][\w.]*)(?:\(\))?`")
_DOC_LINK_RE = re.compile(r"\[\*?([A-Za-z_][\w.]*)\]")
_MIXED_CAPS_RE = re.compile(r"\b(?:[a-z]+[A-Z]\w*|[A-Z][a-z0-9]+[A-Z]\w*)\b")


def clean_comment(text: str) -> str:
    """Comment text without ``//`` or ``/* */`` markers."""
    lines = []
    for line in text.strip().splitlines():
        line = line.strip()
        if line.startswith("//"):
            line = line[2:]
        line = line.removeprefix("/*").removesuffix("*/").strip()
        if line.startswith("*"):
            line = line[1:].strip()
        lines.append(line)
    return "\n".join(lines).strip()


def split_identifier(name: str) -> list[str]:
    return [part.lower() for part in _CAMEL_RE.findall(name)]


def stem(word: str) -> str:
    word = word.lower()
    if word.endswith("ies") and len(word) > 4:
        return word[:-3] + "y"
    for suffix in ("ing", "ed", "es", "s"):
        if word.endswith(suffix) and len(word) - len(suffix) >= 3 and not word.endswith("ss"):
            return word[: -len(suffix)]
    return word


def content_stems(text: str) -> list[str]:
    """Stems of the non-stop words in ``text``, identifiers split."""
    out: list[str] = []
    for token in _WORD_RE.findall(text):
        for word in split_identifier(token) or [token.lower()]:
            if word in STOP_WORDS or word.isdigit():
                continue
            out.append(stem(word))
    return out


def name_stems(names: Iterable[str]) -> set[str]:
    return {stem(word) for name in names for word in split_identifier(name)}


def doc_body(doc: str) -> str:
    """First paragraph of a doc comment that is not a Deprecated notice."""
    for paragraph in re.split(r"\n\s*\n", clean_comment(doc)):
        if paragraph.strip() and not paragraph.lstrip().startswith("Deprecated:"):
            return paragraph.strip()
    return ""


def starts_with_name(doc: str, name: str) -> bool:
    words = doc.split()
    if words and words[0] in ARTICLES:
        words = words[1:]
    if not words:
        return False
    first = words[0].rstrip(".,:;")
    return first == name or first.startswith(f"{name}'")


def referenced_names(text: str) -> list[str]:
    """Code identifiers a comment mentions, in order, without duplicates."""
    found: list[str] = []
    found.extend(_BACKTICK_RE.findall(text))
    found.extend(_DOC_LINK_RE.findall(text))
    found.extend(_MIXED_CAPS_RE.findall(text))
    return list(dict.fromkeys(found))


def _statement_words(stmt: Node) -> set[str]:
    words: list[str] = []
    for node in stmt.walk():
        if node.name:
            words.append(node.name.rpartition(".")[2])
        words.extend(OP_WORDS.get(node.op, ()))
        words.extend(KIND_WORDS.get(node.kind, ()))
    return name_stems(words)


def _statements(body: Node) -> Iterator[Node]:
    for node in body.walk():
        if node.kind == "block":
            yield from node.children


class CommentAuditor:
    def __init__(self, graph: SymbolGraph, config: AnalysisConfig) -> None:
        self.graph = graph
        self.config = config
        self.result = PassResult("comments")
        self._package_names: dict[str, set[str]] = {}
        for symbol in graph.symbols():
            if symbol.is_type or symbol.kind in {
                SymbolKind.FUNC, SymbolKind.CONST, SymbolKind.VAR
            }:
                self._package_names.setdefault(symbol.package, set()).add(symbol.name)
        # Every identifier the program spells anywhere; bare mixed-case words
        # outside this set are prose (product names), not code.
        self._program_names: set[str] = set()
        for symbol in graph.symbols():
            self._program_names.add(symbol.name)
            self._program_names.update(p.name for p in symbol.params if p.name)
        for fn in graph.callables():
            self._program_names.update(
                node.name.rpartition(".")[2] for node in fn.body.walk() if node.name
            )

    def run(self) -> PassResult:
        for symbol in sorted(self.graph.symbols(*DOC_REQUIRED_KINDS), key=lambda s: s.handle):
            if symbol.is_test:
                continue
            with self.result.isolate(symbol.handle, symbol.span):
                self._check_doc(symbol)
        for comment in self.graph.program.comments:
            if comment.is_doc:
                continue
            with self.result.isolate(comment.scope or comment.span.file, comment.span):
                self._check_inline(comment)
        return self.result

    # ── doc comments ──────────────────────────────────────

    def _needs_doc(self, symbol: Symbol) -> bool:
        if not symbol.exported:
            return False
        if symbol.kind == SymbolKind.METHOD:
            owner = self.graph.get(symbol.owner)
            return owner is not None and owner.exported
        return True

    def _check_doc(self, symbol: Symbol) -> None:
        doc = clean_comment(symbol.doc or "")
        if not doc:
            if self._needs_doc(symbol):
                self.result.add(
                    make_finding(
                        Category.COMMENT,
                        "missing-doc",
                        symbol.span,
                        f"exported {symbol.kind.value} {symbol.name} has no doc comment",
                        severity=Severity.LOW,
                        suggestion=f"add a doc comment starting with {symbol.name!r}",
                        symbol=symbol.handle,
                    )
                )
            return

        body = doc_body(doc)
        if body and symbol.exported and not starts_with_name(body, symbol.name):
            self.result.add(
                make_finding(
                    Category.COMMENT,
                    "doc-name-prefix",
                    symbol.span,
                    f"doc comment of {symbol.name} should begin with its name",
                    severity=Severity.INFO,
                    suggestion=f"start the comment with {symbol.name!r}",
                    evidence={"first_words": " ".join(body.split()[:3])},
                    symbol=symbol.handle,
                )
            )

        covered = name_stems(self._described_names(symbol)) | name_stems(FILLER_WORDS)
        self._check_content(body, covered, symbol.span, symbol.handle, "doc comment")
        self._check_stale(doc, symbol, symbol.span)

    def _described_names(self, symbol: Symbol) -> list[str]:
        names = [symbol.name]
        owner = self.graph.get(symbol.owner) if symbol.owner else None
        if owner is not None:
            names.append(owner.name)
        names.extend(p.name for p in symbol.params if p.name)
        return names

    # ── inline comments ───────────────────────────────────

    def _check_inline(self, comment: Comment) -> None:
        text = clean_comment(comment.text)
        if not text or text.startswith(DIRECTIVE_PREFIXES):
            return
        scope = self.graph.get(comment.scope) if comment.scope else None
        if scope is not None and scope.body is not None and scope.is_callable:
            stmt = self._following_statement(scope.body, comment.span)
            if stmt is not None:
                self._check_content(
                    text, _statement_words(stmt), comment.span, scope.handle, "comment"
                )
        if scope is not None:
            self._check_stale(text, scope, comment.span)

    @staticmethod
    def _following_statement(body: Node, span: Span) -> Node | None:
        best: Node | None = None
        for stmt in _statements(body):
            if stmt.span.file != span.file or stmt.span.line < span.line:
                continue
            if best is None or (stmt.span.line, stmt.span.column) < (best.span.line, best.span.column):
                best = stmt
        return best

    def _check_content(
        self, text: str, covered: set[str], span: Span, handle: str, what: str
    ) -> None:
        stems = content_stems(text)
        if not stems:
            return
        novel = sorted({s for s in stems if s not in covered})
        if len(novel) > self.config.max_novel_words:
            return
        self.result.add(
            make_finding(
                Category.COMMENT,
                "content-free",
                span,
                f"{what} restates the code it describes: {text.splitlines()[0]!r}",
                severity=Severity.LOW,
                suggestion="explain why, or delete the comment",
                evidence={"novel_words": novel, "max_novel_words": self.config.max_novel_words},
                symbol=handle,
            )
        )

    # ── stale references ──────────────────────────────────

    def _scope_names(self, symbol: Symbol) -> set[str]:
        names = set(GO_PREDECLARED) | self._package_names.get(symbol.package, set())
        names.update(p.name for p in symbol.params if p.name)
        names.update(self.graph.get(m).name for m in symbol.members if self.graph.get(m))
        for related in (symbol, self.graph.get(symbol.owner) if symbol.owner else None):
            if related is None:
                continue
            names.add(related.name)
            names.update(f.name for f in self.graph.fields_of(related.handle))
            names.update(self.graph.methods_of(related.handle))
        if symbol.body is not None:
            for node in symbol.body.walk():
                if node.name:
                    names.add(node.name.rpartition(".")[2])
        return names

    def _check_stale(self, text: str, symbol: Symbol, span: Span) -> None:
        marked = set(_BACKTICK_RE.findall(text)) | set(_DOC_LINK_RE.findall(text))
        refs = [
            ref for ref in referenced_names(text)
            if ref in marked or ref.rpartition(".")[2] in self._program_names
        ]
        if not refs:
            return
        in_scope = self._scope_names(symbol)
        missing: list[str] = []
        for ref in refs:
            head, _, last = ref.rpartition(".")
            if head:
                owner = self.graph.resolve_named(head.split(".")[-1], symbol.package)
                if owner is None:
                    continue  # another package's API
                members = {f.name for f in self.graph.fields_of(owner.handle)}
                members.update(self.graph.methods_of(owner.handle))
                members.update(self.graph.interface_method_names(owner.handle))
                if last not in members:
                    missing.append(ref)
            elif ref not in in_scope:
                missing.append(ref)
        if not missing:
            return
        self.result.add(
            make_finding(
                Category.COMMENT,
                "stale-reference",
                span,
                f"comment mentions {', '.join(missing)}, which is not in scope",
                severity=Severity.MEDIUM,
                suggestion="update the comment to the current names",
                evidence={"missing": missing},
                symbol=symbol.handle,
            )
        )


def run(graph: SymbolGraph, config: AnalysisConfig) -> PassResult:
    return CommentAuditor(graph, config).run()


__all__ = [
    "CommentAuditor",
    "clean_comment",
    "content_stems",
    "doc_body",
    "referenced_names",
    "run",
    "split_identifier",
    "starts_with_name",
    "stem",
]
