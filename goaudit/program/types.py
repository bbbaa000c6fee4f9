"""Go type expressions: parsed representation and parser.

The front end reports types the way ``go/types.TypeString`` prints them
(``map[string][]*store.Entry``, ``func(ctx context.Context) error``,
``struct{mu sync.Mutex; n int}``). ``parse_type`` turns those strings into
TypeRef trees so analyzers match on structure instead of text.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from functools import lru_cache

BASIC_TYPES = frozenset(
    {
        "bool",
        "string",
        "int",
        "int8",
        "int16",
        "int32",
        "int64",
        "uint",
        "uint8",
        "uint16",
        "uint32",
        "uint64",
        "uintptr",
        "float32",
        "float64",
        "complex64",
        "complex128",
        "unsafe.Pointer",
    }
)
_BASIC_ALIASES = {"byte": "uint8", "rune": "int32"}
INTEGER_TYPES = frozenset(
    {
        "int",
        "int8",
        "int16",
        "int32",
        "int64",
        "uint",
        "uint8",
        "uint16",
        "uint32",
        "uint64",
        "uintptr",
    }
)
_KEYWORDS = frozenset({"map", "chan", "func", "struct", "interface"})

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<ellipsis>\.\.\.)
  | (?P<arrow><-)
  | (?P<string>`[^`]*`|"(?:[^"\\]|\\.)*")
  | (?P<number>\d+)
  | (?P<ident>[A-Za-z_][\w./-]*)
  | (?P<punct>[*\[\](){},;~|])
    """,
    re.VERBOSE,
)


class TypeSyntaxError(ValueError):
    """Raised for type strings the parser cannot read."""


@dataclass(frozen=True)
class StructField:
    name: str
    type: TypeRef
    embedded: bool = False
    tag: str = ""


@dataclass(frozen=True)
class TypeRef:
    kind: str
    name: str = ""
    elem: TypeRef | None = None
    key: TypeRef | None = None
    length: int = 0
    dir: str = ""
    fields: tuple[StructField, ...] = ()
    methods: tuple[tuple[str, TypeRef], ...] = ()
    embeds: tuple[TypeRef, ...] = ()
    params: tuple[TypeRef, ...] = ()
    results: tuple[TypeRef, ...] = ()
    variadic: bool = False
    args: tuple[TypeRef, ...] = ()

    def __str__(self) -> str:
        return render_type(self)

    @property
    def is_basic(self) -> bool:
        return self.kind == "basic"

    @property
    def is_named(self) -> bool:
        return self.kind == "named"

    @property
    def is_pointer(self) -> bool:
        return self.kind == "pointer"

    @property
    def is_empty_interface(self) -> bool:
        return self.kind == "interface" and not self.methods and not self.embeds

    @property
    def spelled_any(self) -> bool:
        """Empty interface written with the predeclared ``any`` alias."""
        return self.kind == "interface" and self.name == "any"

    def deref(self) -> TypeRef:
        return self.elem if self.kind == "pointer" and self.elem is not None else self

    def package_and_name(self) -> tuple[str, str]:
        """Split a named type's qualified name into (package path, name)."""
        if "." not in self.name:
            return "", self.name
        pkg, _, name = self.name.rpartition(".")
        return pkg, name

    def walk(self):
        """Yield this type and every nested type."""
        yield self
        for child in self._children():
            yield from child.walk()

    def _children(self) -> tuple[TypeRef, ...]:
        out: list[TypeRef] = []
        if self.elem is not None:
            out.append(self.elem)
        if self.key is not None:
            out.append(self.key)
        out.extend(f.type for f in self.fields)
        out.extend(m for _, m in self.methods)
        out.extend(self.embeds)
        out.extend(self.params)
        out.extend(self.results)
        out.extend(self.args)
        return tuple(out)

    def map_named(self, fn: Callable[[TypeRef], TypeRef]) -> TypeRef:
        """Return a copy with every named type passed through ``fn``."""
        if self.kind == "named":
            mapped = replace(self, args=tuple(a.map_named(fn) for a in self.args))
            return fn(mapped)
        return replace(
            self,
            elem=self.elem.map_named(fn) if self.elem is not None else None,
            key=self.key.map_named(fn) if self.key is not None else None,
            fields=tuple(replace(f, type=f.type.map_named(fn)) for f in self.fields),
            methods=tuple((n, m.map_named(fn)) for n, m in self.methods),
            embeds=tuple(e.map_named(fn) for e in self.embeds),
            params=tuple(p.map_named(fn) for p in self.params),
            results=tuple(r.map_named(fn) for r in self.results),
        )


def basic(name: str) -> TypeRef:
    return TypeRef("basic", name=_BASIC_ALIASES.get(name, name))


def named(name: str, *args: TypeRef) -> TypeRef:
    return TypeRef("named", name=name, args=tuple(args))


def render_type(t: TypeRef) -> str:
    kind = t.kind
    if kind == "basic":
        return t.name
    if kind == "named":
        if t.args:
            return f"{t.name}[{', '.join(render_type(a) for a in t.args)}]"
        return t.name
    if kind == "pointer":
        return f"*{render_type(t.elem)}"
    if kind == "slice":
        return f"[]{render_type(t.elem)}"
    if kind == "array":
        return f"[{t.length}]{render_type(t.elem)}"
    if kind == "map":
        return f"map[{render_type(t.key)}]{render_type(t.elem)}"
    if kind == "chan":
        prefix = {"send": "chan<- ", "recv": "<-chan "}.get(t.dir, "chan ")
        return f"{prefix}{render_type(t.elem)}"
    if kind == "func":
        return "func" + _render_signature(t)
    if kind == "struct":
        parts = []
        for f in t.fields:
            text = render_type(f.type) if f.embedded else f"{f.name} {render_type(f.type)}"
            if f.tag:
                text += f" {f.tag}"
            parts.append(text)
        return "struct{" + "; ".join(parts) + "}"
    if kind == "interface":
        parts = [render_type(e) for e in t.embeds]
        parts.extend(f"{name}{_render_signature(sig)}" for name, sig in t.methods)
        return "interface{" + "; ".join(parts) + "}"
    raise TypeSyntaxError(f"cannot render type kind {kind!r}")


def _render_signature(t: TypeRef) -> str:
    params = [render_type(p) for p in t.params]
    if t.variadic and params:
        params[-1] = "..." + render_type(t.params[-1].elem)
    text = f"({', '.join(params)})"
    if len(t.results) == 1:
        text += f" {render_type(t.results[0])}"
    elif t.results:
        text += f" ({', '.join(render_type(r) for r in t.results)})"
    return text


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise TypeSyntaxError(f"unexpected character {text[pos]!r} in {text!r}")
        pos = match.end()
        kind = match.lastgroup
        if kind == "space":
            continue
        value = match.group()
        if kind in {"punct", "arrow"}:
            tokens.append((value, value))
        else:
            tokens.append((kind, value))
    tokens.append(("eof", ""))
    return tokens


_TYPE_END = frozenset({",", ")", "]", "}", ";", "|", "eof", "string"})


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def peek(self, offset: int = 0) -> tuple[str, str]:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def next(self) -> tuple[str, str]:
        token = self.tokens[self.pos]
        self.pos = min(self.pos + 1, len(self.tokens) - 1)
        return token

    def expect(self, kind: str) -> str:
        tok_kind, value = self.next()
        if tok_kind != kind:
            raise TypeSyntaxError(f"expected {kind!r}, got {value or tok_kind!r} in {self.text!r}")
        return value

    def accept(self, kind: str) -> bool:
        if self.peek()[0] == kind:
            self.next()
            return True
        return False

    def parse(self) -> TypeRef:
        result = self.parse_type()
        if self.peek()[0] != "eof":
            raise TypeSyntaxError(f"trailing input after type in {self.text!r}")
        return result

    def parse_type(self) -> TypeRef:
        kind, value = self.peek()
        if kind == "*":
            self.next()
            return TypeRef("pointer", elem=self.parse_type())
        if kind == "(":
            self.next()
            inner = self.parse_type()
            self.expect(")")
            return inner
        if kind == "[":
            self.next()
            if self.accept("]"):
                return TypeRef("slice", elem=self.parse_type())
            if self.accept("ellipsis"):
                self.expect("]")
                return TypeRef("array", elem=self.parse_type(), length=-1)
            length = int(self.expect("number"))
            self.expect("]")
            return TypeRef("array", elem=self.parse_type(), length=length)
        if kind == "<-":
            self.next()
            if self.peek()[1] != "chan":
                raise TypeSyntaxError(f"expected chan after <- in {self.text!r}")
            self.next()
            return TypeRef("chan", elem=self.parse_type(), dir="recv")
        if kind == "ident":
            if value == "map":
                self.next()
                self.expect("[")
                key = self.parse_type()
                self.expect("]")
                return TypeRef("map", key=key, elem=self.parse_type())
            if value == "chan":
                self.next()
                direction = "send" if self.accept("<-") else ""
                return TypeRef("chan", elem=self.parse_type(), dir=direction)
            if value == "func":
                self.next()
                return self.parse_signature()
            if value == "struct":
                self.next()
                return self.parse_struct()
            if value == "interface":
                self.next()
                return self.parse_interface()
            return self.parse_named()
        raise TypeSyntaxError(f"unexpected {value or kind!r} in {self.text!r}")

    def parse_named(self) -> TypeRef:
        name = self.expect("ident")
        if name in BASIC_TYPES or name in _BASIC_ALIASES:
            return basic(name)
        if name == "any":
            return TypeRef("interface", name="any")
        args: tuple[TypeRef, ...] = ()
        if self.peek()[0] == "[" and self.peek(1)[0] not in {"]", "number", "ellipsis"}:
            self.next()
            parsed = [self.parse_type()]
            while self.accept(","):
                parsed.append(self.parse_type())
            self.expect("]")
            args = tuple(parsed)
        return named(name, *args)

    def _starts_type(self) -> bool:
        return self.peek()[0] not in _TYPE_END

    def parse_signature(self) -> TypeRef:
        self.expect("(")
        params, variadic = self.parse_param_list(")")
        results: tuple[TypeRef, ...] = ()
        if self.peek()[0] == "(":
            self.next()
            results, _ = self.parse_param_list(")")
        elif self._starts_type():
            results = (self.parse_type(),)
        return TypeRef("func", params=params, results=results, variadic=variadic)

    def parse_param_list(self, close: str) -> tuple[tuple[TypeRef, ...], bool]:
        # Each entry is (name or None, type or None); bare identifiers stay
        # ambiguous until we know whether the list is named.
        entries: list[tuple[str | None, TypeRef | None, bool]] = []
        while not self.accept(close):
            variadic = False
            if self.accept("ellipsis"):
                variadic = True
                entries.append((None, self.parse_type(), True))
            elif self.peek()[0] == "ident" and self.peek()[1] not in _KEYWORDS and (
                self.peek(1)[0] not in _TYPE_END and self.peek(1)[0] != "["
                or (self.peek(1)[0] == "[" and self.peek(2)[0] in {"]", "number"})
            ):
                name = self.next()[1]
                if self.accept("ellipsis"):
                    variadic = True
                entries.append((name, self.parse_type(), variadic))
            else:
                entries.append((None, self.parse_type(), False))
            if not self.accept(","):
                self.expect(close)
                break

        has_names = any(name is not None for name, _, _ in entries)
        types: list[TypeRef] = []
        pending = 0
        for name, typ, _ in entries:
            if has_names and name is None and typ is not None and typ.kind == "named":
                pending += 1  # grouped name: "a, b int"
                continue
            types.extend([typ] * (pending + 1))
            pending = 0
        variadic = bool(entries) and entries[-1][2]
        if variadic:
            types[-1] = TypeRef("slice", elem=types[-1])
        return tuple(types), variadic

    def parse_struct(self) -> TypeRef:
        self.expect("{")
        fields: list[StructField] = []
        while not self.accept("}"):
            if self.accept(";"):
                continue
            kind, value = self.peek()
            embedded = kind == "*" or (
                kind == "ident" and self.peek(1)[0] in {";", "}", "string"}
            )
            if embedded:
                typ = self.parse_type()
                base = typ.deref()
                fields.append(
                    StructField(base.package_and_name()[1] or str(base), typ, True, self._tag())
                )
                continue
            names = [self.expect("ident")]
            while self.accept(","):
                names.append(self.expect("ident"))
            typ = self.parse_type()
            tag = self._tag()
            fields.extend(StructField(n, typ, False, tag) for n in names)
        return TypeRef("struct", fields=tuple(fields))

    def _tag(self) -> str:
        if self.peek()[0] == "string":
            return self.next()[1]
        return ""

    def parse_interface(self) -> TypeRef:
        self.expect("{")
        methods: list[tuple[str, TypeRef]] = []
        embeds: list[TypeRef] = []
        while not self.accept("}"):
            if self.accept(";"):
                continue
            if self.peek()[0] == "ident" and self.peek(1)[0] == "(":
                name = self.next()[1]
                methods.append((name, self.parse_signature()))
                continue
            self.accept("~")
            embeds.append(self.parse_type())
            while self.accept("|"):
                self.accept("~")
                self.parse_type()  # union terms only constrain type parameters
        return TypeRef("interface", methods=tuple(methods), embeds=tuple(embeds))


@lru_cache(maxsize=4096)
def parse_type(text: str) -> TypeRef:
    """Parse a Go type expression. Raises TypeSyntaxError on bad input."""
    if not text or not text.strip():
        raise TypeSyntaxError("empty type expression")
    return _Parser(text.strip()).parse()


def parse_signature(text: str) -> TypeRef:
    """Parse a method signature with or without the leading ``func``."""
    stripped = text.strip()
    if not stripped.startswith("func"):
        stripped = "func" + stripped
    parsed = parse_type(stripped)
    if parsed.kind != "func":
        raise TypeSyntaxError(f"not a signature: {text!r}")
    return parsed


__all__ = [
    "BASIC_TYPES",
    "INTEGER_TYPES",
    "StructField",
    "TypeRef",
    "TypeSyntaxError",
    "basic",
    "named",
    "parse_signature",
    "parse_type",
    "render_type",
]
