"""Size and alignment rules of the gc toolchain, per target platform.

Mirrors go/types' gcSizes: basic types align to their size capped at the
platform's max alignment (complex types to half their size), strings, slices
and interfaces align to the word size, and a struct whose last field is
zero-sized (at a non-zero offset) gets one extra byte before final rounding.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from goaudit.core.errors import ResolutionError
from goaudit.program.types import TypeRef, parse_type


CACHE_LINE = 64


@dataclass(frozen=True)
class Platform:
    name: str
    word_size: int
    max_align: int


PLATFORMS: dict[str, Platform] = {
    p.name: p
    for p in (
        Platform("amd64", 8, 8),
        Platform("arm64", 8, 8),
        Platform("riscv64", 8, 8),
        Platform("ppc64le", 8, 8),
        Platform("s390x", 8, 8),
        Platform("loong64", 8, 8),
        Platform("wasm", 8, 8),
        Platform("386", 4, 4),
        Platform("arm", 4, 4),
        Platform("mips", 4, 4),
        Platform("mipsle", 4, 4),
    )
}

# Short import names the front end may print instead of full paths.
STD_PACKAGE_ALIASES = {
    "atomic": "sync/atomic",
    "ioutil": "io/ioutil",
    "http": "net/http",
    "url": "net/url",
}

# Underlying structure of standard library types that commonly appear as
# struct fields. Field names are irrelevant to layout; types are exact.
KNOWN_TYPES: dict[str, str] = {
    "error": "interface{Error() string}",
    "sync.Mutex": "struct{state int32; sema uint32}",
    "sync.RWMutex": (
        "struct{w sync.Mutex; writerSem uint32; readerSem uint32; "
        "readerCount sync/atomic.Int32; readerWait sync/atomic.Int32}"
    ),
    "sync.WaitGroup": "struct{state sync/atomic.Uint64; sema uint32}",
    "sync.Once": "struct{done sync/atomic.Uint32; m sync.Mutex}",
    "sync.Cond": (
        "struct{L sync.Locker; notify struct{wait uint32; notify uint32; "
        "lock uintptr; head unsafe.Pointer; tail unsafe.Pointer}; checker uintptr}"
    ),
    "sync.Locker": "interface{Lock(); Unlock()}",
    "sync.Pool": (
        "struct{local unsafe.Pointer; localSize uintptr; victim unsafe.Pointer; "
        "victimSize uintptr; New func() any}"
    ),
    "sync/atomic.Bool": "struct{v uint32}",
    "sync/atomic.Int32": "struct{v int32}",
    "sync/atomic.Uint32": "struct{v uint32}",
    "sync/atomic.Int64": "struct{v int64}",
    "sync/atomic.Uint64": "struct{v uint64}",
    "sync/atomic.Uintptr": "struct{v uintptr}",
    "sync/atomic.Value": "struct{v any}",
    "sync/atomic.Pointer": "struct{v unsafe.Pointer}",
    "time.Time": "struct{wall uint64; ext int64; loc *time.Location}",
    "time.Duration": "int64",
    "time.Month": "int",
    "time.Location": "struct{name string; zone []int; tx []int; extend string; cacheStart int64; cacheEnd int64; cacheZone *int}",
    "context.Context": (
        "interface{Deadline() (time.Time, bool); Done() <-chan struct{}; "
        "Err() error; Value(key any) any}"
    ),
    "bytes.Buffer": "struct{buf []byte; off int; lastRead int8}",
    "strings.Builder": "struct{addr *strings.Builder; buf []byte}",
    "io.Reader": "interface{Read(p []byte) (int, error)}",
    "io.Writer": "interface{Write(p []byte) (int, error)}",
    "io.Closer": "interface{Close() error}",
    "fmt.Stringer": "interface{String() string}",
    "net/http.Handler": "interface{ServeHTTP(net/http.ResponseWriter, *net/http.Request)}",
    "net/http.ResponseWriter": (
        "interface{Header() net/http.Header; Write([]byte) (int, error); WriteHeader(int)}"
    ),
    "net/http.Header": "map[string][]string",
}

# Types the compiler aligns to 8 bytes on every platform (atomic align64 marker).
ALIGN64_TYPES = frozenset({"sync/atomic.Int64", "sync/atomic.Uint64"})

MUTEX_TYPES = frozenset({"sync.Mutex", "sync.RWMutex"})
ATOMIC_TYPES = frozenset(
    name for name in KNOWN_TYPES if name.startswith("sync/atomic.")
)

NamedResolver = Callable[[TypeRef], TypeRef]


def canonical_std_name(name: str) -> str:
    """Expand short std package prefixes (``atomic.Int64`` -> ``sync/atomic.Int64``)."""
    if name in KNOWN_TYPES or "." not in name:
        return name
    pkg, _, base = name.rpartition(".")
    expanded = STD_PACKAGE_ALIASES.get(pkg)
    if expanded is not None:
        return f"{expanded}.{base}"
    return name


def known_underlying(t: TypeRef) -> TypeRef | None:
    """Underlying type of a known standard library named type, if any."""
    source = KNOWN_TYPES.get(canonical_std_name(t.name))
    return parse_type(source) if source is not None else None


def align_up(offset: int, alignment: int) -> int:
    return (offset + alignment - 1) // alignment * alignment


class Sizes:
    """Computes sizes/alignments; named types go through ``resolve``.

    Results are memoized until ``freeze()`` is called. After freezing the
    instance is read-only and safe to share between analyzer threads.
    """

    def __init__(self, platform: Platform, resolve: NamedResolver) -> None:
        self.platform = platform
        self._resolve = resolve
        self._memo: dict[str, tuple[int, int]] = {}
        self._frozen = False

    def freeze(self) -> None:
        self._frozen = True

    def measure(self, t: TypeRef, _seen: frozenset[str] = frozenset()) -> tuple[int, int]:
        """Return (size, alignment). Raises ResolutionError for unknown types."""
        key = str(t)
        cached = self._memo.get(key)
        if cached is not None:
            return cached
        if t.kind == "named":
            if key in _seen:
                raise ResolutionError(t.name, "invalid recursive type")
            result = self._measure_named(t, _seen | {key})
        else:
            result = self._measure_unnamed(t, _seen)
        if not self._frozen:
            self._memo[key] = result
        return result

    def _measure_named(self, t: TypeRef, seen: frozenset[str]) -> tuple[int, int]:
        std_name = canonical_std_name(t.name)
        if std_name == "sync/atomic.Pointer":
            word = self.platform.word_size
            return word, word
        underlying = self._resolve(t)
        size, align = self.measure(underlying, seen)
        if std_name in ALIGN64_TYPES:
            align = 8
            size = align_up(size, align)
        return size, align

    def _measure_unnamed(self, t: TypeRef, seen: frozenset[str]) -> tuple[int, int]:
        word = self.platform.word_size
        kind = t.kind
        if kind == "basic":
            return self._measure_basic(t.name)
        if kind in {"pointer", "map", "chan", "func"}:
            return word, word
        if kind == "slice":
            return 3 * word, word
        if kind == "interface":
            return 2 * word, word
        if kind == "array":
            if t.length < 0:
                raise ResolutionError(str(t), "array length not resolved")
            elem_size, elem_align = self.measure(t.elem, seen)
            return elem_size * t.length, elem_align
        if kind == "struct":
            size, align, _ = self.struct_layout([f.type for f in t.fields], seen)
            return size, align
        raise ResolutionError(str(t), f"cannot size type kind {kind!r}")

    def _measure_basic(self, name: str) -> tuple[int, int]:
        word = self.platform.word_size
        if name in {"int", "uint", "uintptr", "unsafe.Pointer"}:
            return word, word
        if name == "string":
            return 2 * word, word
        size = {
            "bool": 1,
            "int8": 1,
            "uint8": 1,
            "int16": 2,
            "uint16": 2,
            "int32": 4,
            "uint32": 4,
            "float32": 4,
            "int64": 8,
            "uint64": 8,
            "float64": 8,
            "complex64": 8,
            "complex128": 16,
        }.get(name)
        if size is None:
            raise ResolutionError(name, "unknown basic type")
        align = size // 2 if name.startswith("complex") else size
        return size, min(align, self.platform.max_align)

    def struct_layout(
        self, field_types: Sequence[TypeRef], _seen: frozenset[str] = frozenset()
    ) -> tuple[int, int, list[int]]:
        """Lay fields out in order: return (size, alignment, offsets)."""
        offsets: list[int] = []
        offset = 0
        max_align = 1
        last_size = 0
        for typ in field_types:
            size, align = self.measure(typ, _seen)
            offset = align_up(offset, align)
            offsets.append(offset)
            offset += size
            last_size = size
            max_align = max(max_align, align)
        if not offsets:
            return 0, 1, offsets
        end = offset
        if offsets[-1] > 0 and last_size == 0:
            end += 1
        return align_up(end, max_align), max_align, offsets


def is_mutex_type(t: TypeRef) -> bool:
    return t.kind == "named" and canonical_std_name(t.name) in MUTEX_TYPES


def is_atomic_type(t: TypeRef) -> bool:
    return t.kind == "named" and canonical_std_name(t.name) in ATOMIC_TYPES


__all__ = [
    "ALIGN64_TYPES",
    "ATOMIC_TYPES",
    "CACHE_LINE",
    "KNOWN_TYPES",
    "MUTEX_TYPES",
    "PLATFORMS",
    "Platform",
    "STD_PACKAGE_ALIASES",
    "Sizes",
    "align_up",
    "canonical_std_name",
    "is_atomic_type",
    "is_mutex_type",
    "known_underlying",
]
