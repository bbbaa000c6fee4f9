"""Canonical enums for finding attributes.

StrEnum values compare equal to their string values (Category.LAYOUT == "layout"),
so findings serialize without translation tables.
"""

from __future__ import annotations

import enum


class Category(enum.StrEnum):
    LAYOUT = "layout"
    ALLOCATION = "allocation"
    CONCURRENCY = "concurrency"
    MODERNIZATION = "modernization"
    COMMENT = "comment"
    ENTROPY = "entropy"


class Severity(enum.IntEnum):
    INFO = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @property
    def label(self) -> str:
        return self.name.lower()


class SymbolKind(enum.StrEnum):
    STRUCT = "struct"
    INTERFACE = "interface"
    TYPE = "type"
    FUNC = "func"
    METHOD = "method"
    FIELD = "field"
    INTERFACE_METHOD = "interface_method"
    CONST = "const"
    VAR = "var"


class AccessContext(enum.StrEnum):
    SEQUENTIAL = "sequential"
    GOROUTINE = "goroutine"
    MUTEX_GUARDED = "mutex_guarded"
    ATOMIC_OP = "atomic_op"
    EXCLUSIVE = "exclusive"


class DiagnosticKind(enum.StrEnum):
    RESOLUTION = "resolution"
    INTERNAL = "internal"
    PASS_FAILURE = "pass_failure"


TYPE_SYMBOL_KINDS = frozenset({SymbolKind.STRUCT, SymbolKind.INTERFACE, SymbolKind.TYPE})
CALLABLE_SYMBOL_KINDS = frozenset({SymbolKind.FUNC, SymbolKind.METHOD})


def category_tokens() -> frozenset[str]:
    """Return every valid category token."""
    return frozenset(c.value for c in Category)


def parse_severity(value: object) -> Severity:
    """Parse a severity label (``"high"``) or integer into a Severity."""
    if isinstance(value, Severity):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Severity(value)
    token = str(value).strip().upper()
    try:
        return Severity[token]
    except KeyError:
        raise ValueError(f"unknown severity: {value!r}") from None


__all__ = [
    "AccessContext",
    "CALLABLE_SYMBOL_KINDS",
    "Category",
    "DiagnosticKind",
    "Severity",
    "SymbolKind",
    "TYPE_SYMBOL_KINDS",
    "category_tokens",
    "parse_severity",
]
