"""Tests for the type-expression parser and the program document loader."""

from __future__ import annotations

import json

import pytest

from goaudit.core.errors import ConfigurationError, ProgramLoadError
from goaudit.program.loader import load_program, node_from_dict
from goaudit.program.types import TypeSyntaxError, parse_signature, parse_type


# ── type expressions ──────────────────────────────────────


@pytest.mark.parametrize(
    "text",
    [
        "int64",
        "*store.Cache",
        "[]string",
        "[4]uint32",
        "map[string][]int",
        "chan<- int",
        "<-chan struct{}",
        "func(int, string) (bool, error)",
        "struct{a int32; b bool}",
        "interface{Read([]uint8) (int, error)}",
        "sync/atomic.Pointer[example.com/app.Node]",
    ],
)
def test_render_round_trips(text):
    assert str(parse_type(text)) == text


def test_parse_shapes():
    m = parse_type("map[string]*Item")
    assert m.kind == "map"
    assert m.key.name == "string"
    assert m.elem.is_pointer and m.elem.deref().name == "Item"
    assert parse_type("[8]byte").length == 8
    assert parse_type("byte").name == "uint8"
    assert str(parse_type("[]byte")) == "[]uint8"


def test_any_is_an_empty_interface_that_remembers_its_spelling():
    spelled = parse_type("any")
    literal = parse_type("interface{}")
    assert spelled.is_empty_interface and spelled.spelled_any
    assert literal.is_empty_interface and not literal.spelled_any
    assert str(spelled) == str(literal) == "interface{}"


def test_signature_with_named_and_variadic_params():
    sig = parse_signature("(ctx context.Context, keys ...string) error")
    assert [str(p) for p in sig.params] == ["context.Context", "[]string"]
    assert sig.variadic
    assert str(sig) == "func(context.Context, ...string) error"


def test_grouped_parameter_names():
    sig = parse_signature("func(a, b int) int")
    assert [str(p) for p in sig.params] == ["int", "int"]


@pytest.mark.parametrize("text", ["", "map[string", "func(", "[x]int", "int int"])
def test_malformed_types_raise(text):
    with pytest.raises(TypeSyntaxError):
        parse_type(text)


# ── loader ────────────────────────────────────────────────


def _document() -> dict:
    return {
        "go_version": "1.23",
        "packages": [
            {
                "path": "example.com/app/store",
                "name": "store",
                "files": [
                    {
                        "path": "store/cache.go",
                        "declarations": [
                            {
                                "kind": "struct",
                                "name": "Cache",
                                "line": 3,
                                "doc": "Cache holds entries.",
                                "fields": [
                                    {"name": "mu", "type": "sync.Mutex", "line": 4},
                                    {"name": "hits", "type": "int64", "line": 5,
                                     "tag": '`json:"hits"`'},
                                ],
                            },
                            {
                                "kind": "method",
                                "name": "Hit",
                                "receiver": "*Cache",
                                "line": 8,
                                "body": {
                                    "kind": "block",
                                    "line": 8,
                                    "children": [
                                        {"kind": "inc_dec", "op": "++", "line": 9, "children": [
                                            {"kind": "selector", "role": "x", "name": "hits",
                                             "line": 9, "ref": "example.com/app/store.Cache.hits"}
                                        ]}
                                    ],
                                },
                            },
                        ],
                        "comments": [
                            {"line": 9, "text": "// count it", "scope": "example.com/app/store.Cache.Hit"}
                        ],
                    }
                ],
            }
        ],
        "field_heat": {"example.com/app/store.Cache.hits": 120},
    }


def test_load_program_from_mapping():
    program = load_program(_document())
    assert program.go_version == "1.23"
    assert [p.path for p in program.packages] == ["example.com/app/store"]
    cache, hit = program.declarations
    assert cache.handle == "example.com/app/store.Cache"
    assert [f.name for f in cache.fields] == ["mu", "hits"]
    assert cache.fields[1].tag == '`json:"hits"`'
    assert hit.handle == "example.com/app/store.Cache.Hit"
    assert hit.pointer_receiver
    stmt = hit.body.statements[0]
    assert stmt.kind == "inc_dec"
    assert stmt.span.file == "store/cache.go"
    assert stmt.field("x").ref == "example.com/app/store.Cache.hits"
    assert program.comments[0].scope == "example.com/app/store.Cache.Hit"
    assert program.field_heat["example.com/app/store.Cache.hits"] == 120.0


def test_load_program_from_path(tmp_path):
    path = tmp_path / "program.json"
    path.write_text(json.dumps(_document()))
    assert len(load_program(path).declarations) == 2


def test_children_inherit_file_unless_overridden():
    node = node_from_dict(
        {"kind": "block", "line": 1, "children": [
            {"kind": "ident", "line": 2},
            {"kind": "ident", "line": 3, "file": "other.go"},
        ]},
        "main.go",
    )
    assert [c.span.file for c in node.children] == ["main.go", "other.go"]


@pytest.mark.parametrize(
    "document",
    [
        {},
        {"packages": [{"name": "x"}]},
        {"packages": [{"path": "p", "files": [{"path": "a.go", "declarations": [
            {"kind": "class", "name": "X", "line": 1}]}]}]},
        {"packages": [{"path": "p", "files": [{"path": "a.go", "declarations": [
            {"kind": "func", "name": "X"}]}]}]},
        {"packages": [], "field_heat": ["x"]},
    ],
)
def test_malformed_documents_raise_program_load_error(document):
    with pytest.raises(ProgramLoadError) as info:
        load_program(document)
    assert isinstance(info.value, ConfigurationError)


def test_unreadable_document(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ProgramLoadError, match="cannot read"):
        load_program(path)
