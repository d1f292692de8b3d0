"""Structural type expressions for host-side declarations.

Types seen at the bridge boundary are modelled as a small closed sum:
paths (with optional generic arguments), references, slices, fixed arrays,
raw pointers and an opaque fallback that keeps the original text. Everything
that rewrites or classifies a type works on this structure rather than on
strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Tuple, Union

from tree_sitter import Node

from .syntax import node_text, parse_rust

PRIMITIVE_SCALARS = frozenset(
    {
        "i8",
        "i16",
        "i32",
        "i64",
        "i128",
        "isize",
        "u8",
        "u16",
        "u32",
        "u64",
        "u128",
        "usize",
        "f32",
        "f64",
        "bool",
        "char",
    }
)

_ZIG_SCALARS = {name: name for name in PRIMITIVE_SCALARS}
_ZIG_SCALARS.update({"char": "u32", "c_void": "anyopaque"})

_NON_IDENT = re.compile(r"[^0-9A-Za-z]+")


@dataclass(frozen=True)
class PathType:
    name: str
    args: Tuple["TypeExpr", ...] = ()

    @property
    def tail(self) -> str:
        return self.name.rsplit("::", 1)[-1]


@dataclass(frozen=True)
class ReferenceType:
    inner: "TypeExpr"
    mutable: bool = False


@dataclass(frozen=True)
class SliceType:
    element: "TypeExpr"


@dataclass(frozen=True)
class ArrayType:
    element: "TypeExpr"
    length: str


@dataclass(frozen=True)
class PointerType:
    inner: "TypeExpr"
    mutable: bool = False


@dataclass(frozen=True)
class OtherType:
    text: str


TypeExpr = Union[PathType, ReferenceType, SliceType, ArrayType, PointerType, OtherType]

UNIT = OtherType("()")


class TypeSyntaxError(ValueError):
    """Raised when type text does not parse as a single Rust type."""


def type_from_node(node: Node, source_bytes: bytes) -> TypeExpr:
    """Build a type expression from a tree-sitter type node."""
    kind = node.type
    if kind in {"primitive_type", "type_identifier", "scoped_type_identifier"}:
        return PathType(node_text(node, source_bytes))
    if kind == "generic_type":
        base = node.child_by_field_name("type")
        arguments = node.child_by_field_name("type_arguments")
        name = node_text(base, source_bytes) if base is not None else node_text(node, source_bytes)
        args: list[TypeExpr] = []
        if arguments is not None:
            for child in arguments.named_children:
                if child.type in {"lifetime", "line_comment", "block_comment"}:
                    continue
                args.append(type_from_node(child, source_bytes))
        return PathType(name, tuple(args))
    if kind == "reference_type":
        inner = node.child_by_field_name("type")
        mutable = any(child.type == "mutable_specifier" for child in node.children)
        return ReferenceType(_child_type(inner, source_bytes), mutable)
    if kind == "pointer_type":
        inner = node.child_by_field_name("type")
        mutable = any(child.type == "mutable_specifier" for child in node.children)
        return PointerType(_child_type(inner, source_bytes), mutable)
    if kind == "array_type":
        element = _child_type(node.child_by_field_name("element"), source_bytes)
        length = node.child_by_field_name("length")
        if length is None:
            return SliceType(element)
        return ArrayType(element, node_text(length, source_bytes))
    if kind == "unit_type":
        return UNIT
    return OtherType(node_text(node, source_bytes))


def _child_type(node: Node | None, source_bytes: bytes) -> TypeExpr:
    if node is None:
        return OtherType("_")
    return type_from_node(node, source_bytes)


def parse_type(text: str) -> TypeExpr:
    """Parse standalone Rust type text, raising TypeSyntaxError when it is not a type."""
    stripped = text.strip()
    if not stripped:
        raise TypeSyntaxError("empty type")
    source = f"type __Probe = {stripped};"
    source_bytes = source.encode("utf-8")
    tree = parse_rust(source_bytes)
    root = tree.root_node
    if root.has_error or len(root.named_children) != 1:
        raise TypeSyntaxError(f"not a type: {stripped!r}")
    item = root.named_children[0]
    type_node = item.child_by_field_name("type")
    if item.type != "type_item" or type_node is None:
        raise TypeSyntaxError(f"not a type: {stripped!r}")
    return type_from_node(type_node, source_bytes)


def render(ty: TypeExpr) -> str:
    """Render a type expression as Rust source text."""
    if isinstance(ty, PathType):
        if ty.args:
            return f"{ty.name}<{', '.join(render(arg) for arg in ty.args)}>"
        return ty.name
    if isinstance(ty, ReferenceType):
        return f"&{'mut ' if ty.mutable else ''}{render(ty.inner)}"
    if isinstance(ty, SliceType):
        return f"[{render(ty.element)}]"
    if isinstance(ty, ArrayType):
        return f"[{render(ty.element)}; {ty.length}]"
    if isinstance(ty, PointerType):
        return f"*{'mut' if ty.mutable else 'const'} {render(ty.inner)}"
    return ty.text


def render_zig(ty: TypeExpr) -> str:
    """Render a type expression with Zig syntax (best effort, for generated shims)."""
    if isinstance(ty, PathType):
        if ty.tail in _ZIG_SCALARS and not ty.args:
            return _ZIG_SCALARS[ty.tail]
        return ty.tail
    if isinstance(ty, (ReferenceType, PointerType)):
        if isinstance(ty.inner, SliceType):
            element = render_zig(ty.inner.element)
            return f"[*]{'' if ty.mutable else 'const '}{element}"
        if isinstance(ty.inner, PathType) and ty.inner.tail == "str":
            return f"[*]{'' if ty.mutable else 'const '}u8"
        return f"*{'' if ty.mutable else 'const '}{render_zig(ty.inner)}"
    if isinstance(ty, SliceType):
        return f"[]const {render_zig(ty.element)}"
    if isinstance(ty, ArrayType):
        return f"[{ty.length}]{render_zig(ty.element)}"
    if ty == UNIT:
        return "void"
    return ty.text


def substitute(ty: TypeExpr, name: str, replacement: TypeExpr) -> TypeExpr:
    """Replace every occurrence of the bare path `name` with `replacement`."""
    if isinstance(ty, PathType):
        if ty.name == name and not ty.args:
            return replacement
        if ty.args:
            return PathType(ty.name, tuple(substitute(arg, name, replacement) for arg in ty.args))
        return ty
    if isinstance(ty, ReferenceType):
        return ReferenceType(substitute(ty.inner, name, replacement), ty.mutable)
    if isinstance(ty, PointerType):
        return PointerType(substitute(ty.inner, name, replacement), ty.mutable)
    if isinstance(ty, SliceType):
        return SliceType(substitute(ty.element, name, replacement))
    if isinstance(ty, ArrayType):
        return ArrayType(substitute(ty.element, name, replacement), ty.length)
    # Simple identifiers inside otherwise opaque text, e.g. `fn(T) -> T`.
    pattern = re.compile(rf"\b{re.escape(name)}\b")
    if pattern.search(ty.text):
        return OtherType(pattern.sub(render(replacement), ty.text))
    return ty


def canonical_token(ty: TypeExpr) -> str:
    """Return the identifier-safe token used when mangling symbol names."""
    return _NON_IDENT.sub("_", render(ty)).strip("_")


def is_unit(ty: TypeExpr | None) -> bool:
    return ty is None or ty == UNIT


__all__ = [
    "ArrayType",
    "OtherType",
    "PRIMITIVE_SCALARS",
    "PathType",
    "PointerType",
    "ReferenceType",
    "SliceType",
    "TypeExpr",
    "TypeSyntaxError",
    "UNIT",
    "canonical_token",
    "is_unit",
    "parse_type",
    "render",
    "render_zig",
    "substitute",
    "type_from_node",
]
