"""Shared tree-sitter Rust parser and node helpers."""

from __future__ import annotations

from typing import Iterator, Optional

import tree_sitter_rust
from tree_sitter import Language, Node, Parser, Tree

RUST_LANGUAGE = Language(tree_sitter_rust.language())

_PARSER: Optional[Parser] = None


def get_parser() -> Parser:
    """Return the process-wide Rust parser, creating it on first use."""
    global _PARSER
    if _PARSER is None:
        _PARSER = Parser(RUST_LANGUAGE)
    return _PARSER


def parse_rust(source: str | bytes) -> Tree:
    source_bytes = source.encode("utf-8") if isinstance(source, str) else source
    return get_parser().parse(source_bytes)


def node_text(node: Node, source_bytes: bytes) -> str:
    return source_bytes[node.start_byte : node.end_byte].decode("utf-8", errors="ignore")


def path_tail(node: Node, source_bytes: bytes) -> str:
    """Return the last segment of an identifier, scoped path or generic call target."""
    if node.type in {"scoped_identifier", "scoped_type_identifier"}:
        name_node = node.child_by_field_name("name")
        if name_node is not None:
            return node_text(name_node, source_bytes)
    if node.type == "generic_function":
        function = node.child_by_field_name("function")
        if function is not None:
            return path_tail(function, source_bytes)
    return node_text(node, source_bytes)


def iter_named(node: Node) -> Iterator[Node]:
    """Yield named children, skipping comments."""
    for child in node.named_children:
        if child.type in {"line_comment", "block_comment"}:
            continue
        yield child


def walk(node: Node) -> Iterator[Node]:
    """Depth-first pre-order traversal of a syntax tree."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


__all__ = [
    "RUST_LANGUAGE",
    "get_parser",
    "iter_named",
    "node_text",
    "parse_rust",
    "path_tail",
    "walk",
]
