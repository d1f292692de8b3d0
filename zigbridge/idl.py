"""Interface declaration parsing.

Declaration text is the Rust half of an embedded block. It is parsed with
tree-sitter into a :class:`~zigbridge.models.DeclarationSet`: exported
function signatures (optionally inside ``extern "C" { ... }``), struct and
enum definitions captured verbatim, and trait or inherent impl blocks whose
methods forward to foreign functions. Items that fail to parse are skipped
with a diagnostic; the rest of the block is still used.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from tree_sitter import Node

from .errors import DeclarationError
from .logging import get_logger
from .models import (
    DeclarationSet,
    FunctionDecl,
    GenericParam,
    ImplBlock,
    ImplMethod,
    MethodRole,
    Param,
    Receiver,
    TypeDecl,
)
from .syntax import iter_named, node_text, parse_rust, path_tail
from .types import PathType, TypeExpr, type_from_node

logger = get_logger("idl")

OPAQUE_MARKER = "opaque"
MONOMORPHIZE_ATTRIBUTE = "monomorphize"
CONSTRUCTOR_ATTRIBUTE = "constructor"
DESTRUCTOR_ATTRIBUTE = "destructor"

_FUNCTION_ITEMS = {"function_signature_item", "function_item"}
# Wrapping constructors are looked through, not forwarded to.
_VALUE_CONSTRUCTORS = {"Some", "Ok", "Err"}


@dataclass(frozen=True)
class Attribute:
    name: str
    arguments: Optional[str]
    text: str


def split_arguments(text: str) -> List[str]:
    """Split attribute arguments on top-level commas."""
    parts: List[str] = []
    depth = 0
    previous = ""
    current: List[str] = []
    for char in text:
        if char in "<([{":
            depth += 1
        elif char in ")]}" or (char == ">" and previous != "-"):
            depth -= 1
        previous = char
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [part for part in parts if part]


def find_forwarded_call(node: Node, source_bytes: bytes) -> Optional[str]:
    """Return the first function a method body forwards to.

    Only calls, blocks, if/else arms and let initialisers are searched, in
    that order; method calls on values do not count as forwarded calls.
    """
    kind = node.type
    if kind == "call_expression":
        function = node.child_by_field_name("function")
        if function is not None and function.type in {
            "identifier",
            "scoped_identifier",
            "generic_function",
        }:
            name = path_tail(function, source_bytes)
            if name not in _VALUE_CONSTRUCTORS:
                return name
            arguments = node.child_by_field_name("arguments")
            if arguments is None:
                return None
            for argument in iter_named(arguments):
                found = find_forwarded_call(argument, source_bytes)
                if found is not None:
                    return found
        return None
    if kind in {"block", "unsafe_block"}:
        for child in iter_named(node):
            found = find_forwarded_call(child, source_bytes)
            if found is not None:
                return found
        return None
    if kind == "expression_statement":
        for child in iter_named(node):
            return find_forwarded_call(child, source_bytes)
        return None
    if kind == "if_expression":
        for field in ("condition", "consequence", "alternative"):
            child = node.child_by_field_name(field)
            if child is None:
                continue
            found = find_forwarded_call(child, source_bytes)
            if found is not None:
                return found
        return None
    if kind in {"else_clause", "let_chain"}:
        for child in iter_named(node):
            found = find_forwarded_call(child, source_bytes)
            if found is not None:
                return found
        return None
    if kind in {"let_declaration", "let_condition"}:
        value = node.child_by_field_name("value")
        return find_forwarded_call(value, source_bytes) if value is not None else None
    return None


class DeclarationParser:
    """Parses declaration text into typed interface declarations."""

    def __init__(self, opaque_marker: str = OPAQUE_MARKER) -> None:
        self.opaque_marker = opaque_marker

    def parse(self, text: str, *, origin: str = "<declarations>") -> DeclarationSet:
        """Parse one declaration block.

        Raises DeclarationError when non-empty text yields nothing usable.
        """
        result = DeclarationSet()
        source_bytes = text.encode("utf-8")
        if not _has_content(text):
            return result

        root = parse_rust(source_bytes).root_node
        impl_nodes: List[Tuple[Node, List[Attribute]]] = []
        self._collect(root, source_bytes, origin, result, impl_nodes)

        opaque = result.opaque_types
        for node, _attributes in impl_nodes:
            impl = self._parse_impl(node, source_bytes, origin, opaque, result.diagnostics)
            if impl is not None:
                result.impls.append(impl)

        if result.is_empty():
            raise DeclarationError(origin, "declaration block contains no usable declarations")
        logger.debug(
            "%s: parsed %d functions, %d types, %d impl blocks",
            origin,
            len(result.functions),
            len(result.types),
            len(result.impls),
        )
        return result

    def _collect(
        self,
        container: Node,
        source_bytes: bytes,
        origin: str,
        result: DeclarationSet,
        impl_nodes: List[Tuple[Node, List[Attribute]]],
    ) -> None:
        pending: List[Attribute] = []
        for node in iter_named(container):
            if node.type == "attribute_item":
                attribute = _parse_attribute(node, source_bytes)
                if attribute is not None:
                    pending.append(attribute)
                continue

            attributes, pending = pending, []
            if node.type == "ERROR" or node.has_error:
                self._skip(result, origin, node, "skipped unparsable declaration")
                continue
            if node.type in _FUNCTION_ITEMS:
                result.functions.append(parse_function(node, source_bytes, attributes))
            elif node.type == "foreign_mod_item":
                body = node.child_by_field_name("body") or _first_child(node, "declaration_list")
                if body is not None:
                    self._collect(body, source_bytes, origin, result, impl_nodes)
            elif node.type in {"struct_item", "enum_item"}:
                decl = self._parse_type(node, source_bytes, attributes)
                if decl is not None:
                    result.types.append(decl)
            elif node.type == "impl_item":
                impl_nodes.append((node, attributes))
            elif node.type in {"use_declaration", "empty_statement"}:
                continue
            else:
                self._skip(result, origin, node, f"ignored unsupported item `{node.type}`")

    def _parse_type(
        self, node: Node, source_bytes: bytes, attributes: Sequence[Attribute]
    ) -> Optional[TypeDecl]:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        name = node_text(name_node, source_bytes)
        text = "\n".join([attr.text for attr in attributes] + [node_text(node, source_bytes)])
        has_repr = any(attr.name == "repr" for attr in attributes)

        if node.type == "enum_item":
            return TypeDecl(name=name, kind="enum", text=text, has_repr=has_repr)

        body = node.child_by_field_name("body")
        fields: List[Param] = []
        tuple_fields: List[TypeExpr] = []
        if body is None:
            return TypeDecl(name=name, kind="struct", text=text, is_unit=True, has_repr=has_repr)
        if body.type == "field_declaration_list":
            for field in iter_named(body):
                if field.type != "field_declaration":
                    continue
                field_name = field.child_by_field_name("name")
                field_type = field.child_by_field_name("type")
                if field_name is None or field_type is None:
                    continue
                fields.append(
                    Param(node_text(field_name, source_bytes), type_from_node(field_type, source_bytes))
                )
        elif body.type == "ordered_field_declaration_list":
            for child in body.children_by_field_name("type"):
                tuple_fields.append(type_from_node(child, source_bytes))

        is_opaque = len(tuple_fields) == 1 and tuple_fields[0] == PathType(self.opaque_marker)
        return TypeDecl(
            name=name,
            kind="struct",
            text=text,
            fields=tuple(fields),
            tuple_fields=tuple(tuple_fields),
            is_unit=not fields and not tuple_fields,
            is_opaque=is_opaque,
            has_repr=has_repr,
        )

    def _parse_impl(
        self,
        node: Node,
        source_bytes: bytes,
        origin: str,
        opaque: set[str],
        diagnostics: List[str],
    ) -> Optional[ImplBlock]:
        type_node = node.child_by_field_name("type")
        body = node.child_by_field_name("body")
        if type_node is None or body is None:
            return None
        target = path_tail(type_node, source_bytes)
        trait_node = node.child_by_field_name("trait")
        trait_name = node_text(trait_node, source_bytes) if trait_node is not None else None
        is_opaque = target in opaque

        methods: List[ImplMethod] = []
        constructor: Optional[ImplMethod] = None
        destructor: Optional[ImplMethod] = None
        pending: List[Attribute] = []
        for item in iter_named(body):
            if item.type == "attribute_item":
                attribute = _parse_attribute(item, source_bytes)
                if attribute is not None:
                    pending.append(attribute)
                continue
            attributes, pending = pending, []
            if item.type != "function_item" or item.has_error:
                continue

            label = f"{target}::{_function_name(item, source_bytes)}"
            method = self._parse_method(
                item, source_bytes, attributes, is_opaque, diagnostics, origin, label
            )
            if method is None:
                self._note(diagnostics, origin, f"method `{label}` forwards to no foreign function; skipped")
                continue
            if method.role is not MethodRole.METHOD and not is_opaque:
                self._note(
                    diagnostics,
                    origin,
                    f"`#[{method.role.value}]` on `{label}` applies only to opaque types; ignored",
                )
                continue
            if method.role is MethodRole.CONSTRUCTOR:
                if constructor is not None:
                    self._note(diagnostics, origin, f"second constructor `{label}` ignored")
                    continue
                constructor = method
            elif method.role is MethodRole.DESTRUCTOR:
                if destructor is not None:
                    self._note(diagnostics, origin, f"second destructor `{label}` ignored")
                    continue
                destructor = method
            else:
                methods.append(method)

        if not methods and constructor is None and destructor is None:
            self._note(diagnostics, origin, f"impl block for `{target}` has no bridgeable methods")
            return None
        return ImplBlock(
            target=target,
            trait_name=trait_name,
            methods=tuple(methods),
            constructor=constructor,
            destructor=destructor,
            is_opaque=is_opaque,
        )

    def _parse_method(
        self,
        node: Node,
        source_bytes: bytes,
        attributes: Sequence[Attribute],
        is_opaque: bool,
        diagnostics: List[str],
        origin: str,
        label: str,
    ) -> Optional[ImplMethod]:
        body = node.child_by_field_name("body")
        if body is None:
            return None
        forwards_to = find_forwarded_call(body, source_bytes)
        if forwards_to is None:
            return None

        signature = parse_function(node, source_bytes, attributes)
        names = {attr.name for attr in attributes}
        role = MethodRole.METHOD
        if CONSTRUCTOR_ATTRIBUTE in names:
            role = MethodRole.CONSTRUCTOR
        elif DESTRUCTOR_ATTRIBUTE in names:
            role = MethodRole.DESTRUCTOR

        simple = _is_simple_forward(body, source_bytes, forwards_to, signature)
        if is_opaque and not simple:
            # Opaque methods always become a direct handle-injected call.
            self._note(
                diagnostics,
                origin,
                f"body of `{label}` replaced by a direct call to `{forwards_to}`",
            )
            simple = True
        return ImplMethod(
            signature=signature,
            forwards_to=forwards_to,
            body=None if simple else node_text(body, source_bytes),
            simple_forward=simple,
            role=role,
        )

    @staticmethod
    def _skip(result: DeclarationSet, origin: str, node: Node, message: str) -> None:
        line = node.start_point[0] + 1
        DeclarationParser._note(result.diagnostics, origin, f"{message} (line {line})")

    @staticmethod
    def _note(diagnostics: List[str], origin: str, message: str) -> None:
        logger.warning("%s: %s", origin, message)
        diagnostics.append(message)


def parse_function(
    node: Node, source_bytes: bytes, attributes: Sequence[Attribute] = ()
) -> FunctionDecl:
    """Build a FunctionDecl from a function item or signature node."""
    name = _function_name(node, source_bytes)
    generics = _parse_generics(node, source_bytes)

    receiver = Receiver.NONE
    params: List[Param] = []
    parameters = node.child_by_field_name("parameters")
    if parameters is not None:
        for index, child in enumerate(iter_named(parameters)):
            if child.type == "self_parameter":
                receiver = _receiver(child, source_bytes)
            elif child.type == "parameter":
                pattern = child.child_by_field_name("pattern")
                type_node = child.child_by_field_name("type")
                if type_node is None:
                    continue
                param_name = f"arg{index}"
                if pattern is not None and pattern.type == "identifier":
                    param_name = node_text(pattern, source_bytes)
                params.append(Param(param_name, type_from_node(type_node, source_bytes)))

    return_node = node.child_by_field_name("return_type")
    return_type = type_from_node(return_node, source_bytes) if return_node is not None else None

    monomorphize: Tuple[str, ...] = ()
    for attribute in attributes:
        if attribute.name == MONOMORPHIZE_ATTRIBUTE:
            monomorphize = tuple(split_arguments(attribute.arguments or ""))

    return FunctionDecl(
        name=name,
        params=tuple(params),
        return_type=return_type,
        generics=generics,
        is_async=_is_async(node, source_bytes),
        monomorphize=monomorphize,
        attributes=tuple(attr.name for attr in attributes),
        receiver=receiver,
    )


def _function_name(node: Node, source_bytes: bytes) -> str:
    name_node = node.child_by_field_name("name")
    return node_text(name_node, source_bytes) if name_node is not None else "<anonymous>"


def _is_async(node: Node, source_bytes: bytes) -> bool:
    for child in node.children:
        if child.type == "function_modifiers":
            return "async" in node_text(child, source_bytes).split()
    return False


def _receiver(node: Node, source_bytes: bytes) -> Receiver:
    text = node_text(node, source_bytes).replace(" ", "")
    if text.startswith("&"):
        return Receiver.MUTABLE if "mut" in text else Receiver.SHARED
    return Receiver.VALUE


def _parse_generics(node: Node, source_bytes: bytes) -> Tuple[GenericParam, ...]:
    type_parameters = node.child_by_field_name("type_parameters")
    if type_parameters is None:
        return ()

    bounds: Dict[str, List[str]] = {}
    for child in iter_named(type_parameters):
        if child.type == "type_identifier":
            bounds.setdefault(node_text(child, source_bytes), [])
        elif child.type in {"type_parameter", "optional_type_parameter"}:
            name_node = child.child_by_field_name("name")
            if name_node is None:
                continue
            bounds.setdefault(node_text(name_node, source_bytes), []).extend(
                _bound_names(child.child_by_field_name("bounds"), source_bytes)
            )
        elif child.type == "constrained_type_parameter":
            left = child.child_by_field_name("left")
            if left is None or left.type != "type_identifier":
                continue
            bounds.setdefault(node_text(left, source_bytes), []).extend(
                _bound_names(child.child_by_field_name("bounds"), source_bytes)
            )

    for child in node.children:
        if child.type != "where_clause":
            continue
        for predicate in iter_named(child):
            left = predicate.child_by_field_name("left")
            if left is None:
                continue
            left_name = node_text(left, source_bytes)
            if left_name in bounds:
                bounds[left_name].extend(
                    _bound_names(predicate.child_by_field_name("bounds"), source_bytes)
                )

    return tuple(GenericParam(name, tuple(names)) for name, names in bounds.items())


def _bound_names(node: Optional[Node], source_bytes: bytes) -> List[str]:
    if node is None:
        return []
    names: List[str] = []
    for child in iter_named(node):
        if child.type == "lifetime":
            continue
        target = child.child_by_field_name("type") if child.type == "generic_type" else child
        names.append(path_tail(target or child, source_bytes))
    return names


def _parse_attribute(node: Node, source_bytes: bytes) -> Optional[Attribute]:
    attribute = _first_child(node, "attribute")
    if attribute is None:
        return None
    path: Optional[Node] = None
    for child in attribute.named_children:
        path = child
        break
    if path is None:
        return None
    arguments_node = attribute.child_by_field_name("arguments")
    arguments = None
    if arguments_node is not None:
        raw = node_text(arguments_node, source_bytes)
        arguments = raw[1:-1] if len(raw) >= 2 else raw
    return Attribute(
        name=path_tail(path, source_bytes),
        arguments=arguments,
        text=node_text(node, source_bytes),
    )


def _is_simple_forward(
    body: Node, source_bytes: bytes, forwards_to: str, signature: FunctionDecl
) -> bool:
    statements = list(iter_named(body))
    if len(statements) != 1:
        return False
    call = statements[0]
    if call.type == "expression_statement":
        inner = list(iter_named(call))
        if len(inner) != 1:
            return False
        call = inner[0]
    if call.type != "call_expression":
        return False
    function = call.child_by_field_name("function")
    arguments = call.child_by_field_name("arguments")
    if function is None or arguments is None:
        return False
    if path_tail(function, source_bytes) != forwards_to:
        return False
    names = []
    for argument in iter_named(arguments):
        if argument.type != "identifier":
            return False
        names.append(node_text(argument, source_bytes))
    return names == [param.name for param in signature.params]


def _first_child(node: Node, kind: str) -> Optional[Node]:
    for child in node.named_children:
        if child.type == kind:
            return child
    return None


def _has_content(text: str) -> bool:
    """Return True when text holds anything besides whitespace and comments."""
    root = parse_rust(text).root_node
    return any(True for _ in iter_named(root))


__all__ = [
    "Attribute",
    "DeclarationParser",
    "OPAQUE_MARKER",
    "find_forwarded_call",
    "parse_function",
    "split_arguments",
]
