"""Host-side type definitions emitted alongside the bridge."""

from __future__ import annotations

from typing import Dict, List

from ..models import BridgeFragment, TypeItem
from .base import GenerationContext, Generator

_ZERO_SIZED = "#[derive(Default, Debug, Clone, Copy)]\npub struct {name};"


class TypeDeclarationGenerator(Generator):
    """Emits declared structs and enums plus zero-sized impl targets.

    Opaque markers are left to the opaque lifecycle generator, and unit
    structs that only exist as impl targets are replaced by a zero-sized type.
    """

    name = "types"

    def supports(self, context: GenerationContext) -> bool:
        return bool(context.declarations.types or context.declarations.impls)

    def generate(self, context: GenerationContext) -> BridgeFragment:
        declarations = context.declarations
        stateless: Dict[str, None] = {}
        for impl in declarations.impls:
            if not impl.is_opaque:
                stateless.setdefault(impl.target, None)

        items: List[TypeItem] = []
        for decl in declarations.types:
            if decl.is_opaque:
                continue
            if decl.is_unit and decl.name in stateless:
                continue
            text = decl.text if decl.has_repr else f"#[repr(C)]\n{decl.text}"
            items.append(TypeItem(decl.name, text))

        for target in stateless:
            declared = context.registry.declared(target)
            if declared is None or declared.is_unit:
                items.append(TypeItem(target, _ZERO_SIZED.format(name=target)))

        return BridgeFragment(type_items=items)


__all__ = ["TypeDeclarationGenerator"]
