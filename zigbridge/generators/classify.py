"""Structural classification of boundary types."""

from __future__ import annotations

from typing import Collection, Dict, Optional

from ..models import DeclarationSet, TypeDecl, TypeDescriptor, TypeKind
from ..types import (
    ArrayType,
    PathType,
    PointerType,
    ReferenceType,
    SliceType,
    TypeExpr,
    is_unit,
)


class TypeRegistry:
    """Classifies types by shape, using the block's declared types for lookups.

    A path names an aggregate only when the block declares a struct with
    fields under it; opaque markers classify as handles; enums, unit structs
    and unknown paths are passed through as scalars.
    """

    def __init__(self, declarations: DeclarationSet) -> None:
        self._types: Dict[str, TypeDecl] = {decl.name: decl for decl in declarations.types}

    def declared(self, name: str) -> Optional[TypeDecl]:
        return self._types.get(name)

    def is_opaque(self, name: str) -> bool:
        decl = self._types.get(name)
        return decl is not None and decl.is_opaque

    def classify(self, ty: Optional[TypeExpr], generics: Collection[str] = ()) -> TypeDescriptor:
        if ty is None or is_unit(ty):
            return TypeDescriptor(TypeKind.UNIT, None)
        if isinstance(ty, ReferenceType):
            inner = ty.inner
            if isinstance(inner, SliceType):
                return TypeDescriptor(TypeKind.SLICE_REF, ty, ty.mutable, inner.element)
            if isinstance(inner, PathType) and inner.name == "str":
                return TypeDescriptor(TypeKind.STR_REF, ty, ty.mutable, PathType("u8"))
            if isinstance(inner, PathType) and self.is_opaque(inner.tail):
                return TypeDescriptor(TypeKind.OPAQUE, ty, ty.mutable)
            return TypeDescriptor(TypeKind.POINTER, ty, ty.mutable, inner)
        if isinstance(ty, PointerType):
            return TypeDescriptor(TypeKind.POINTER, ty, ty.mutable, ty.inner)
        if isinstance(ty, ArrayType):
            return TypeDescriptor(TypeKind.ARRAY, ty, element=ty.element)
        if isinstance(ty, PathType):
            if ty.name in generics and not ty.args:
                return TypeDescriptor(TypeKind.GENERIC, ty)
            decl = self._types.get(ty.tail)
            if decl is not None and decl.is_opaque:
                return TypeDescriptor(TypeKind.OPAQUE, ty)
            if decl is not None and decl.is_aggregate:
                return TypeDescriptor(TypeKind.STRUCT, ty)
        return TypeDescriptor(TypeKind.SCALAR, ty)


__all__ = ["TypeRegistry"]
