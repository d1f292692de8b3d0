"""Bridge generators, in the order the orchestrator runs them."""

from __future__ import annotations

from typing import List

from .async_bridge import AsyncBridgeGenerator
from .base import GenerationContext, Generator
from .impls import StatelessImplGenerator
from .lowering import LoweringGenerator
from .monomorphize import MonomorphizationGenerator
from .opaque import OpaqueLifecycleGenerator
from .types import TypeDeclarationGenerator


def builtin_generators() -> List[Generator]:
    """Type items first, then free functions, then impl blocks."""
    return [
        TypeDeclarationGenerator(),
        LoweringGenerator(),
        MonomorphizationGenerator(),
        AsyncBridgeGenerator(),
        OpaqueLifecycleGenerator(),
        StatelessImplGenerator(),
    ]


__all__ = [
    "GenerationContext",
    "Generator",
    "builtin_generators",
]
