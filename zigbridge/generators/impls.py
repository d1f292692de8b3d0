"""Trait and inherent impls on stateless (zero-sized) types."""

from __future__ import annotations

from ..models import BridgeFragment
from .base import GenerationContext, Generator
from .lowering import LoweringEngine


class StatelessImplGenerator(Generator):
    """Bridges impl blocks whose target carries no foreign state."""

    name = "impls"

    def supports(self, context: GenerationContext) -> bool:
        return any(not impl.is_opaque for impl in context.declarations.impls)

    def generate(self, context: GenerationContext) -> BridgeFragment:
        engine = LoweringEngine(context)
        fragment = BridgeFragment()
        for impl in context.declarations.impls:
            if impl.is_opaque:
                continue
            for method in impl.methods:
                fragment.extend(engine.lower_method(impl, method, inject_handle=False))
        return fragment


__all__ = ["StatelessImplGenerator"]
