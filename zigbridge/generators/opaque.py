"""Opaque handle types: constructors, destructors and handle injection."""

from __future__ import annotations

from typing import Optional

from ..models import (
    BridgeFragment,
    BridgeRole,
    BridgeSpec,
    ImplMethod,
    NativeParam,
    NativeSignature,
    OpaqueLifecycle,
    Receiver,
    RuleKind,
    TransformRule,
    WrapperSignature,
)
from ..types import PathType, PointerType
from .base import GenerationContext, Generator
from .lowering import C_VOID, LoweringEngine, wrapper_params

SELF = PathType("Self")


def constructor_spec(handle: str, method: ImplMethod, engine: LoweringEngine) -> BridgeSpec:
    """The allocation call; its wrapper refuses to build a handle from null."""
    signature = method.signature
    lowered = engine.lower_params(signature.params)
    return BridgeSpec(
        name=signature.name,
        native=NativeSignature(
            method.forwards_to, tuple(lowered.native), PointerType(C_VOID, True)
        ),
        wrapper=WrapperSignature(
            name=signature.name,
            params=wrapper_params(signature.params),
            return_type=SELF,
            owner=handle,
        ),
        rules=tuple(lowered.rules),
        role=BridgeRole.CONSTRUCTOR,
    )


def destructor_spec(handle: str, method: ImplMethod) -> BridgeSpec:
    """The release call, run from the handle's `Drop` impl."""
    return BridgeSpec(
        name=method.name,
        native=NativeSignature(
            method.forwards_to, (NativeParam("self_ptr", PointerType(C_VOID, True)),)
        ),
        wrapper=WrapperSignature(
            name="drop",
            params=(),
            receiver=Receiver.MUTABLE,
            owner=handle,
            trait_name="Drop",
        ),
        rules=(
            TransformRule(
                RuleKind.HANDLE_INJECTION, "self", ("self.inner.as_ptr()",), mutable=True
            ),
        ),
        role=BridgeRole.DESTRUCTOR,
    )


class OpaqueLifecycleGenerator(Generator):
    """Bridges `struct Name(opaque);` handles and the impl blocks on them."""

    name = "opaque"

    def supports(self, context: GenerationContext) -> bool:
        return bool(context.declarations.opaque_types)

    def generate(self, context: GenerationContext) -> BridgeFragment:
        engine = LoweringEngine(context)
        fragment = BridgeFragment()
        declarations = context.declarations

        for decl in declarations.types:
            if not decl.is_opaque:
                continue
            constructor: Optional[ImplMethod] = None
            destructor: Optional[ImplMethod] = None
            methods = BridgeFragment()
            for impl in declarations.impls:
                if impl.target != decl.name:
                    continue
                if impl.constructor is not None:
                    if constructor is None:
                        constructor = impl.constructor
                    else:
                        fragment.diagnostics.append(
                            context.diagnostic(
                                f"`{decl.name}` has more than one constructor; "
                                f"`{impl.constructor.name}` ignored"
                            )
                        )
                if impl.destructor is not None:
                    if destructor is None:
                        destructor = impl.destructor
                    else:
                        fragment.diagnostics.append(
                            context.diagnostic(
                                f"`{decl.name}` has more than one destructor; "
                                f"`{impl.destructor.name}` ignored"
                            )
                        )
                for method in impl.methods:
                    if method.signature.is_async:
                        fragment.diagnostics.append(
                            context.diagnostic(
                                f"async method `{decl.name}::{method.name}` on an opaque "
                                "handle is bridged synchronously"
                            )
                        )
                    methods.extend(engine.lower_method(impl, method, inject_handle=True))

            if destructor is None:
                fragment.diagnostics.append(
                    context.diagnostic(
                        f"opaque type `{decl.name}` has no #[destructor]; its handles are never released"
                    )
                )

            fragment.lifecycles.append(
                OpaqueLifecycle(handle=decl.name, constructor=constructor, destructor=destructor)
            )
            if constructor is not None:
                fragment.specs.append(constructor_spec(decl.name, constructor, engine))
            if destructor is not None:
                fragment.specs.append(destructor_spec(decl.name, destructor))
            fragment.extend(methods)
        return fragment


__all__ = [
    "OpaqueLifecycleGenerator",
    "constructor_spec",
    "destructor_spec",
]
