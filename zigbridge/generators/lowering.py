"""Type lowering: ABI-safe native signatures and the wrappers around them."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Collection, List, Optional, Sequence, Set, Tuple

from ..config import StructReturnPolicy
from ..models import (
    BridgeFragment,
    BridgeRole,
    BridgeSpec,
    FunctionDecl,
    ImplBlock,
    ImplMethod,
    NativeParam,
    NativeSignature,
    Param,
    Receiver,
    RuleKind,
    TransformRule,
    TypeKind,
    WrapperParam,
    WrapperSignature,
    ZigShim,
    ZigShimParam,
)
from ..types import PathType, PointerType, ReferenceType, TypeExpr, is_unit, render_zig
from ..zigsource import ZigFunction
from .base import GenerationContext, Generator

C_VOID = PathType("std::ffi::c_void")
USIZE = PathType("usize")

INTERNAL_SUFFIX = "__internal"
POINTER_VARIANT_SUFFIX = "__ptr_variant"


@dataclass
class LoweredParams:
    """Native parameters and the rules that feed them, in call order."""

    native: List[NativeParam] = field(default_factory=list)
    rules: List[TransformRule] = field(default_factory=list)
    # Indexes into `native` of by-value aggregates passed as `*const T`.
    aggregates: List[int] = field(default_factory=list)

    def prepend(self, param: NativeParam, rule: TransformRule) -> None:
        self.native.insert(0, param)
        self.rules.insert(0, rule)
        self.aggregates = [index + 1 for index in self.aggregates]


@dataclass
class ExportMatch:
    """How a lowered signature lines up with the Zig `export fn` it calls."""

    function: Optional[ZigFunction]
    # Native parameter indexes the Zig side takes by value.
    deref: Set[int]
    shim_params: Tuple[ZigShimParam, ...]
    zig_return: str


def wrapper_params(params: Sequence[Param]) -> Tuple[WrapperParam, ...]:
    return tuple(WrapperParam(param.name, param.type) for param in params)


def redirect_module(body: str, module: str) -> str:
    """Point `ffi::` paths in a preserved body at the block's extern module."""
    if module == "ffi":
        return body
    return re.sub(r"\bffi::", f"{module}::", body)


class LoweringEngine:
    """Classifies a signature and produces the paired native/wrapper forms."""

    def __init__(self, context: GenerationContext) -> None:
        self.context = context

    def lower_params(
        self, params: Sequence[Param], generics: Collection[str] = ()
    ) -> LoweredParams:
        lowered = LoweredParams()
        registry = self.context.registry
        for param in params:
            name = param.name
            descriptor = registry.classify(param.type, generics)
            kind = descriptor.kind
            if kind in {TypeKind.SLICE_REF, TypeKind.STR_REF}:
                assert descriptor.element is not None
                pointer = PointerType(descriptor.element, descriptor.mutable)
                lowered.native.append(NativeParam(f"{name}_ptr", pointer))
                lowered.native.append(NativeParam(f"{name}_len", USIZE))
                as_ptr = "as_mut_ptr" if descriptor.mutable else "as_ptr"
                lowered.rules.append(
                    TransformRule(
                        RuleKind.PTR_LEN,
                        name,
                        (f"{name}.{as_ptr}()", f"{name}.len()"),
                        mutable=descriptor.mutable,
                    )
                )
            elif kind in {TypeKind.STRUCT, TypeKind.ARRAY}:
                lowered.aggregates.append(len(lowered.native))
                lowered.native.append(NativeParam(name, PointerType(param.type, False)))
                lowered.rules.append(TransformRule(RuleKind.AGGREGATE_POINTER, name, (f"&{name}",)))
            elif kind is TypeKind.OPAQUE:
                lowered.native.append(NativeParam(name, PointerType(C_VOID, descriptor.mutable)))
                lowered.rules.append(
                    TransformRule(
                        RuleKind.HANDLE_INJECTION,
                        name,
                        (f"{name}.inner.as_ptr()",),
                        mutable=descriptor.mutable,
                    )
                )
            elif kind is TypeKind.POINTER:
                native_type: TypeExpr = param.type
                if isinstance(param.type, ReferenceType):
                    native_type = PointerType(param.type.inner, param.type.mutable)
                lowered.native.append(NativeParam(name, native_type))
                lowered.rules.append(
                    TransformRule(RuleKind.POINTER, name, (name,), mutable=descriptor.mutable)
                )
            else:
                lowered.native.append(NativeParam(name, param.type))
                lowered.rules.append(TransformRule(RuleKind.PASS_THROUGH, name, (name,)))
        return lowered

    def lower_function(
        self,
        decl: FunctionDecl,
        *,
        symbol: Optional[str] = None,
        type_arguments: Tuple[str, ...] = (),
    ) -> BridgeFragment:
        """Lower one concrete free function into one or two bridge specs."""
        context = self.context
        symbol = symbol or decl.name
        fragment = BridgeFragment()
        generics = {param.name for param in decl.generics}
        lowered = self.lower_params(decl.params, generics)
        return_type = None if is_unit(decl.return_type) else decl.return_type
        returned = context.registry.classify(return_type, generics)

        exported = self.match_export(
            symbol, lowered, return_type, fragment, report_missing=returned.is_aggregate
        )
        zig_fn = exported.function
        deref = exported.deref
        shim_params = exported.shim_params
        zig_return = exported.zig_return
        # A Zig export that already hands back a pointer needs no static slot.
        pointer_return = returned.is_aggregate and zig_fn is not None and zig_fn.returns_pointer

        policy = context.struct_returns
        redirect = returned.kind is TypeKind.ARRAY or (
            returned.kind is TypeKind.STRUCT and policy is StructReturnPolicy.REDIRECT
        )
        dual = returned.kind is TypeKind.STRUCT and policy is StructReturnPolicy.DUAL

        wrapper = WrapperSignature(
            name=symbol,
            params=wrapper_params(decl.params),
            return_type=return_type,
            is_async=decl.is_async,
        )
        rules = tuple(lowered.rules)
        native_params = tuple(lowered.native)
        impl_symbol = f"{symbol}{INTERNAL_SUFFIX}" if deref else symbol

        if redirect:
            assert return_type is not None
            shim: Optional[ZigShim] = None
            returns_pointer = zig_fn is None or zig_fn.returns_pointer
            if zig_fn is not None and not (returns_pointer and not deref):
                impl_symbol = f"{symbol}{INTERNAL_SUFFIX}"
                shim = ZigShim(
                    symbol=symbol,
                    target=impl_symbol,
                    params=shim_params,
                    return_type=zig_return if returns_pointer else f"*const {zig_return}",
                    static_storage=not returns_pointer,
                )
            fragment.specs.append(
                BridgeSpec(
                    name=decl.name,
                    native=NativeSignature(symbol, native_params, PointerType(return_type)),
                    wrapper=wrapper,
                    rules=rules + (TransformRule(RuleKind.STATIC_STORAGE),),
                    type_arguments=type_arguments,
                    shim=shim,
                    internal_symbol=impl_symbol if shim is not None else None,
                )
            )
        else:
            value_shim = None
            if deref:
                value_shim = ZigShim(symbol, impl_symbol, shim_params, zig_return)
            value_return = return_type
            value_rules = rules
            if pointer_return:
                assert return_type is not None
                value_return = PointerType(return_type)
                value_rules = rules + (TransformRule(RuleKind.STATIC_STORAGE),)
            fragment.specs.append(
                BridgeSpec(
                    name=decl.name,
                    native=NativeSignature(symbol, native_params, value_return),
                    wrapper=wrapper,
                    rules=value_rules,
                    type_arguments=type_arguments,
                    shim=value_shim,
                    internal_symbol=impl_symbol if value_shim is not None else None,
                )
            )
            if dual:
                assert return_type is not None
                variant = f"{symbol}{POINTER_VARIANT_SUFFIX}"
                fragment.specs.append(
                    BridgeSpec(
                        name=decl.name,
                        native=NativeSignature(variant, native_params, PointerType(return_type)),
                        wrapper=WrapperSignature(
                            name=variant,
                            params=wrapper.params,
                            return_type=return_type,
                            is_async=decl.is_async,
                        ),
                        rules=rules + (TransformRule(RuleKind.STATIC_STORAGE),),
                        type_arguments=type_arguments,
                        shim=ZigShim(
                            symbol=variant,
                            target=impl_symbol,
                            params=shim_params,
                            return_type=zig_return if pointer_return else f"*const {zig_return}",
                            static_storage=not pointer_return,
                        ),
                    )
                )

        if impl_symbol != symbol and zig_fn is not None:
            fragment.renames[symbol] = impl_symbol
        return fragment

    def lower_method(
        self, impl: ImplBlock, method: ImplMethod, *, inject_handle: bool
    ) -> BridgeFragment:
        """Lower an impl method that forwards to a foreign function.

        By-value aggregate arguments travel as `*const T`; when the Zig export
        takes the value, it is renamed `__internal` behind a dereferencing shim.
        """
        context = self.context
        signature = method.signature
        symbol = method.forwards_to
        fragment = BridgeFragment()
        lowered = self.lower_params(signature.params)
        if inject_handle and signature.receiver is not Receiver.NONE:
            mutable = signature.receiver is not Receiver.SHARED
            argument = (
                "self.inner.as_ptr()"
                if mutable
                else "self.inner.as_ptr() as *const std::ffi::c_void"
            )
            lowered.prepend(
                NativeParam("self_ptr", PointerType(C_VOID, mutable)),
                TransformRule(RuleKind.HANDLE_INJECTION, "self", (argument,), mutable=mutable),
            )

        declared_return = None if is_unit(signature.return_type) else signature.return_type
        # Falls back to the declared type when the Zig return is unknown.
        resolved = context.zig.resolve_return(symbol)
        native_return: Optional[TypeExpr] = declared_return
        if resolved is not None:
            native_return = None if is_unit(resolved) else resolved

        exported = self.match_export(symbol, lowered, declared_return, fragment)
        shim: Optional[ZigShim] = None
        if exported.deref:
            impl_symbol = f"{symbol}{INTERNAL_SUFFIX}"
            shim = ZigShim(symbol, impl_symbol, exported.shim_params, exported.zig_return)
            fragment.renames[symbol] = impl_symbol

        fragment.specs.append(
            BridgeSpec(
                name=signature.name,
                native=NativeSignature(symbol, tuple(lowered.native), native_return),
                wrapper=WrapperSignature(
                    name=signature.name,
                    params=wrapper_params(signature.params),
                    return_type=declared_return,
                    receiver=signature.receiver,
                    owner=impl.target,
                    trait_name=impl.trait_name,
                ),
                rules=tuple(lowered.rules),
                role=BridgeRole.METHOD,
                shim=shim,
                internal_symbol=shim.target if shim is not None else None,
                body=None
                if method.simple_forward or method.body is None
                else redirect_module(method.body, context.module),
            )
        )
        return fragment

    def match_export(
        self,
        symbol: str,
        lowered: LoweredParams,
        return_type: Optional[TypeExpr],
        fragment: BridgeFragment,
        *,
        report_missing: bool = False,
    ) -> ExportMatch:
        """Find `symbol` in the Zig source and decide which arguments need `p.*`."""
        context = self.context
        zig_fn = context.zig.find_export(symbol)
        aligned = zig_fn is not None and len(zig_fn.params) == len(lowered.native)
        if zig_fn is None and (lowered.aggregates or report_missing):
            fragment.diagnostics.append(
                context.diagnostic(
                    f"`export fn {symbol}` not found in Zig source; "
                    "assuming it already uses the lowered calling convention"
                )
            )
        elif zig_fn is not None and not aligned and lowered.aggregates:
            fragment.diagnostics.append(
                context.diagnostic(
                    f"`export fn {symbol}` takes {len(zig_fn.params)} parameters, "
                    f"expected {len(lowered.native)}; aggregate parameters are passed as pointers"
                )
            )

        deref: Set[int] = set()
        if aligned and zig_fn is not None:
            deref = {index for index in lowered.aggregates if not zig_fn.param_is_pointer(index)}
        return ExportMatch(
            function=zig_fn,
            deref=deref,
            shim_params=self._shim_params(lowered, zig_fn if aligned else None, deref),
            zig_return=self._zig_return(zig_fn, return_type),
        )

    @staticmethod
    def _shim_params(
        lowered: LoweredParams, zig_fn: Optional[ZigFunction], deref: Set[int]
    ) -> Tuple[ZigShimParam, ...]:
        params: List[ZigShimParam] = []
        for index, native in enumerate(lowered.native):
            if zig_fn is None:
                params.append(ZigShimParam(native.name, render_zig(native.type)))
                continue
            zig_param = zig_fn.params[index]
            if index in deref:
                params.append(ZigShimParam(zig_param.name, f"*const {zig_param.type}", deref=True))
            else:
                params.append(ZigShimParam(zig_param.name, zig_param.type))
        return tuple(params)

    @staticmethod
    def _zig_return(zig_fn: Optional[ZigFunction], return_type: Optional[TypeExpr]) -> str:
        if zig_fn is not None and zig_fn.return_type:
            return zig_fn.return_type
        return render_zig(return_type) if return_type is not None else "void"


class LoweringGenerator(Generator):
    """Bridges plain synchronous, non-generic function declarations."""

    name = "lowering"

    def supports(self, context: GenerationContext) -> bool:
        return any(
            not decl.is_async and not decl.monomorphize for decl in context.declarations.functions
        )

    def generate(self, context: GenerationContext) -> BridgeFragment:
        engine = LoweringEngine(context)
        fragment = BridgeFragment()
        for decl in context.declarations.functions:
            if decl.is_async or decl.monomorphize:
                continue
            if decl.is_generic:
                fragment.diagnostics.append(
                    context.diagnostic(
                        f"generic function `{decl.name}` has no #[monomorphize(...)] list; skipped"
                    )
                )
                continue
            fragment.extend(engine.lower_function(decl))
        return fragment


__all__ = [
    "C_VOID",
    "INTERNAL_SUFFIX",
    "LoweredParams",
    "LoweringEngine",
    "LoweringGenerator",
    "POINTER_VARIANT_SUFFIX",
    "redirect_module",
    "wrapper_params",
]
