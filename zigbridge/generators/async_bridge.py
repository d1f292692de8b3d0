"""Async wrappers that offload synchronous foreign calls to a blocking pool."""

from __future__ import annotations

from dataclasses import replace
from typing import List

from ..models import (
    BridgeDiagnostic,
    BridgeFragment,
    BridgeSpec,
    RuleKind,
    TransformRule,
    TypeKind,
)
from ..types import ReferenceType
from .base import GenerationContext, Generator
from .lowering import LoweringEngine


def _owned_name(param: str) -> str:
    return f"{param}_owned"


def offload_rule(
    rule: TransformRule,
    context: GenerationContext,
    spec: BridgeSpec,
    diagnostics: List[BridgeDiagnostic],
) -> TransformRule:
    """Rewrite a rule so the offloaded closure only touches owned values."""
    if rule.param is None:
        return rule
    owned = _owned_name(rule.param)
    binding = "let mut" if rule.mutable else "let"

    if rule.kind is RuleKind.PTR_LEN:
        param_type = next(
            (param.type for param in spec.wrapper.params if param.name == rule.param), None
        )
        is_str = context.registry.classify(param_type).kind is TypeKind.STR_REF
        copy = "to_owned" if is_str else "to_vec"
        write_back = None
        if rule.mutable:
            write_back = (
                f"unsafe {{ {rule.param}.as_bytes_mut() }}.copy_from_slice({owned}.as_bytes());"
                if is_str
                else f"{rule.param}.copy_from_slice(&{owned});"
            )
        as_ptr = "as_mut_ptr" if rule.mutable else "as_ptr"
        return TransformRule(
            RuleKind.OWNED_COPY,
            rule.param,
            (f"{owned}.{as_ptr}()", f"{owned}.len()"),
            mutable=rule.mutable,
            capture=f"{binding} {owned} = {rule.param}.{copy}();",
            write_back=write_back,
            owned=owned,
        )

    if rule.kind is RuleKind.POINTER:
        param_type = next(
            (param.type for param in spec.wrapper.params if param.name == rule.param), None
        )
        if not isinstance(param_type, ReferenceType):
            diagnostics.append(
                context.diagnostic(
                    f"raw pointer parameter `{rule.param}` of async `{spec.wrapper.name}` "
                    "cannot be moved to a worker thread safely"
                )
            )
            return rule
        reference = "&mut " if rule.mutable else "&"
        return TransformRule(
            RuleKind.OWNED_COPY,
            rule.param,
            (f"{reference}{owned}",),
            mutable=rule.mutable,
            capture=f"{binding} {owned} = {rule.param}.clone();",
            write_back=f"*{rule.param} = {owned};" if rule.mutable else None,
            owned=owned,
        )

    if rule.kind is RuleKind.HANDLE_INJECTION:
        diagnostics.append(
            context.diagnostic(
                f"handle parameter `{rule.param}` of async `{spec.wrapper.name}` "
                "is borrowed across the offload boundary"
            )
        )
    return rule


def offload(fragment: BridgeFragment, context: GenerationContext) -> BridgeFragment:
    """Turn every wrapper of a lowered fragment into an offloaded async wrapper."""
    specs: List[BridgeSpec] = []
    diagnostics = list(fragment.diagnostics)
    for spec in fragment.specs:
        rules = tuple(offload_rule(rule, context, spec, diagnostics) for rule in spec.rules)
        specs.append(
            replace(spec, rules=rules, wrapper=replace(spec.wrapper, is_async=True))
        )
    return BridgeFragment(
        specs=specs,
        type_items=list(fragment.type_items),
        lifecycles=list(fragment.lifecycles),
        renames=dict(fragment.renames),
        diagnostics=diagnostics,
    )


class AsyncBridgeGenerator(Generator):
    """Bridges `async fn` declarations through `tokio::task::spawn_blocking`."""

    name = "async"

    def supports(self, context: GenerationContext) -> bool:
        return any(
            decl.is_async and not decl.monomorphize for decl in context.declarations.functions
        )

    def generate(self, context: GenerationContext) -> BridgeFragment:
        engine = LoweringEngine(context)
        fragment = BridgeFragment()
        for decl in context.declarations.functions:
            if not decl.is_async or decl.monomorphize:
                continue
            if decl.is_generic:
                fragment.diagnostics.append(
                    context.diagnostic(
                        f"generic async function `{decl.name}` has no #[monomorphize(...)] list; skipped"
                    )
                )
                continue
            fragment.extend(offload(engine.lower_function(decl), context))
        return fragment


__all__ = ["AsyncBridgeGenerator", "offload", "offload_rule"]
