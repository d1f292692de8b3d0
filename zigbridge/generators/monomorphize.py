"""Expansion of generic declarations into concrete, mangled bridges."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Tuple

from ..errors import MonomorphizationError
from ..models import BridgeFragment, FunctionDecl, MonomorphizationRequest, Param
from ..types import TypeExpr, TypeSyntaxError, canonical_token, parse_type, render, substitute
from .async_bridge import offload
from .base import GenerationContext, Generator
from .lowering import LoweringEngine


def request_for(decl: FunctionDecl) -> MonomorphizationRequest:
    return MonomorphizationRequest(declaration=decl, type_arguments=decl.monomorphize)


def mangle(base: str, concrete: TypeExpr) -> str:
    return f"{base}_{canonical_token(concrete)}"


def expand(request: MonomorphizationRequest) -> List[Tuple[str, FunctionDecl]]:
    """Return one (type argument, concrete declaration) pair per requested type.

    Raises MonomorphizationError for non-generic declarations, unparsable or
    duplicate type arguments and colliding mangled names.
    """
    decl = request.declaration
    if not decl.generics:
        raise MonomorphizationError(decl.name, "declaration has no generic parameters")
    if len(decl.generics) > 1:
        names = ", ".join(param.name for param in decl.generics)
        raise MonomorphizationError(
            decl.name, f"expected exactly one generic parameter, found {names}"
        )
    if not request.type_arguments:
        raise MonomorphizationError(decl.name, "no concrete types requested")

    generic = decl.generics[0].name
    seen: Dict[str, str] = {}
    mangled_names: Dict[str, str] = {}
    expanded: List[Tuple[str, FunctionDecl]] = []
    for argument in request.type_arguments:
        try:
            concrete = parse_type(argument)
        except TypeSyntaxError as exc:
            raise MonomorphizationError(decl.name, f"unparsable type `{argument}`") from exc

        key = render(concrete)
        if key in seen:
            raise MonomorphizationError(decl.name, f"type `{argument}` requested more than once")
        seen[key] = argument

        name = mangle(decl.name, concrete)
        if name in mangled_names:
            raise MonomorphizationError(
                decl.name,
                f"types `{mangled_names[name]}` and `{argument}` both mangle to `{name}`",
            )
        mangled_names[name] = argument

        params = tuple(
            Param(param.name, substitute(param.type, generic, concrete)) for param in decl.params
        )
        return_type = (
            substitute(decl.return_type, generic, concrete)
            if decl.return_type is not None
            else None
        )
        expanded.append(
            (
                argument,
                replace(
                    decl,
                    name=name,
                    params=params,
                    return_type=return_type,
                    generics=(),
                    monomorphize=(),
                ),
            )
        )
    return expanded


class MonomorphizationGenerator(Generator):
    """Bridges `#[monomorphize(...)]` declarations, one spec set per type."""

    name = "monomorphize"

    def supports(self, context: GenerationContext) -> bool:
        return any(decl.monomorphize for decl in context.declarations.functions)

    def generate(self, context: GenerationContext) -> BridgeFragment:
        engine = LoweringEngine(context)
        fragment = BridgeFragment()
        for decl in context.declarations.functions:
            if not decl.monomorphize:
                continue
            for argument, concrete in expand(request_for(decl)):
                lowered = engine.lower_function(concrete, type_arguments=(argument,))
                if concrete.is_async:
                    lowered = offload(lowered, context)
                fragment.extend(lowered)
        return fragment


__all__ = ["MonomorphizationGenerator", "expand", "mangle", "request_for"]
