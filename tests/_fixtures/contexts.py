"""Builds generation contexts straight from declaration and Zig text."""

from __future__ import annotations

import textwrap

from zigbridge.config import StructReturnPolicy
from zigbridge.generators import GenerationContext
from zigbridge.idl import DeclarationParser
from zigbridge.models import EmbeddedBlock
from zigbridge.zigsource import ZigSource


def make_context(
    declarations: str,
    zig: str = "",
    *,
    struct_returns: StructReturnPolicy = StructReturnPolicy.DUAL,
    module: str = "ffi",
) -> GenerationContext:
    declaration_text = textwrap.dedent(declarations).strip()
    zig_text = textwrap.dedent(zig).strip() + "\n"
    block = EmbeddedBlock(
        source="lib.rs",
        line=1,
        index=0,
        declaration_text=declaration_text,
        foreign_code=zig_text,
    )
    parsed = DeclarationParser().parse(declaration_text, origin=block.origin)
    return GenerationContext(
        block=block,
        declarations=parsed,
        zig=ZigSource(zig_text),
        module=module,
        struct_returns=struct_returns,
    )


__all__ = ["make_context"]
