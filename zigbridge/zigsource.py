"""Lightweight analysis and rewriting of Zig source text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .types import UNIT, PathType, TypeExpr

_RUST_SCALARS_BY_ZIG: Dict[str, str] = {
    name: name
    for name in (
        "i8",
        "i16",
        "i32",
        "i64",
        "i128",
        "isize",
        "u8",
        "u16",
        "u32",
        "u64",
        "u128",
        "usize",
        "f32",
        "f64",
        "bool",
    )
}
_RUST_SCALARS_BY_ZIG.update(
    {
        "c_int": "std::os::raw::c_int",
        "c_uint": "std::os::raw::c_uint",
        "c_long": "std::os::raw::c_long",
        "c_ulong": "std::os::raw::c_ulong",
        "c_char": "std::os::raw::c_char",
    }
)

_STRUCT_DECL = re.compile(r"=(\s*)(?:(extern|packed)\s+)?struct\b")
_STD_IMPORT = re.compile(r'^\s*const\s+std\s*=\s*@import\(\s*"std"\s*\)\s*;\s*$')
_CALLCONV = re.compile(r"^callconv\([^)]*\)\s*")


def _export_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"(?:\bpub\s+)?\bexport\s+fn\s+{re.escape(name)}\s*\(")


@dataclass(frozen=True)
class ZigParam:
    name: str
    type: str


@dataclass(frozen=True)
class ZigFunction:
    """Header of an `export fn` found in Zig source."""

    name: str
    params: Tuple[ZigParam, ...]
    return_type: str

    @property
    def returns_pointer(self) -> bool:
        return self.return_type.lstrip().startswith(("*", "?*", "[*]"))

    def param_is_pointer(self, index: int) -> bool:
        if index >= len(self.params):
            return False
        return self.params[index].type.lstrip().startswith(("*", "?*", "[*]"))


class ZigSource:
    """Read-only view over one block's Zig code."""

    def __init__(self, text: str) -> None:
        self.text = text

    def find_export(self, name: str) -> Optional[ZigFunction]:
        match = _export_pattern(name).search(self.text)
        if match is None:
            return None
        open_paren = match.end() - 1
        close_paren = _matching_paren(self.text, open_paren)
        if close_paren is None:
            return None
        body_start = self.text.find("{", close_paren)
        if body_start == -1:
            return None
        return_text = _CALLCONV.sub("", self.text[close_paren + 1 : body_start].strip())
        params = tuple(_parse_params(self.text[open_paren + 1 : close_paren]))
        return ZigFunction(name=name, params=params, return_type=return_text.strip())

    def resolve_return(self, name: str) -> Optional[TypeExpr]:
        """Map the Zig return type of `name` to a host type, if recognised."""
        function = self.find_export(name)
        if function is None:
            return None
        if function.return_type == "void":
            return UNIT
        mapped = _RUST_SCALARS_BY_ZIG.get(function.return_type)
        return PathType(mapped) if mapped is not None else None


def _matching_paren(text: str, open_index: int) -> Optional[int]:
    depth = 0
    for index in range(open_index, len(text)):
        char = text[index]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return index
    return None


def _parse_params(text: str) -> List[ZigParam]:
    params: List[ZigParam] = []
    depth = 0
    start = 0
    pieces: List[str] = []
    for index, char in enumerate(text):
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == "," and depth == 0:
            pieces.append(text[start:index])
            start = index + 1
    pieces.append(text[start:])

    for piece in pieces:
        name, sep, type_text = piece.partition(":")
        if not sep:
            continue
        name = name.split()[-1] if name.split() else ""
        if name:
            params.append(ZigParam(name=name, type=type_text.strip()))
    return params


def convert_to_extern_struct(code: str) -> str:
    """Give plain `struct` declarations the C layout (`extern struct`)."""

    def replace(match: re.Match[str]) -> str:
        if match.group(2):
            return match.group(0)
        return f"={match.group(1)}extern struct"

    return _STRUCT_DECL.sub(replace, code)


def remove_duplicate_imports(code: str, seen_std: bool) -> Tuple[str, bool]:
    """Drop `const std = @import("std");` lines once one has been emitted."""
    lines: List[str] = []
    for line in code.splitlines():
        if _STD_IMPORT.match(line):
            if seen_std:
                continue
            seen_std = True
        lines.append(line)
    text = "\n".join(lines)
    if code.endswith("\n"):
        text += "\n"
    return text, seen_std


def rename_export(code: str, name: str, new_name: str) -> Tuple[str, bool]:
    """Turn `export fn name(` into a private `fn new_name(`."""
    new_code, count = _export_pattern(name).subn(f"fn {new_name}(", code, count=1)
    return new_code, bool(count)


__all__ = [
    "ZigFunction",
    "ZigParam",
    "ZigSource",
    "convert_to_extern_struct",
    "remove_duplicate_imports",
    "rename_export",
]
