"""Configuration loading for zigbridge (.zigbridge.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import yaml

CONFIG_FILENAME = ".zigbridge.yml"


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


class CompilationMode(str, Enum):
    """How the consolidated foreign source is laid out for the toolchain."""

    MERGED = "merged"
    MODULAR_IMPORT = "modular_import"


class StructReturnPolicy(str, Enum):
    """ABI policy for declarations returning a struct by value."""

    # Keep the by-value symbol and export a pointer-returning sibling.
    DUAL = "dual"
    # Treat like arrays: the original name becomes the pointer-returning wrapper.
    REDIRECT = "redirect"
    # Export only the by-value symbol.
    VALUE = "value"


@dataclass
class MacroConfig:
    """Names of the host macros the scanner recognises."""

    inline: str = "autozig"
    include: str = "include_zig"


@dataclass
class BridgeConfig:
    """Represents the settings defined in .zigbridge.yml."""

    root: Path
    manifest_dir: Optional[Path] = None
    mode: CompilationMode = CompilationMode.MERGED
    target: str = "native"
    library_name: str = "autozig"
    struct_returns: StructReturnPolicy = StructReturnPolicy.DUAL
    macros: MacroConfig = field(default_factory=MacroConfig)
    exclude_paths: List[str] = field(default_factory=list)


def load_config(config_path: Path) -> BridgeConfig:
    """Load configuration from disk."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return BridgeConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    manifest_str = _as_str(data.get("manifest_dir"))
    manifest_dir = (root / manifest_str).resolve() if manifest_str else None

    macros = MacroConfig()
    macro_data = _as_dict(data.get("macros"))
    if macro_data:
        macros.inline = _as_str(macro_data.get("inline")) or macros.inline
        macros.include = _as_str(macro_data.get("include")) or macros.include

    library_name = _as_str(data.get("library_name")) or "autozig"
    if not library_name.replace("_", "").isalnum():
        raise ConfigError(f"library_name must be an identifier, got {library_name!r}")

    return BridgeConfig(
        root=root,
        manifest_dir=manifest_dir,
        mode=_as_enum(CompilationMode, data.get("mode"), "mode", CompilationMode.MERGED),
        target=_as_str(data.get("target")) or "native",
        library_name=library_name,
        struct_returns=_as_enum(
            StructReturnPolicy,
            data.get("struct_returns"),
            "struct_returns",
            StructReturnPolicy.DUAL,
        ),
        macros=macros,
        exclude_paths=_as_str_list(data.get("exclude_paths")),
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


_E = TypeVar("_E", bound=Enum)


def _as_enum(enum_type: Type[_E], value: Any, key: str, default: _E) -> _E:
    if value is None:
        return default
    text = str(value).strip().lower()
    for member in enum_type:
        if member.value == text:
            return member
    allowed = ", ".join(member.value for member in enum_type)
    raise ConfigError(f"Invalid value {value!r} for {key}; expected one of: {allowed}")


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "BridgeConfig",
    "CONFIG_FILENAME",
    "CompilationMode",
    "ConfigError",
    "MacroConfig",
    "StructReturnPolicy",
    "load_config",
]
