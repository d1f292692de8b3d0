"""Generate ABI-correct Rust bridges for Zig code embedded in Rust sources.

A build script calls `configure_logging()` once, then `build(src_dir, out_dir)`.
"""

from .config import BridgeConfig, CompilationMode, StructReturnPolicy, load_config
from .errors import BridgeError, DeclarationError, MonomorphizationError, ToolchainError
from .logging import configure_logging
from .orchestrator import BuildOutcome, Orchestrator, build

__all__ = [
    "BridgeConfig",
    "BridgeError",
    "BuildOutcome",
    "CompilationMode",
    "DeclarationError",
    "MonomorphizationError",
    "Orchestrator",
    "StructReturnPolicy",
    "ToolchainError",
    "build",
    "configure_logging",
    "load_config",
]

__version__ = "0.1.0"
