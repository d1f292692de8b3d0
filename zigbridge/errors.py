"""Hard build failures raised by the bridge pipeline."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for failures that abort a bridge build."""


class DeclarationError(BridgeError):
    """Raised when a declaration block yields nothing that can be bridged."""

    def __init__(self, origin: str, message: str) -> None:
        super().__init__(f"{origin}: {message}")
        self.origin = origin


class MonomorphizationError(BridgeError):
    """Raised for invalid `#[monomorphize(...)]` requests."""

    def __init__(self, declaration: str, message: str) -> None:
        super().__init__(f"cannot monomorphize `{declaration}`: {message}")
        self.declaration = declaration


class ToolchainError(BridgeError):
    """Raised when the external compiler reports a failed build."""


__all__ = [
    "BridgeError",
    "DeclarationError",
    "MonomorphizationError",
    "ToolchainError",
]
