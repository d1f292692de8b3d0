"""Base classes for bridge generator plugins."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..config import StructReturnPolicy
from ..models import BridgeDiagnostic, BridgeFragment, DeclarationSet, EmbeddedBlock
from ..logging import get_logger
from ..zigsource import ZigSource
from .classify import TypeRegistry

logger = get_logger("generators")


@dataclass
class GenerationContext:
    """Everything a generator may read while bridging one block."""

    block: EmbeddedBlock
    declarations: DeclarationSet
    zig: ZigSource
    module: str = "ffi"
    struct_returns: StructReturnPolicy = StructReturnPolicy.DUAL
    registry: TypeRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.registry = TypeRegistry(self.declarations)

    def diagnostic(self, message: str) -> BridgeDiagnostic:
        logger.warning("%s: %s", self.block.origin, message)
        return BridgeDiagnostic(origin=self.block.origin, message=message)


class Generator(ABC):
    """Contract for generators that turn declarations into bridge fragments."""

    name: str = "generator"

    @abstractmethod
    def supports(self, context: GenerationContext) -> bool:
        """Return True when this generator has work to do for the block."""

    @abstractmethod
    def generate(self, context: GenerationContext) -> BridgeFragment:
        """Produce the bridge specs and type items this generator owns."""


__all__ = ["GenerationContext", "Generator"]
