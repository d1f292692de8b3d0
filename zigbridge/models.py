"""Core data models shared across zigbridge components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .types import TypeExpr


@dataclass
class SourceUnit:
    """One host source file, read once per build."""

    path: Path
    relative_path: str
    text: str


class BlockKind(str, Enum):
    INLINE = "inline"
    EXTERNAL = "external"


@dataclass
class EmbeddedBlock:
    """A foreign-code block found in a host source file.

    Inline blocks carry the foreign code directly; external blocks carry the
    resolved path of a referenced foreign file. Exactly one of the two is set.
    """

    source: str
    line: int
    index: int
    declaration_text: str
    foreign_code: Optional[str] = None
    external_path: Optional[Path] = None
    external_reference: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.foreign_code is None) == (self.external_path is None):
            raise ValueError("EmbeddedBlock needs exactly one of foreign_code or external_path")

    @property
    def kind(self) -> BlockKind:
        return BlockKind.INLINE if self.foreign_code is not None else BlockKind.EXTERNAL

    @property
    def origin(self) -> str:
        return f"{self.source}:{self.line}"


@dataclass
class ScanDiagnostic:
    """A recoverable problem found while scanning the source tree."""

    path: str
    message: str
    line: Optional[int] = None


@dataclass
class ScanResult:
    """Everything the scanner extracted from one source tree."""

    root: str
    blocks: List[EmbeddedBlock]
    diagnostics: List[ScanDiagnostic] = field(default_factory=list)
    files_scanned: int = 0


# ---------------------------------------------------------------------------
# Interface declarations


class Receiver(str, Enum):
    NONE = "none"
    SHARED = "&self"
    MUTABLE = "&mut self"
    VALUE = "self"


class MethodRole(str, Enum):
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    DESTRUCTOR = "destructor"


@dataclass(frozen=True)
class GenericParam:
    name: str
    bounds: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Param:
    name: str
    type: TypeExpr


@dataclass(frozen=True)
class FunctionDecl:
    """One exported function signature."""

    name: str
    params: Tuple[Param, ...]
    return_type: Optional[TypeExpr] = None
    generics: Tuple[GenericParam, ...] = ()
    is_async: bool = False
    monomorphize: Tuple[str, ...] = ()
    attributes: Tuple[str, ...] = ()
    receiver: Receiver = Receiver.NONE

    @property
    def is_generic(self) -> bool:
        return bool(self.generics)


@dataclass(frozen=True)
class TypeDecl:
    """A struct or enum definition captured verbatim."""

    name: str
    kind: str
    text: str
    fields: Tuple[Param, ...] = ()
    tuple_fields: Tuple[TypeExpr, ...] = ()
    is_unit: bool = False
    is_opaque: bool = False
    has_repr: bool = False

    @property
    def is_aggregate(self) -> bool:
        return self.kind == "struct" and not self.is_opaque and not self.is_unit


@dataclass(frozen=True)
class ImplMethod:
    """A method inside an impl block and the foreign function it forwards to."""

    signature: FunctionDecl
    forwards_to: str
    body: Optional[str] = None
    simple_forward: bool = False
    role: MethodRole = MethodRole.METHOD

    @property
    def name(self) -> str:
        return self.signature.name


@dataclass(frozen=True)
class ImplBlock:
    """A trait or inherent impl block."""

    target: str
    trait_name: Optional[str]
    methods: Tuple[ImplMethod, ...] = ()
    constructor: Optional[ImplMethod] = None
    destructor: Optional[ImplMethod] = None
    is_opaque: bool = False


@dataclass
class DeclarationSet:
    """Typed model of one declaration block."""

    functions: List[FunctionDecl] = field(default_factory=list)
    types: List[TypeDecl] = field(default_factory=list)
    impls: List[ImplBlock] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def opaque_types(self) -> Set[str]:
        return {decl.name for decl in self.types if decl.is_opaque}

    def is_empty(self) -> bool:
        return not (self.functions or self.types or self.impls)


# ---------------------------------------------------------------------------
# Type classification


class TypeKind(str, Enum):
    UNIT = "unit"
    SCALAR = "scalar"
    STRUCT = "struct"
    ARRAY = "array"
    SLICE_REF = "slice_ref"
    STR_REF = "str_ref"
    POINTER = "pointer"
    GENERIC = "generic"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class TypeDescriptor:
    """Structural classification of a type at the bridge boundary."""

    kind: TypeKind
    type: Optional[TypeExpr]
    mutable: bool = False
    element: Optional[TypeExpr] = None

    @property
    def is_aggregate(self) -> bool:
        return self.kind in {TypeKind.STRUCT, TypeKind.ARRAY}

    @property
    def is_reference(self) -> bool:
        return self.kind in {TypeKind.SLICE_REF, TypeKind.STR_REF}


# ---------------------------------------------------------------------------
# Bridge specifications


class RuleKind(str, Enum):
    PASS_THROUGH = "pass_through"
    PTR_LEN = "ptr_len"
    AGGREGATE_POINTER = "aggregate_pointer"
    POINTER = "pointer"
    HANDLE_INJECTION = "handle_injection"
    STATIC_STORAGE = "static_storage"
    OWNED_COPY = "owned_copy"


class BridgeRole(str, Enum):
    FUNCTION = "function"
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    DESTRUCTOR = "destructor"


@dataclass(frozen=True)
class NativeParam:
    name: str
    type: TypeExpr


@dataclass(frozen=True)
class NativeSignature:
    """The ABI-lowered `extern "C"` signature of one foreign symbol."""

    symbol: str
    params: Tuple[NativeParam, ...]
    return_type: Optional[TypeExpr] = None


@dataclass(frozen=True)
class WrapperParam:
    name: str
    type: TypeExpr


@dataclass(frozen=True)
class WrapperSignature:
    """The high-level signature exposed to host code."""

    name: str
    params: Tuple[WrapperParam, ...]
    return_type: Optional[TypeExpr] = None
    is_async: bool = False
    receiver: Receiver = Receiver.NONE
    owner: Optional[str] = None
    trait_name: Optional[str] = None


@dataclass(frozen=True)
class TransformRule:
    """One step connecting wrapper values to native arguments or results.

    `arguments` are the host expressions passed to the native call, in order;
    `capture` is the statement that copies a borrowed value into an owned
    buffer before an offloaded call, and `write_back` the statement that
    copies a mutable buffer back afterwards.
    """

    kind: RuleKind
    param: Optional[str] = None
    arguments: Tuple[str, ...] = ()
    mutable: bool = False
    capture: Optional[str] = None
    write_back: Optional[str] = None
    owned: Optional[str] = None


@dataclass(frozen=True)
class ZigShimParam:
    name: str
    type: str
    deref: bool = False


@dataclass(frozen=True)
class ZigShim:
    """A generated foreign-side export that adapts the calling convention."""

    symbol: str
    target: str
    params: Tuple[ZigShimParam, ...]
    return_type: str
    static_storage: bool = False

    @property
    def call_arguments(self) -> Tuple[str, ...]:
        return tuple(f"{param.name}.*" if param.deref else param.name for param in self.params)


@dataclass(frozen=True)
class BridgeSpec:
    """Fully resolved bridge for exactly one generated native symbol."""

    name: str
    native: NativeSignature
    wrapper: WrapperSignature
    rules: Tuple[TransformRule, ...]
    role: BridgeRole = BridgeRole.FUNCTION
    type_arguments: Tuple[str, ...] = ()
    shim: Optional[ZigShim] = None
    internal_symbol: Optional[str] = None
    body: Optional[str] = None

    @property
    def symbol(self) -> str:
        return self.native.symbol

    @property
    def call_arguments(self) -> Tuple[str, ...]:
        arguments: List[str] = []
        for rule in self.rules:
            arguments.extend(rule.arguments)
        return tuple(arguments)

    @property
    def returns_static_pointer(self) -> bool:
        return any(rule.kind is RuleKind.STATIC_STORAGE for rule in self.rules)


@dataclass(frozen=True)
class ExportedSymbol:
    """An entry of the foreign library's export table."""

    name: str
    returns_pointer: bool
    generated: bool


@dataclass(frozen=True)
class OpaqueLifecycle:
    """A handle type with its optional constructor and destructor."""

    handle: str
    constructor: Optional[ImplMethod] = None
    destructor: Optional[ImplMethod] = None


@dataclass(frozen=True)
class MonomorphizationRequest:
    """A generic declaration plus the concrete types it must be expanded for."""

    declaration: FunctionDecl
    type_arguments: Tuple[str, ...]


@dataclass(frozen=True)
class TypeItem:
    """A host-side type definition emitted into the bridge."""

    name: str
    text: str


@dataclass
class BridgeDiagnostic:
    """A soft problem found while generating bridge code."""

    origin: str
    message: str


@dataclass
class BridgeFragment:
    """What one generator contributes for one block."""

    specs: List[BridgeSpec] = field(default_factory=list)
    type_items: List[TypeItem] = field(default_factory=list)
    lifecycles: List[OpaqueLifecycle] = field(default_factory=list)
    renames: Dict[str, str] = field(default_factory=dict)
    diagnostics: List[BridgeDiagnostic] = field(default_factory=list)

    def extend(self, other: "BridgeFragment") -> None:
        self.specs.extend(other.specs)
        self.type_items.extend(other.type_items)
        self.lifecycles.extend(other.lifecycles)
        self.renames.update(other.renames)
        self.diagnostics.extend(other.diagnostics)


@dataclass
class BlockBridge:
    """All generated output for one embedded block."""

    block: EmbeddedBlock
    module: str
    declarations: DeclarationSet
    fragment: BridgeFragment
    foreign_code: str

    @property
    def specs(self) -> List[BridgeSpec]:
        return self.fragment.specs

    def symbol_table(self) -> List[ExportedSymbol]:
        """Return the symbols the foreign library exports for this block."""
        table: Dict[str, ExportedSymbol] = {}
        for spec in self.fragment.specs:
            returns_pointer = spec.returns_static_pointer
            table.setdefault(
                spec.symbol,
                ExportedSymbol(
                    name=spec.symbol,
                    returns_pointer=returns_pointer,
                    generated=spec.shim is not None,
                ),
            )
        return list(table.values())
