"""Pipeline orchestration: scan, parse, generate, compile, link."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .bindings import BindingManifest, BindingSignature, wrapper_signatures, write_manifest
from .config import BridgeConfig, CompilationMode, load_config
from .errors import ToolchainError
from .generators import GenerationContext, Generator, builtin_generators
from .idl import DeclarationParser
from .logging import get_logger
from .models import (
    BlockBridge,
    BlockKind,
    BridgeDiagnostic,
    BridgeFragment,
    EmbeddedBlock,
    ScanDiagnostic,
)
from .render import BridgeRenderer
from .scanner import SourceScanner
from .stores import CACHE_FILENAME, BuildCache, fingerprint
from .toolchain import (
    CargoLinkRegistrar,
    CompileRequest,
    LinkInstructions,
    LinkRegistrar,
    Toolchain,
    ZigToolchain,
    artifact_name,
)
from .zigsource import ZigSource, convert_to_extern_struct, remove_duplicate_imports, rename_export

MERGED_SOURCE = "generated_autozig.zig"
BRIDGES_DIR = "bridges"
MODULES_DIR = "zig"
SIGNATURES_FILE = "zigbridge-signatures.json"

_NON_IDENT = re.compile(r"[^0-9A-Za-z]+")


@dataclass
class BuildOutcome:
    """Result of one bridge build."""

    artifact: Optional[Path]
    fingerprint: Optional[str]
    skipped: bool
    bridge_files: List[Path] = field(default_factory=list)
    zig_sources: List[Path] = field(default_factory=list)
    link: Optional[LinkInstructions] = None
    bridges: List[BlockBridge] = field(default_factory=list)
    signatures: List[BindingSignature] = field(default_factory=list)
    scan_diagnostics: List[ScanDiagnostic] = field(default_factory=list)
    bridge_diagnostics: List[BridgeDiagnostic] = field(default_factory=list)


def module_names(blocks: Sequence[EmbeddedBlock]) -> List[str]:
    """Name the extern module of each block of one source file.

    Inline blocks use `ffi`, then `ffi_1`, `ffi_2`, ...; external references
    derive their name from the referenced path.
    """
    names: List[str] = []
    used: set[str] = set()
    inline_count = 0
    for block in blocks:
        if block.kind is BlockKind.INLINE:
            name = "ffi" if inline_count == 0 else f"ffi_{inline_count}"
            inline_count += 1
        else:
            reference = block.external_reference or block.external_path.name  # type: ignore[union-attr]
            stem = re.sub(r"\.zig$", "", reference)
            name = f"ffi_{_NON_IDENT.sub('_', stem).strip('_')}"
        candidate = name
        suffix = 1
        while candidate in used:
            candidate = f"{name}_{suffix}"
            suffix += 1
        used.add(candidate)
        names.append(candidate)
    return names


def bridge_filename(source: str) -> str:
    stem = source[:-3] if source.endswith(".rs") else source
    return f"{stem.replace('/', '__')}.rs"


class Orchestrator:
    """Coordinates the bridge pipeline for one crate."""

    def __init__(
        self,
        scanner: SourceScanner | None = None,
        parser: DeclarationParser | None = None,
        generators: Optional[Iterable[Generator]] = None,
        renderer: BridgeRenderer | None = None,
        toolchain: Toolchain | None = None,
        registrar: LinkRegistrar | None = None,
    ) -> None:
        self._scanner = scanner
        self.parser = parser or DeclarationParser()
        self.generators = list(generators) if generators is not None else builtin_generators()
        self.renderer = renderer or BridgeRenderer()
        self.toolchain = toolchain or ZigToolchain()
        self.registrar = registrar or CargoLinkRegistrar()
        self.logger = get_logger("orchestrator")

    def run_build(
        self,
        src_dir: str | Path,
        out_dir: str | Path,
        *,
        config: BridgeConfig | None = None,
    ) -> BuildOutcome:
        """Bridge every embedded block under `src_dir` into `out_dir`."""
        src_path = Path(src_dir).expanduser().resolve()
        out_path = Path(out_dir).expanduser().resolve()
        if config is None:
            config = load_config(src_path.parent)
        self.logger.info("Starting bridge build for %s (mode=%s)", src_path, config.mode.value)

        scanner = self._scanner or SourceScanner(config)
        scan = scanner.scan(src_path)
        if not scan.blocks:
            self.logger.info("No embedded blocks found under %s", src_path)
            return BuildOutcome(
                artifact=None,
                fingerprint=None,
                skipped=False,
                scan_diagnostics=scan.diagnostics,
            )

        bridges = self._bridge_blocks(scan.blocks, config)
        diagnostics = [item for bridge in bridges for item in bridge.fragment.diagnostics]

        zig_files = self._zig_files(bridges, config.mode)
        digest = fingerprint(
            [config.mode.value, config.target]
            + [f"{path}\n{text}" for path, text in zig_files]
        )

        out_path.mkdir(parents=True, exist_ok=True)
        artifact = out_path / artifact_name(config.library_name)
        cache = BuildCache(out_path / CACHE_FILENAME)
        zig_paths = [out_path / relative for relative, _ in zig_files]

        skipped = cache.is_fresh(digest, artifact)
        if skipped:
            self.logger.info("Foreign sources unchanged (%s); skipping compilation", digest[:12])
        else:
            for path, (_, text) in zip(zig_paths, zig_files):
                _write_if_changed(path, text)
            root_source = zig_paths[-1]
            self.logger.info("Compiling %s -> %s", root_source, artifact)
            request = CompileRequest(
                source_text="\n".join(text for _, text in zig_files),
                source_path=root_source,
                output_path=artifact,
                target=config.target,
                module_paths=tuple(zig_paths[:-1]),
            )
            if not self.toolchain.compile(request):
                raise ToolchainError(f"Zig compilation failed for {root_source}")
            cache.store(digest, artifact)
            cache.persist()

        bridge_files = self._write_bridges(out_path, bridges)
        signatures = wrapper_signatures(bridges)
        write_manifest(
            out_path / SIGNATURES_FILE,
            BindingManifest(library=config.library_name, signatures=signatures),
        )

        link = LinkInstructions(search_dir=out_path, library=config.library_name)
        self.registrar.register(link)

        self.logger.info(
            "Bridged %d blocks into %d bridge files (%d diagnostics)",
            len(bridges),
            len(bridge_files),
            len(scan.diagnostics) + len(diagnostics),
        )
        return BuildOutcome(
            artifact=artifact,
            fingerprint=digest,
            skipped=skipped,
            bridge_files=bridge_files,
            zig_sources=zig_paths,
            link=link,
            bridges=bridges,
            signatures=signatures,
            scan_diagnostics=scan.diagnostics,
            bridge_diagnostics=diagnostics,
        )

    # ------------------------------------------------------------------
    # Pipeline steps

    def _bridge_blocks(
        self, blocks: Sequence[EmbeddedBlock], config: BridgeConfig
    ) -> List[BlockBridge]:
        by_source: Dict[str, List[EmbeddedBlock]] = {}
        for block in blocks:
            by_source.setdefault(block.source, []).append(block)

        bridges: List[BlockBridge] = []
        for source_blocks in by_source.values():
            for block, module in zip(source_blocks, module_names(source_blocks)):
                bridges.append(self.bridge_block(block, module, config))
        return bridges

    def bridge_block(self, block: EmbeddedBlock, module: str, config: BridgeConfig) -> BlockBridge:
        """Parse one block's declarations and run every generator over them."""
        if block.kind is BlockKind.INLINE:
            code = convert_to_extern_struct(block.foreign_code or "")
        else:
            assert block.external_path is not None
            code = block.external_path.read_text(encoding="utf-8")

        declarations = self.parser.parse(block.declaration_text, origin=block.origin)
        context = GenerationContext(
            block=block,
            declarations=declarations,
            zig=ZigSource(code),
            module=module,
            struct_returns=config.struct_returns,
        )
        fragment = BridgeFragment()
        for generator in self.generators:
            if generator.supports(context):
                self.logger.debug("%s: running %s generator", block.origin, generator.name)
                fragment.extend(generator.generate(context))
        for note in declarations.diagnostics:
            fragment.diagnostics.append(BridgeDiagnostic(origin=block.origin, message=note))

        for name, new_name in fragment.renames.items():
            code, renamed = rename_export(code, name, new_name)
            if not renamed:
                fragment.diagnostics.append(
                    context.diagnostic(f"could not rename `export fn {name}` to `{new_name}`")
                )

        return BlockBridge(
            block=block,
            module=module,
            declarations=declarations,
            fragment=fragment,
            foreign_code=code,
        )

    def _zig_files(
        self, bridges: Sequence[BlockBridge], mode: CompilationMode
    ) -> List[Tuple[Path, str]]:
        """Return (relative path, text) pairs; the compile root comes last."""
        modules = [self.renderer.render_zig_module(bridge) for bridge in bridges]
        if mode is CompilationMode.MERGED:
            seen_std = False
            merged: List[str] = []
            for text in modules:
                text, seen_std = remove_duplicate_imports(text, seen_std)
                merged.append(text)
            return [(Path(MERGED_SOURCE), self.renderer.render_zig_merged(merged))]

        files: List[Tuple[Path, str]] = []
        for bridge, text in zip(bridges, modules):
            stem = bridge_filename(bridge.block.source)[:-3]
            files.append((Path(MODULES_DIR) / f"{stem}_{bridge.module}.zig", text))
        imports = [path.as_posix() for path, _ in files]
        files.append((Path(MERGED_SOURCE), self.renderer.render_zig_root(imports)))
        return files

    def _write_bridges(self, out_path: Path, bridges: Sequence[BlockBridge]) -> List[Path]:
        by_source: Dict[str, List[BlockBridge]] = {}
        for bridge in bridges:
            by_source.setdefault(bridge.block.source, []).append(bridge)

        bridges_dir = out_path / BRIDGES_DIR
        written: List[Path] = []
        for source, source_bridges in by_source.items():
            path = bridges_dir / bridge_filename(source)
            _write_if_changed(path, self.renderer.render_rust(source, source_bridges))
            written.append(path)

        if bridges_dir.exists():
            for stale in bridges_dir.glob("*.rs"):
                if stale not in written:
                    self.logger.debug("Removing stale bridge %s", stale)
                    stale.unlink()
        return written


def _write_if_changed(path: Path, text: str) -> bool:
    try:
        if path.read_text(encoding="utf-8") == text:
            return False
    except FileNotFoundError:
        pass
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return True


def build(
    src_dir: str | Path,
    out_dir: str | Path,
    *,
    config: BridgeConfig | None = None,
    toolchain: Toolchain | None = None,
    registrar: LinkRegistrar | None = None,
) -> BuildOutcome:
    """Run one build with default collaborators."""
    orchestrator = Orchestrator(toolchain=toolchain, registrar=registrar)
    return orchestrator.run_build(src_dir, out_dir, config=config)


__all__ = [
    "BuildOutcome",
    "Orchestrator",
    "bridge_filename",
    "build",
    "module_names",
]
