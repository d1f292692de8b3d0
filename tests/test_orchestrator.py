"""Tests for zigbridge.orchestrator."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tests._fixtures.crate_builder import CrateBuilder
from tests._fixtures.doubles import RecordingRegistrar, RecordingToolchain
from zigbridge.config import CompilationMode
from zigbridge.errors import DeclarationError, ToolchainError
from zigbridge.models import EmbeddedBlock
from zigbridge.orchestrator import (
    MERGED_SOURCE,
    SIGNATURES_FILE,
    Orchestrator,
    bridge_filename,
    build,
    module_names,
)
from zigbridge.toolchain import LinkInstructions, artifact_name

MAIN_RS = """
use autozig::autozig;

autozig! {
    const std = @import("std");

    const Vec3 = struct { x: f32, y: f32, z: f32 };

    export fn add(a: i32, b: i32) i32 {
        return a + b;
    }

    export fn create_range() [5]i32 {
        return .{ 1, 2, 3, 4, 5 };
    }

    export fn create_vec3(x: f32, y: f32, z: f32) Vec3 {
        return .{ .x = x, .y = y, .z = z };
    }
    ---
    #[derive(Clone, Copy)]
    struct Vec3 { x: f32, y: f32, z: f32 }

    fn add(a: i32, b: i32) -> i32;
    fn create_range() -> [i32; 5];
    fn create_vec3(x: f32, y: f32, z: f32) -> Vec3;
}

fn main() {}
"""


def _orchestrator(toolchain: RecordingToolchain, registrar: RecordingRegistrar) -> Orchestrator:
    return Orchestrator(toolchain=toolchain, registrar=registrar)


def test_run_build_compiles_writes_bridges_and_registers_link(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})
    out_dir = crate_builder.out_dir

    outcome = _orchestrator(toolchain, registrar).run_build(
        crate_builder.src_dir, out_dir, config=crate_builder.config()
    )

    artifact = out_dir.resolve() / artifact_name("autozig")
    assert outcome.artifact == artifact
    assert artifact.exists()
    assert not outcome.skipped
    assert len(toolchain.requests) == 1
    request = toolchain.requests[0]
    assert request.source_path == out_dir.resolve() / MERGED_SOURCE
    assert request.output_path == artifact

    merged = (out_dir / MERGED_SOURCE).read_text(encoding="utf-8")
    assert merged.startswith("// Generated by zigbridge. Do not edit.\n")
    assert "const Vec3 = extern struct { x: f32, y: f32, z: f32 };" in merged
    assert "fn create_range__internal() [5]i32 {" in merged
    assert "export fn create_range__internal" not in merged
    assert merged.count("export fn create_range(") == 1
    assert "export fn create_vec3__ptr_variant(x: f32, y: f32, z: f32) *const Vec3 {" in merged

    bridge = (out_dir / "bridges" / "main.rs").read_text(encoding="utf-8")
    assert outcome.bridge_files == [out_dir.resolve() / "bridges" / "main.rs"]
    assert "pub fn add(a: i32, b: i32) -> i32 {" in bridge
    assert "pub fn create_range() -> [i32; 5] {" in bridge

    assert registrar.instructions == [LinkInstructions(search_dir=out_dir.resolve(), library="autozig")]
    assert outcome.link == registrar.instructions[0]


def test_symbol_table_exports_each_symbol_once(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})

    outcome = _orchestrator(toolchain, registrar).run_build(
        crate_builder.src_dir, crate_builder.out_dir, config=crate_builder.config()
    )

    [bridge] = outcome.bridges
    table = {symbol.name: symbol for symbol in bridge.symbol_table()}
    assert list(table) == ["add", "create_range", "create_vec3", "create_vec3__ptr_variant"]
    assert table["create_range"].returns_pointer
    assert table["create_range"].generated
    assert not table["create_vec3"].returns_pointer
    assert table["create_vec3__ptr_variant"].returns_pointer


def test_second_build_with_unchanged_sources_is_skipped(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})
    orchestrator = _orchestrator(toolchain, registrar)
    config = crate_builder.config()

    first = orchestrator.run_build(crate_builder.src_dir, crate_builder.out_dir, config=config)
    second = orchestrator.run_build(crate_builder.src_dir, crate_builder.out_dir, config=config)

    assert not first.skipped
    assert second.skipped
    assert second.fingerprint == first.fingerprint
    assert len(toolchain.requests) == 1
    assert registrar.instructions[0] == registrar.instructions[1]


def test_changed_foreign_code_triggers_recompilation(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})
    orchestrator = _orchestrator(toolchain, registrar)
    config = crate_builder.config()

    first = orchestrator.run_build(crate_builder.src_dir, crate_builder.out_dir, config=config)
    crate_builder.write({"src/main.rs": MAIN_RS.replace("return a + b;", "return a +% b;")})
    second = orchestrator.run_build(crate_builder.src_dir, crate_builder.out_dir, config=config)

    assert not second.skipped
    assert second.fingerprint != first.fingerprint
    assert len(toolchain.requests) == 2


def test_failed_compilation_raises(
    crate_builder: CrateBuilder, registrar: RecordingRegistrar
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})
    orchestrator = _orchestrator(RecordingToolchain(succeed=False), registrar)

    with pytest.raises(ToolchainError):
        orchestrator.run_build(
            crate_builder.src_dir, crate_builder.out_dir, config=crate_builder.config()
        )

    assert registrar.instructions == []


def test_crate_without_blocks_builds_nothing(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": "fn main() {}\n"})

    outcome = _orchestrator(toolchain, registrar).run_build(
        crate_builder.src_dir, crate_builder.out_dir, config=crate_builder.config()
    )

    assert outcome.artifact is None
    assert toolchain.requests == []
    assert registrar.instructions == []


def test_merged_mode_keeps_one_std_import(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write(
        {
            "zig/a.zig": 'const std = @import("std");\nexport fn one() i32 { return 1; }\n',
            "zig/b.zig": 'const std = @import("std");\nexport fn two() i32 { return 2; }\n',
            "src/lib.rs": """
            include_zig!("zig/a.zig", { fn one() -> i32; });
            include_zig!("zig/b.zig", { fn two() -> i32; });
            """,
        }
    )

    outcome = _orchestrator(toolchain, registrar).run_build(
        crate_builder.src_dir, crate_builder.out_dir, config=crate_builder.config()
    )

    merged = (crate_builder.out_dir / MERGED_SOURCE).read_text(encoding="utf-8")
    assert merged.count('const std = @import("std");') == 1
    assert "// lib.rs:1 (zig/a.zig)" in merged
    assert "// lib.rs:2 (zig/b.zig)" in merged
    assert [bridge.module for bridge in outcome.bridges] == ["ffi_zig_a", "ffi_zig_b"]


def test_modular_mode_writes_one_file_per_block_and_a_root(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})
    config = crate_builder.config(mode=CompilationMode.MODULAR_IMPORT)

    outcome = _orchestrator(toolchain, registrar).run_build(
        crate_builder.src_dir, crate_builder.out_dir, config=config
    )

    out_dir = crate_builder.out_dir.resolve()
    module_file = out_dir / "zig" / "main_ffi.zig"
    assert outcome.zig_sources == [module_file, out_dir / MERGED_SOURCE]
    assert module_file.exists()
    root = (out_dir / MERGED_SOURCE).read_text(encoding="utf-8")
    assert '_ = @import("zig/main_ffi.zig");' in root
    assert toolchain.requests[0].module_paths == (module_file,)


def test_signatures_manifest_is_written(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})

    _orchestrator(toolchain, registrar).run_build(
        crate_builder.src_dir, crate_builder.out_dir, config=crate_builder.config()
    )

    data = json.loads((crate_builder.out_dir / SIGNATURES_FILE).read_text(encoding="utf-8"))
    names = [entry["name"] for entry in data["signatures"]]
    assert names == ["add", "create_range", "create_vec3", "create_vec3__ptr_variant"]


def test_unusable_declarations_abort_the_build(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write(
        {
            "src/main.rs": """
            autozig! {
                export fn f() void {}
                ---
                let x = 5;
            }
            """,
        }
    )

    with pytest.raises(DeclarationError) as excinfo:
        _orchestrator(toolchain, registrar).run_build(
            crate_builder.src_dir, crate_builder.out_dir, config=crate_builder.config()
        )

    assert excinfo.value.origin == "main.rs:1"
    assert toolchain.requests == []


def test_stale_bridge_files_are_removed(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS})
    stale = crate_builder.out_dir / "bridges" / "removed.rs"
    stale.parent.mkdir(parents=True)
    stale.write_text("// old\n", encoding="utf-8")

    _orchestrator(toolchain, registrar).run_build(
        crate_builder.src_dir, crate_builder.out_dir, config=crate_builder.config()
    )

    assert not stale.exists()
    assert (crate_builder.out_dir / "bridges" / "main.rs").exists()


def test_build_loads_config_next_to_source_dir(
    crate_builder: CrateBuilder,
    toolchain: RecordingToolchain,
    registrar: RecordingRegistrar,
) -> None:
    crate_builder.write({"src/main.rs": MAIN_RS, ".zigbridge.yml": "library_name: mathlib\n"})

    outcome = build(
        crate_builder.src_dir, crate_builder.out_dir, toolchain=toolchain, registrar=registrar
    )

    assert outcome.artifact is not None
    assert outcome.artifact.name == artifact_name("mathlib")
    assert registrar.instructions[0].library == "mathlib"


def test_module_names_follow_block_kind() -> None:
    blocks = [
        EmbeddedBlock("lib.rs", 1, 0, "", foreign_code="a"),
        EmbeddedBlock("lib.rs", 5, 1, "", foreign_code="b"),
        EmbeddedBlock(
            "lib.rs",
            9,
            2,
            "",
            external_path=Path("/crate/zig/math-ops.zig"),
            external_reference="zig/math-ops.zig",
        ),
    ]

    assert module_names(blocks) == ["ffi", "ffi_1", "ffi_zig_math_ops"]


def test_bridge_filename_flattens_nested_sources() -> None:
    assert bridge_filename("main.rs") == "main.rs"
    assert bridge_filename("net/http/client.rs") == "net__http__client.rs"


def test_default_generators_run_types_then_functions_then_impls() -> None:
    names = [generator.name for generator in Orchestrator().generators]

    assert names == ["types", "lowering", "monomorphize", "async", "opaque", "impls"]
