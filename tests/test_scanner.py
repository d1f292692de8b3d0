"""Tests for zigbridge.scanner."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.crate_builder import CrateBuilder
from zigbridge.config import MacroConfig
from zigbridge.models import BlockKind
from zigbridge.scanner import SourceScanner, split_block

ADD_BLOCK = """
use autozig::autozig;

autozig! {
    export fn add(a: i32, b: i32) i32 {
        return a + b;
    }
    ---
    fn add(a: i32, b: i32) -> i32;
}

fn main() {}
"""


def test_scan_extracts_inline_block_and_splits_on_separator(crate_builder: CrateBuilder) -> None:
    crate_builder.write({"src/main.rs": ADD_BLOCK})

    result = crate_builder.scan()

    assert result.files_scanned == 1
    assert result.diagnostics == []
    [block] = result.blocks
    assert block.kind is BlockKind.INLINE
    assert block.source == "main.rs"
    assert block.line == 3
    assert block.origin == "main.rs:3"
    assert block.foreign_code == "export fn add(a: i32, b: i32) i32 {\n    return a + b;\n}\n"
    assert block.declaration_text == "fn add(a: i32, b: i32) -> i32;"


def test_scan_finds_nested_and_path_qualified_invocations(crate_builder: CrateBuilder) -> None:
    crate_builder.write(
        {
            "src/lib.rs": """
            mod math {
                autozig::autozig! {
                    export fn one() i32 { return 1; }
                    ---
                    fn one() -> i32;
                }
            }

            fn run() {
                autozig! {
                    export fn two() i32 { return 2; }
                    ---
                    fn two() -> i32;
                }
            }
            """,
            "src/util/helpers.rs": """
            autozig! {
                export fn three() i32 { return 3; }
            }
            """,
        }
    )

    result = crate_builder.scan()

    assert result.files_scanned == 2
    assert [(block.source, block.index) for block in result.blocks] == [
        ("lib.rs", 0),
        ("lib.rs", 1),
        ("util/helpers.rs", 0),
    ]
    assert result.blocks[0].declaration_text == "fn one() -> i32;"
    assert result.blocks[1].declaration_text == "fn two() -> i32;"
    assert result.blocks[2].declaration_text == ""


def test_scan_resolves_external_reference_against_manifest_dir(crate_builder: CrateBuilder) -> None:
    crate_builder.write(
        {
            "zig/math.zig": "export fn mul(a: i32, b: i32) i32 {\n    return a * b;\n}\n",
            "src/lib.rs": """
            include_zig!("zig/math.zig", {
                fn mul(a: i32, b: i32) -> i32;
            });
            """,
        }
    )

    result = crate_builder.scan()

    [block] = result.blocks
    assert block.kind is BlockKind.EXTERNAL
    assert block.external_reference == "zig/math.zig"
    assert block.external_path == (crate_builder.root / "zig" / "math.zig").resolve()
    assert block.foreign_code is None
    assert block.declaration_text == "fn mul(a: i32, b: i32) -> i32;"


def test_scan_reports_missing_external_file(crate_builder: CrateBuilder) -> None:
    crate_builder.write(
        {
            "src/lib.rs": """
            include_zig!("zig/absent.zig", {
                fn mul(a: i32, b: i32) -> i32;
            });
            """,
        }
    )

    result = crate_builder.scan()

    assert result.blocks == []
    [diagnostic] = result.diagnostics
    assert diagnostic.path == "lib.rs"
    assert diagnostic.line == 1
    assert diagnostic.message == "referenced foreign file not found: zig/absent.zig"


def test_scan_skips_unparsable_file_and_continues(crate_builder: CrateBuilder) -> None:
    crate_builder.write({"src/broken.rs": "fn broken( {\n", "src/main.rs": ADD_BLOCK})

    result = crate_builder.scan()

    assert result.files_scanned == 2
    assert [block.source for block in result.blocks] == ["main.rs"]
    [diagnostic] = result.diagnostics
    assert diagnostic.path == "broken.rs"
    assert diagnostic.message == "failed to parse source file"


def test_scan_honours_exclude_paths_and_gitignore(crate_builder: CrateBuilder) -> None:
    crate_builder.write(
        {
            "src/main.rs": ADD_BLOCK,
            "src/generated/bridge.rs": ADD_BLOCK,
            "src/scratch.rs": ADD_BLOCK,
            "src/.gitignore": "scratch.rs\n",
        }
    )

    result = crate_builder.scan(crate_builder.config(exclude_paths=["generated/"]))

    assert [block.source for block in result.blocks] == ["main.rs"]


def test_scan_uses_configured_macro_names(crate_builder: CrateBuilder) -> None:
    crate_builder.write(
        {
            "src/main.rs": """
            zig_inline! {
                export fn add(a: i32, b: i32) i32 { return a + b; }
                ---
                fn add(a: i32, b: i32) -> i32;
            }

            autozig! {
                export fn ignored() void {}
            }
            """,
        }
    )

    config = crate_builder.config(macros=MacroConfig(inline="zig_inline"))
    result = crate_builder.scan(config)

    [block] = result.blocks
    assert "export fn add" in (block.foreign_code or "")


def test_scan_rejects_missing_root(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        SourceScanner().scan(tmp_path / "missing")


def test_scan_rejects_file_root(tmp_path: Path) -> None:
    path = tmp_path / "main.rs"
    path.write_text("fn main() {}\n", encoding="utf-8")

    with pytest.raises(NotADirectoryError):
        SourceScanner().scan(path)


def test_split_block_without_separator_has_no_declarations() -> None:
    foreign, declarations = split_block("\n    export fn f() void {}\n")

    assert foreign == "export fn f() void {}\n"
    assert declarations == ""
