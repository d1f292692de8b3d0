"""Tests for zigbridge.toolchain."""

from __future__ import annotations

import io
import subprocess
from pathlib import Path
from typing import List

from zigbridge.toolchain import (
    CargoLinkRegistrar,
    CompileRequest,
    LinkInstructions,
    ZigToolchain,
    artifact_name,
)


def _request(tmp_path: Path, target: str = "native") -> CompileRequest:
    return CompileRequest(
        source_text="export fn f() void {}\n",
        source_path=tmp_path / "generated_autozig.zig",
        output_path=tmp_path / "libautozig.a",
        target=target,
    )


def test_command_builds_static_library_invocation(tmp_path: Path) -> None:
    toolchain = ZigToolchain(optimize="ReleaseFast")

    command = toolchain.command(_request(tmp_path))

    assert command == [
        "zig",
        "build-lib",
        str(tmp_path / "generated_autozig.zig"),
        "-O",
        "ReleaseFast",
        f"-femit-bin={tmp_path / 'libautozig.a'}",
        "-fPIC",
    ]


def test_command_passes_explicit_target(tmp_path: Path) -> None:
    command = ZigToolchain().command(_request(tmp_path, target="aarch64-macos"))

    assert command[-2:] == ["-target", "aarch64-macos"]


def test_compile_reports_success_when_artifact_exists(tmp_path: Path) -> None:
    calls: List[List[str]] = []

    def runner(command: List[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        calls.append(command)
        (tmp_path / "libautozig.a").write_bytes(b"!<arch>\n")
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

    assert ZigToolchain(runner=runner).compile(_request(tmp_path))
    assert calls and calls[0][1] == "build-lib"


def test_compile_reports_failure_on_nonzero_exit(tmp_path: Path) -> None:
    def runner(command: List[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(command, 1, stdout="", stderr="error: expected ';'")

    assert not ZigToolchain(runner=runner).compile(_request(tmp_path))


def test_compile_reports_missing_compiler(tmp_path: Path) -> None:
    def runner(command: List[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(command[0])

    assert not ZigToolchain("zig-not-installed", runner=runner).compile(_request(tmp_path))


def test_cargo_registrar_prints_link_directives(tmp_path: Path) -> None:
    stream = io.StringIO()

    CargoLinkRegistrar(stream).register(LinkInstructions(search_dir=tmp_path, library="autozig"))

    assert stream.getvalue() == (
        f"cargo:rustc-link-search=native={tmp_path}\n"
        "cargo:rustc-link-lib=static=autozig\n"
    )


def test_artifact_name_uses_platform_convention(monkeypatch) -> None:
    monkeypatch.setattr("zigbridge.toolchain.sys.platform", "linux")
    assert artifact_name("autozig") == "libautozig.a"

    monkeypatch.setattr("zigbridge.toolchain.sys.platform", "win32")
    assert artifact_name("autozig") == "autozig.lib"
