"""Boundaries to the external Zig compiler and the host build's linker."""

from __future__ import annotations

import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence, TextIO

from .logging import get_logger

logger = get_logger("toolchain")


@dataclass(frozen=True)
class CompileRequest:
    """What the compiler needs: foreign text, where it lives, where to emit."""

    source_text: str
    source_path: Path
    output_path: Path
    target: str = "native"
    module_paths: Sequence[Path] = ()


@dataclass(frozen=True)
class LinkInstructions:
    search_dir: Path
    library: str
    kind: str = "static"


class Toolchain(ABC):
    """Compiles consolidated Zig source into a linkable artifact."""

    @abstractmethod
    def compile(self, request: CompileRequest) -> bool:
        """Return True when the artifact was written to `request.output_path`."""


class ZigToolchain(Toolchain):
    """Runs `zig build-lib` for the consolidated root source."""

    def __init__(
        self,
        executable: str = "zig",
        *,
        optimize: str = "ReleaseSafe",
        runner: Callable[..., subprocess.CompletedProcess[str]] | None = None,
    ) -> None:
        self.executable = executable
        self.optimize = optimize
        self._runner = runner or subprocess.run

    def command(self, request: CompileRequest) -> List[str]:
        command = [
            self.executable,
            "build-lib",
            str(request.source_path),
            "-O",
            self.optimize,
            f"-femit-bin={request.output_path}",
            "-fPIC",
        ]
        if request.target != "native":
            command.extend(["-target", request.target])
        return command

    def compile(self, request: CompileRequest) -> bool:
        command = self.command(request)
        logger.debug("Running %s", " ".join(command))
        try:
            completed = self._runner(
                command,
                cwd=str(request.source_path.parent),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            logger.error("Zig compiler not found: %s", self.executable)
            return False
        if completed.returncode != 0:
            logger.error("zig build-lib failed:\n%s", completed.stderr.strip())
            return False
        return request.output_path.exists()


class LinkRegistrar(ABC):
    """Hands link directives to the surrounding build."""

    @abstractmethod
    def register(self, instructions: LinkInstructions) -> None:
        """Emit the directives for one produced artifact."""


@dataclass
class CargoLinkRegistrar(LinkRegistrar):
    """Prints `cargo:` directives, as a build script is expected to."""

    stream: TextIO = field(default_factory=lambda: sys.stdout)

    def register(self, instructions: LinkInstructions) -> None:
        self.stream.write(f"cargo:rustc-link-search=native={instructions.search_dir}\n")
        self.stream.write(f"cargo:rustc-link-lib={instructions.kind}={instructions.library}\n")


def artifact_name(library: str) -> str:
    """Platform file name of a static library."""
    if sys.platform.startswith("win"):
        return f"{library}.lib"
    return f"lib{library}.a"


__all__ = [
    "CargoLinkRegistrar",
    "CompileRequest",
    "LinkInstructions",
    "LinkRegistrar",
    "Toolchain",
    "ZigToolchain",
    "artifact_name",
]
