"""Recording stand-ins for the external toolchain and link registrar."""

from __future__ import annotations

from typing import List

from zigbridge.toolchain import CompileRequest, LinkInstructions, LinkRegistrar, Toolchain


class RecordingToolchain(Toolchain):
    """Records compile requests and writes a placeholder artifact."""

    def __init__(self, *, succeed: bool = True) -> None:
        self.succeed = succeed
        self.requests: List[CompileRequest] = []

    def compile(self, request: CompileRequest) -> bool:
        self.requests.append(request)
        if self.succeed:
            request.output_path.parent.mkdir(parents=True, exist_ok=True)
            request.output_path.write_bytes(b"!<arch>\n")
        return self.succeed


class RecordingRegistrar(LinkRegistrar):
    def __init__(self) -> None:
        self.instructions: List[LinkInstructions] = []

    def register(self, instructions: LinkInstructions) -> None:
        self.instructions.append(instructions)


__all__ = ["RecordingRegistrar", "RecordingToolchain"]
