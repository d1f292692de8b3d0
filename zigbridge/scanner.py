"""Source tree scanning for embedded foreign-code blocks."""

from __future__ import annotations

import os
import textwrap
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from tree_sitter import Node

from .config import BridgeConfig, MacroConfig
from .logging import get_logger
from .models import EmbeddedBlock, ScanDiagnostic, ScanResult, SourceUnit
from .syntax import iter_named, node_text, parse_rust, path_tail, walk

logger = get_logger("scanner")

SEPARATOR = "---"

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    "target",
    "zig-cache",
    ".zig-cache",
    "zig-out",
    "node_modules",
}


@dataclass
class IgnoreRule:
    """Represents an ignore rule parsed from .gitignore or .zigbridge.yml."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not rel_path:
            return False
        if self.directory_only and not is_dir:
            return False

        if self.anchored or self.has_slash:
            if fnmatchcase(rel_path, self.pattern):
                return True
            return self.directory_only and rel_path.startswith(f"{self.pattern}/")

        return any(fnmatchcase(part, self.pattern) for part in rel_path.split("/"))


def _build_ignore_rule(pattern: str, negate: bool = False) -> IgnoreRule | None:
    pattern = pattern.strip()
    if not pattern:
        return None

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern[:-1]

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern[1:]

    return IgnoreRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        negate=negate,
        has_slash="/" in pattern,
    )


def _parse_gitignore(path: Path) -> List[IgnoreRule]:
    if not path.exists():
        return []

    rules: List[IgnoreRule] = []
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        rule = _build_ignore_rule(line, negate=negate)
        if rule is not None:
            rules.append(rule)
    return rules


def _load_ignore_rules(root: Path, exclude_paths: Sequence[str]) -> List[IgnoreRule]:
    rules = _parse_gitignore(root / ".gitignore")
    for pattern in exclude_paths:
        rule = _build_ignore_rule(pattern)
        if rule is not None:
            rules.append(rule)
    return rules


def _should_ignore(rel_path: str, is_dir: bool, rules: Sequence[IgnoreRule]) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negate
    return ignored


def _iter_sources(root: Path, rules: Sequence[IgnoreRule]) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        current_dir = Path(dirpath)
        rel_dir = current_dir.relative_to(root).as_posix() if current_dir != root else ""

        kept = []
        for name in sorted(dirnames):
            if name in _EXCLUDED_DIRS:
                continue
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if _should_ignore(rel_path, True, rules):
                continue
            kept.append(name)
        dirnames[:] = kept

        for filename in sorted(filenames):
            if not filename.endswith(".rs"):
                continue
            rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
            if _should_ignore(rel_path, False, rules):
                continue
            yield current_dir / filename


def split_block(content: str) -> Tuple[str, str]:
    """Split inline block content into (foreign code, declaration text).

    Without a separator the whole content is foreign code and there are no
    declarations.
    """
    foreign, found, declarations = content.partition(SEPARATOR)
    if not found:
        return _normalize(content), ""
    return _normalize(foreign), declarations.strip()


def _normalize(code: str) -> str:
    code = textwrap.dedent(code.strip("\n")).strip()
    return f"{code}\n" if code else ""


def _token_tree_body(node: Node, source_bytes: bytes) -> str:
    text = node_text(node, source_bytes)
    if len(text) >= 2 and text[0] in "{([" and text[-1] in "})]":
        return text[1:-1]
    return text


def _string_value(node: Node, source_bytes: bytes) -> str:
    text = node_text(node, source_bytes)
    if node.type == "raw_string_literal":
        text = text.lstrip("r").strip("#")
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1]
    return text


class SourceScanner:
    """Walks a host source tree and extracts embedded blocks."""

    def __init__(self, config: BridgeConfig | None = None) -> None:
        self.config = config
        self.macros = config.macros if config is not None else MacroConfig()

    def scan(self, root: str | Path) -> ScanResult:
        """Return every embedded block below `root` plus per-file diagnostics."""
        root_path = Path(root).expanduser().resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Source path not found: {root}")
        if not root_path.is_dir():
            raise NotADirectoryError(f"Source path is not a directory: {root}")

        manifest_dir = self._manifest_dir(root_path)
        exclude_paths = self.config.exclude_paths if self.config is not None else []
        rules = _load_ignore_rules(root_path, exclude_paths)

        blocks: List[EmbeddedBlock] = []
        diagnostics: List[ScanDiagnostic] = []
        files_scanned = 0
        for path in _iter_sources(root_path, rules):
            rel_path = path.relative_to(root_path).as_posix()
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                diagnostics.append(self._diagnostic(rel_path, f"unreadable source file: {exc}"))
                continue
            files_scanned += 1
            unit = SourceUnit(path=path, relative_path=rel_path, text=text)
            found, problems = self.scan_unit(unit, manifest_dir)
            blocks.extend(found)
            diagnostics.extend(problems)

        logger.info(
            "Scanned %d source files under %s: %d blocks, %d diagnostics",
            files_scanned,
            root_path,
            len(blocks),
            len(diagnostics),
        )
        return ScanResult(
            root=str(root_path),
            blocks=blocks,
            diagnostics=diagnostics,
            files_scanned=files_scanned,
        )

    def scan_unit(
        self, unit: SourceUnit, manifest_dir: Path
    ) -> Tuple[List[EmbeddedBlock], List[ScanDiagnostic]]:
        """Extract the blocks of a single source file."""
        source_bytes = unit.text.encode("utf-8")
        tree = parse_rust(source_bytes)
        if tree.root_node.has_error:
            line = _first_error_line(tree.root_node)
            return [], [self._diagnostic(unit.relative_path, "failed to parse source file", line)]

        blocks: List[EmbeddedBlock] = []
        diagnostics: List[ScanDiagnostic] = []
        for node in walk(tree.root_node):
            if node.type != "macro_invocation":
                continue
            macro = node.child_by_field_name("macro")
            body = _macro_body(node)
            if macro is None or body is None:
                continue
            name = path_tail(macro, source_bytes)
            line = node.start_point[0] + 1
            if name == self.macros.inline:
                foreign, declarations = split_block(_token_tree_body(body, source_bytes))
                blocks.append(
                    EmbeddedBlock(
                        source=unit.relative_path,
                        line=line,
                        index=len(blocks),
                        declaration_text=declarations,
                        foreign_code=foreign,
                    )
                )
            elif name == self.macros.include:
                block = self._external_block(
                    unit, body, source_bytes, manifest_dir, line, len(blocks), diagnostics
                )
                if block is not None:
                    blocks.append(block)
        return blocks, diagnostics

    def _external_block(
        self,
        unit: SourceUnit,
        body: Node,
        source_bytes: bytes,
        manifest_dir: Path,
        line: int,
        index: int,
        diagnostics: List[ScanDiagnostic],
    ) -> Optional[EmbeddedBlock]:
        reference: Optional[str] = None
        declarations = ""
        for child in iter_named(body):
            if reference is None and child.type in {"string_literal", "raw_string_literal"}:
                reference = _string_value(child, source_bytes)
            elif reference is not None and child.type == "token_tree":
                declarations = _token_tree_body(child, source_bytes).strip()
                break

        if not reference:
            diagnostics.append(
                self._diagnostic(
                    unit.relative_path, f"{self.macros.include}! needs a file path", line
                )
            )
            return None

        resolved = (manifest_dir / reference).resolve()
        if not resolved.is_file():
            diagnostics.append(
                self._diagnostic(
                    unit.relative_path, f"referenced foreign file not found: {reference}", line
                )
            )
            return None

        return EmbeddedBlock(
            source=unit.relative_path,
            line=line,
            index=index,
            declaration_text=declarations,
            external_path=resolved,
            external_reference=reference,
        )

    def _manifest_dir(self, root: Path) -> Path:
        if self.config is not None and self.config.manifest_dir is not None:
            return self.config.manifest_dir
        return root.parent

    @staticmethod
    def _diagnostic(path: str, message: str, line: int | None = None) -> ScanDiagnostic:
        location = f"{path}:{line}" if line is not None else path
        logger.warning("%s: %s", location, message)
        return ScanDiagnostic(path=path, message=message, line=line)


def _macro_body(node: Node) -> Optional[Node]:
    for child in node.named_children:
        if child.type == "token_tree":
            return child
    return None


def _first_error_line(root: Node) -> Optional[int]:
    for node in walk(root):
        if node.type == "ERROR" or node.is_missing:
            return node.start_point[0] + 1
    return None


__all__ = ["IgnoreRule", "SEPARATOR", "SourceScanner", "split_block"]
