"""Persistent content fingerprint used to skip unchanged builds."""

from __future__ import annotations

from datetime import UTC, datetime
import hashlib
import json
from pathlib import Path
from typing import Dict, Iterable, Optional

CACHE_FILENAME = ".zigbridge-cache.json"
_CACHE_VERSION = 1


def fingerprint(parts: Iterable[str]) -> str:
    """SHA-256 over the given text parts, length-prefixed to keep them distinct."""
    digest = hashlib.sha256()
    for part in parts:
        encoded = part.encode("utf-8")
        digest.update(f"{len(encoded)}:".encode("ascii"))
        digest.update(encoded)
    return digest.hexdigest()


class BuildCache:
    """Stores the fingerprint and artifact path of the last successful build."""

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entry: Dict[str, str] = {}
        self._dirty = False
        if self._path is not None:
            self._load(self._path)

    @property
    def fingerprint(self) -> Optional[str]:
        return self._entry.get("fingerprint")

    @property
    def artifact(self) -> Optional[Path]:
        artifact = self._entry.get("artifact")
        return Path(artifact) if artifact else None

    def is_fresh(self, fingerprint: str, artifact: Path) -> bool:
        """True when the fingerprint matches and the recorded artifact still exists."""
        if self.fingerprint != fingerprint:
            return False
        recorded = self.artifact
        return recorded is not None and recorded == artifact and artifact.exists()

    def store(self, fingerprint: str, artifact: Path) -> None:
        self._entry = {
            "fingerprint": fingerprint,
            "artifact": str(artifact),
            "updated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        }
        self._dirty = True

    def persist(self) -> None:
        if not self._dirty or self._path is None:
            return
        payload = {"version": _CACHE_VERSION, "build": self._entry}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        self._dirty = False

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError):
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return
        entry = data.get("build")
        if not isinstance(entry, dict):
            return
        if not isinstance(entry.get("fingerprint"), str) or not isinstance(entry.get("artifact"), str):
            return
        self._entry = {key: str(value) for key, value in entry.items()}
        self._dirty = False


__all__ = ["BuildCache", "CACHE_FILENAME", "fingerprint"]
