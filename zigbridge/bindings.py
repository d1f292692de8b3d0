"""Typed wrapper-signature export for client binding emitters."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import BaseModel

from .models import BlockBridge, BridgeRole, Receiver
from .types import render


class BindingParam(BaseModel):
    name: str
    type: str


class BindingSignature(BaseModel):
    name: str
    symbol: str
    params: List[BindingParam]
    return_type: Optional[str] = None
    is_async: bool = False
    owner: Optional[str] = None
    receiver: Optional[str] = None
    source: str


class BindingManifest(BaseModel):
    library: str
    signatures: List[BindingSignature]


def wrapper_signatures(bridges: Iterable[BlockBridge]) -> List[BindingSignature]:
    """Return the wrapper signatures of every bridged symbol, in generation order."""
    signatures: List[BindingSignature] = []
    for bridge in bridges:
        for spec in bridge.specs:
            if spec.role is BridgeRole.DESTRUCTOR:
                continue
            wrapper = spec.wrapper
            signatures.append(
                BindingSignature(
                    name=wrapper.name,
                    symbol=spec.symbol,
                    params=[
                        BindingParam(name=param.name, type=render(param.type))
                        for param in wrapper.params
                    ],
                    return_type=render(wrapper.return_type)
                    if wrapper.return_type is not None
                    else None,
                    is_async=wrapper.is_async,
                    owner=wrapper.owner,
                    receiver=None if wrapper.receiver is Receiver.NONE else wrapper.receiver.value,
                    source=bridge.block.origin,
                )
            )
    return signatures


def write_manifest(path: Path, manifest: BindingManifest) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
    return path


__all__ = [
    "BindingManifest",
    "BindingParam",
    "BindingSignature",
    "wrapper_signatures",
    "write_manifest",
]
