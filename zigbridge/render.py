"""Renders bridge fragments into Rust and Zig source text."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader

from .models import BlockBridge, BridgeRole, BridgeSpec, Receiver, ZigShim
from .types import render

_RECEIVERS = {
    Receiver.SHARED: "&self",
    Receiver.MUTABLE: "&mut self",
    Receiver.VALUE: "self",
}


@dataclass
class FunctionView:
    signature: str
    body: List[str]
    attributes: List[str] = field(default_factory=list)


@dataclass
class ImplView:
    header: str
    methods: List[FunctionView] = field(default_factory=list)


@dataclass
class HandleView:
    name: str
    default_constructor: Optional[str] = None
    release: Optional[str] = None


@dataclass
class BlockView:
    origin: str
    kind: str
    reference: Optional[str]
    module: str
    type_items: List[str]
    externs: List[str]
    handles: List[HandleView]
    functions: List[FunctionView]
    impls: List[ImplView]


@dataclass
class ShimView:
    symbol: str
    params: str
    return_type: str
    call: str
    storage_type: Optional[str] = None


class BridgeRenderer:
    """Produces the generated Rust bridge and Zig sources from templates."""

    def __init__(self, templates_dir: Path | None = None) -> None:
        self.env = self._create_env(templates_dir)

    def render_rust(self, source: str, bridges: Sequence[BlockBridge]) -> str:
        """Render the bridge file for one host source file."""
        template = self.env.get_template("rust/bridge.rs.j2")
        blocks = [self._block_view(bridge) for bridge in bridges]
        return template.render(source=source, blocks=blocks)

    def render_zig_module(self, bridge: BlockBridge) -> str:
        """Render one block's Zig code followed by its generated shims."""
        template = self.env.get_template("zig/module.zig.j2")
        return template.render(
            origin=bridge.block.origin,
            reference=bridge.block.external_reference,
            code=bridge.foreign_code.rstrip("\n"),
            shims=[self._shim_view(shim) for shim in _shims(bridge.specs)],
        )

    def render_zig_merged(self, modules: Sequence[str]) -> str:
        template = self.env.get_template("zig/merged.zig.j2")
        return template.render(modules=[module.rstrip("\n") for module in modules])

    def render_zig_root(self, imports: Sequence[str]) -> str:
        template = self.env.get_template("zig/root.zig.j2")
        return template.render(imports=list(imports))

    # ------------------------------------------------------------------
    # View construction

    def _block_view(self, bridge: BlockBridge) -> BlockView:
        module = bridge.module
        externs: Dict[str, str] = {}
        functions: List[FunctionView] = []
        impls: Dict[Tuple[str, Optional[str]], ImplView] = {}
        handles: Dict[str, HandleView] = {}

        for lifecycle in bridge.fragment.lifecycles:
            view = HandleView(name=lifecycle.handle)
            constructor = lifecycle.constructor
            if constructor is not None and not constructor.signature.params:
                view.default_constructor = constructor.name
            handles[lifecycle.handle] = view

        for spec in bridge.specs:
            externs.setdefault(spec.symbol, _extern_decl(spec))
            wrapper = spec.wrapper
            if spec.role is BridgeRole.FUNCTION:
                functions.append(self._function_view(spec, module, public=True))
            elif spec.role is BridgeRole.DESTRUCTOR:
                handle = handles.setdefault(wrapper.owner or "", HandleView(wrapper.owner or ""))
                handle.release = _native_call(spec, module)
            else:
                owner = wrapper.owner or ""
                key = (owner, wrapper.trait_name)
                impl = impls.get(key)
                if impl is None:
                    header = (
                        f"impl {wrapper.trait_name} for {owner}"
                        if wrapper.trait_name
                        else f"impl {owner}"
                    )
                    impl = impls[key] = ImplView(header=header)
                public = wrapper.trait_name is None
                impl.methods.append(self._function_view(spec, module, public=public))

        return BlockView(
            origin=bridge.block.origin,
            kind=bridge.block.kind.value,
            reference=bridge.block.external_reference,
            module=module,
            type_items=_dedupe_items(bridge),
            externs=list(externs.values()),
            handles=list(handles.values()),
            functions=functions,
            impls=list(impls.values()),
        )

    def _function_view(self, spec: BridgeSpec, module: str, *, public: bool) -> FunctionView:
        attributes: List[str] = []
        if "__" in spec.wrapper.name:
            attributes.append("#[allow(non_snake_case)]")
        if spec.body is not None:
            attributes.append("#[allow(unused_unsafe)]")
            body = [
                "#[allow(unused_imports)]",
                f"use self::{module}::*;",
                f"unsafe {spec.body}",
            ]
        elif spec.role is BridgeRole.CONSTRUCTOR:
            body = _constructor_body(spec, module)
        elif spec.wrapper.is_async:
            body = _async_body(spec, module)
        else:
            body = [f"unsafe {{ {_result_expression(spec, module)} }}"]
        return FunctionView(signature=_signature(spec, public=public), body=body, attributes=attributes)

    @staticmethod
    def _shim_view(shim: ZigShim) -> ShimView:
        params = ", ".join(f"{param.name}: {param.type}" for param in shim.params)
        call = f"{shim.target}({', '.join(shim.call_arguments)})"
        storage_type = None
        if shim.static_storage:
            storage_type = shim.return_type.removeprefix("*const ").strip()
        return ShimView(
            symbol=shim.symbol,
            params=params,
            return_type=shim.return_type,
            call=call,
            storage_type=storage_type,
        )

    @staticmethod
    def _create_env(templates_dir: Path | None) -> Environment:
        directories = []
        if templates_dir:
            directories.append(str(templates_dir))
        directories.append(str(Path(__file__).with_name("templates")))
        loader = FileSystemLoader(directories)
        return Environment(
            loader=loader,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )


def _shims(specs: Sequence[BridgeSpec]) -> List[ZigShim]:
    seen: Dict[str, ZigShim] = {}
    for spec in specs:
        if spec.shim is not None:
            seen.setdefault(spec.shim.symbol, spec.shim)
    return list(seen.values())


def _dedupe_items(bridge: BlockBridge) -> List[str]:
    seen: Dict[str, str] = {}
    for item in bridge.fragment.type_items:
        seen.setdefault(item.name, item.text)
    return list(seen.values())


def _extern_decl(spec: BridgeSpec) -> str:
    params = ", ".join(f"{param.name}: {render(param.type)}" for param in spec.native.params)
    returns = ""
    if spec.native.return_type is not None:
        returns = f" -> {render(spec.native.return_type)}"
    return f"pub fn {spec.symbol}({params}){returns};"


def _signature(spec: BridgeSpec, *, public: bool) -> str:
    wrapper = spec.wrapper
    params: List[str] = []
    receiver = _RECEIVERS.get(wrapper.receiver)
    if receiver is not None:
        params.append(receiver)
    params.extend(f"{param.name}: {render(param.type)}" for param in wrapper.params)
    returns = f" -> {render(wrapper.return_type)}" if wrapper.return_type is not None else ""
    prefix = "pub " if public else ""
    if wrapper.is_async:
        prefix += "async "
    return f"{prefix}fn {wrapper.name}({', '.join(params)}){returns}"


def _native_call(spec: BridgeSpec, module: str) -> str:
    return f"{module}::{spec.symbol}({', '.join(spec.call_arguments)})"


def _result_expression(spec: BridgeSpec, module: str) -> str:
    call = _native_call(spec, module)
    if spec.returns_static_pointer:
        return f"std::ptr::read({call})"
    return call


def _constructor_body(spec: BridgeSpec, module: str) -> List[str]:
    return [
        f"let ptr = unsafe {{ {_native_call(spec, module)} }};",
        "let inner = std::ptr::NonNull::new(ptr)",
        f'    .expect("zig allocation failed: `{spec.symbol}` returned null");',
        "Self {",
        "    inner,",
        "    _marker: std::marker::PhantomData,",
        "}",
    ]


def _async_body(spec: BridgeSpec, module: str) -> List[str]:
    lines = [rule.capture for rule in spec.rules if rule.capture]
    written = [rule for rule in spec.rules if rule.write_back and rule.owned]
    owned = ", ".join(rule.owned or "" for rule in written)

    lines.append("let task = tokio::task::spawn_blocking(move || {")
    lines.append(f"    let result = unsafe {{ {_result_expression(spec, module)} }};")
    lines.append(f"    (result, {owned})" if written else "    result")
    lines.append("});")
    binding = f"let (result, {owned})" if written else "let result"
    lines.append(f"{binding} = match task.await {{")
    lines.append("    Ok(value) => value,")
    lines.append("    Err(err) if err.is_panic() => std::panic::resume_unwind(err.into_panic()),")
    lines.append(f'    Err(err) => panic!("zig task `{spec.wrapper.name}` failed: {{}}", err),')
    lines.append("};")
    lines.extend(rule.write_back or "" for rule in written)
    lines.append("result")
    return lines


__all__ = ["BridgeRenderer"]
