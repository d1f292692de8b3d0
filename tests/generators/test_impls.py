"""Tests for impl blocks on stateless targets."""

from __future__ import annotations

from tests._fixtures.contexts import make_context
from zigbridge.generators.impls import StatelessImplGenerator
from zigbridge.models import BridgeRole, NativeParam, Receiver, ZigShimParam
from zigbridge.types import PathType, PointerType

CALCULATOR = """
struct Calculator;

impl Calc for Calculator {
    fn add(&self, a: i32, b: i32) -> i32 {
        add_impl(a, b)
    }

    fn clamp(&self, x: i32) -> i32 {
        if x > 100 { ffi::clamp_high(x) } else { ffi::clamp_low(x) }
    }
}
"""


def test_trait_methods_forward_without_handle() -> None:
    context = make_context(CALCULATOR, "export fn add_impl(a: i32, b: i32) i32 { return a + b; }")

    add, clamp = StatelessImplGenerator().generate(context).specs

    assert add.role is BridgeRole.METHOD
    assert add.symbol == "add_impl"
    assert [param.name for param in add.native.params] == ["a", "b"]
    assert add.wrapper.owner == "Calculator"
    assert add.wrapper.trait_name == "Calc"
    assert add.wrapper.receiver is Receiver.SHARED
    assert add.body is None
    assert clamp.symbol == "clamp_high"
    assert clamp.body is not None and "ffi::clamp_low(x)" in clamp.body


def test_preserved_bodies_point_at_the_block_module() -> None:
    context = make_context(CALCULATOR, module="ffi_2")

    _add, clamp = StatelessImplGenerator().generate(context).specs

    assert clamp.body is not None
    assert "ffi_2::clamp_high(x)" in clamp.body
    assert "ffi_2::clamp_low(x)" in clamp.body


def test_opaque_impls_are_left_to_the_lifecycle_generator() -> None:
    context = make_context(
        """
        struct Hasher(opaque);
        impl Hasher {
            fn digest(&self) -> u64 { hasher_digest() }
        }
        """
    )

    assert not StatelessImplGenerator().supports(context)


def test_by_value_struct_argument_gets_dereferencing_shim() -> None:
    context = make_context(
        """
        #[derive(Clone, Copy)]
        struct Vec3 { x: f32, y: f32, z: f32 }
        struct Measure;

        impl Length for Measure {
            fn len(&self, v: Vec3) -> f32 {
                zig_len(v)
            }
        }
        """,
        """
        const Vec3 = extern struct { x: f32, y: f32, z: f32 };
        export fn zig_len(v: Vec3) f32 { return v.x + v.y + v.z; }
        """,
    )

    fragment = StatelessImplGenerator().generate(context)
    [spec] = fragment.specs

    assert spec.native.params == (NativeParam("v", PointerType(PathType("Vec3"))),)
    assert spec.call_arguments == ("&v",)
    assert spec.shim is not None
    assert spec.shim.symbol == "zig_len"
    assert spec.shim.target == "zig_len__internal"
    assert spec.shim.params == (ZigShimParam("v", "*const Vec3", deref=True),)
    assert spec.shim.call_arguments == ("v.*",)
    assert spec.internal_symbol == "zig_len__internal"
    assert fragment.renames == {"zig_len": "zig_len__internal"}


def test_pointer_taking_zig_method_needs_no_shim() -> None:
    context = make_context(
        """
        struct Vec3 { x: f32, y: f32, z: f32 }
        struct Measure;

        impl Length for Measure {
            fn len(&self, v: Vec3) -> f32 { zig_len(v) }
        }
        """,
        "export fn zig_len(v: *const Vec3) f32 { return v.x; }",
    )

    fragment = StatelessImplGenerator().generate(context)

    assert fragment.specs[0].shim is None
    assert fragment.renames == {}
