"""Tests for async wrappers over blocking foreign calls."""

from __future__ import annotations

from tests._fixtures.contexts import make_context
from zigbridge.generators.async_bridge import AsyncBridgeGenerator
from zigbridge.generators.lowering import LoweringGenerator
from zigbridge.models import RuleKind


def test_async_declaration_copies_borrowed_slices() -> None:
    context = make_context("async fn checksum(data: &[u8]) -> u32;")

    fragment = AsyncBridgeGenerator().generate(context)
    [spec] = fragment.specs

    assert spec.wrapper.is_async
    [rule] = spec.rules
    assert rule.kind is RuleKind.OWNED_COPY
    assert rule.capture == "let data_owned = data.to_vec();"
    assert rule.arguments == ("data_owned.as_ptr()", "data_owned.len()")
    assert rule.write_back is None
    assert [param.name for param in spec.native.params] == ["data_ptr", "data_len"]


def test_mutable_slices_are_written_back() -> None:
    context = make_context("async fn scale(buf: &mut [f32], factor: f32);")

    [spec] = AsyncBridgeGenerator().generate(context).specs

    buf_rule, factor_rule = spec.rules
    assert buf_rule.capture == "let mut buf_owned = buf.to_vec();"
    assert buf_rule.arguments == ("buf_owned.as_mut_ptr()", "buf_owned.len()")
    assert buf_rule.write_back == "buf.copy_from_slice(&buf_owned);"
    assert buf_rule.owned == "buf_owned"
    assert factor_rule.kind is RuleKind.PASS_THROUGH


def test_string_parameters_are_copied_to_owned_strings() -> None:
    context = make_context("async fn word_count(text: &str) -> usize;")

    [spec] = AsyncBridgeGenerator().generate(context).specs

    assert spec.rules[0].capture == "let text_owned = text.to_owned();"


def test_mutable_references_are_cloned_and_restored() -> None:
    context = make_context("async fn bump(counter: &mut u64);")

    [spec] = AsyncBridgeGenerator().generate(context).specs

    [rule] = spec.rules
    assert rule.capture == "let mut counter_owned = counter.clone();"
    assert rule.arguments == ("&mut counter_owned",)
    assert rule.write_back == "*counter = counter_owned;"


def test_raw_pointer_parameters_are_reported() -> None:
    context = make_context("async fn poke(ptr: *mut u8);")

    fragment = AsyncBridgeGenerator().generate(context)

    assert fragment.specs[0].rules[0].kind is RuleKind.POINTER
    assert any("cannot be moved to a worker thread" in item.message for item in fragment.diagnostics)


def test_sync_and_async_declarations_split_between_generators() -> None:
    context = make_context("fn add(a: i32, b: i32) -> i32;\nasync fn checksum(data: &[u8]) -> u32;")

    sync_specs = LoweringGenerator().generate(context).specs
    async_specs = AsyncBridgeGenerator().generate(context).specs

    assert [spec.symbol for spec in sync_specs] == ["add"]
    assert [spec.symbol for spec in async_specs] == ["checksum"]
