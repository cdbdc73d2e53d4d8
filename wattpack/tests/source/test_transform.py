# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import logging

import pytest

from wattpack.errors import ParseError
from wattpack.source.transform import (
	ALLOW_WARNINGS,
	EntryPointKind,
	entry_point_kind,
	rewrite_crate_paths,
	transform,
)
from wattpack.source.items import FnItem, parse_file


def _fn(src: str) -> FnItem:
	[(_, fn)] = parse_file(src).functions()
	return fn


def test_module_without_entry_points_is_unchanged_apart_from_prelude():
	src = "use std::fmt;\n\npub fn helper(x: u8) -> u8 {\n    x + 1\n}\n"
	result = transform(src)
	assert result.entry_points == ()
	assert result.source == ALLOW_WARNINGS + "\n" + src


def test_proc_macro_import_is_removed():
	src = "extern crate proc_macro;\nextern crate alloc;\n\nfn f() {}\n"
	result = transform(src)
	assert "extern crate proc_macro;" not in result.source
	assert "extern crate alloc;" in result.source


def test_bare_entry_point_is_exported_under_its_own_name():
	src = (
		"use proc_macro::TokenStream;\n\n"
		"/// Docs.\n"
		"#[proc_macro]\n"
		"pub fn make(input: TokenStream) -> proc_macro::TokenStream {\n"
		"    input\n"
		"}\n"
	)
	result = transform(src)
	[ep] = result.entry_points
	assert ep.name == "make"
	assert ep.kind is EntryPointKind.BARE
	assert ep.attributes == ("/// Docs.", "#[proc_macro]")
	assert (
		'#[export_name = "make"]\n'
		'pub extern "C" fn make_inner(input: proc_macro2::TokenStream) -> proc_macro2::TokenStream {\n'
		"    input\n"
		"}\n"
	) in result.source
	assert "#[proc_macro]" not in result.source
	assert "/// Docs." not in result.source


def test_attribute_entry_point_keeps_both_parameters():
	src = "#[proc_macro_attribute]\npub fn wrap(args: TokenStream, item: TokenStream) -> TokenStream { item }\n"
	result = transform(src)
	[ep] = result.entry_points
	assert ep.kind is EntryPointKind.ATTRIBUTE
	assert "fn wrap_inner(args: proc_macro2::TokenStream, item: proc_macro2::TokenStream)" in result.source


def test_entry_points_are_returned_in_source_order():
	src = (
		"#[proc_macro_derive(Builder, attributes(builder))]\npub fn derive_builder(input: TokenStream) -> TokenStream { input }\n"
		"#[proc_macro_hack]\npub fn hack(input: TokenStream) -> TokenStream { input }\n"
		"#[proc_macro]\npub fn bare(input: TokenStream) -> TokenStream { input }\n"
	)
	result = transform(src)
	assert [(ep.name, ep.kind) for ep in result.entry_points] == [
		("derive_builder", EntryPointKind.DERIVE),
		("hack", EntryPointKind.HACK),
		("bare", EntryPointKind.BARE),
	]


def test_markers_inside_one_cfg_attr_are_found():
	fn = _fn("#[cfg_attr(not(test), proc_macro)]\nfn m(input: TokenStream) -> TokenStream { input }\n")
	assert entry_point_kind(fn) is EntryPointKind.BARE


def test_markers_nested_two_cfg_attr_levels_deep_are_ignored():
	fn = _fn("#[cfg_attr(a, cfg_attr(b, proc_macro))]\nfn m(input: TokenStream) -> TokenStream { input }\n")
	assert entry_point_kind(fn) is None


@pytest.mark.parametrize(
	"attr",
	[
		"#[proc_macro_derive]",
		"#[proc_macro(x)]",
		'#[proc_macro = "x"]',
		"#[my::proc_macro]",
		"#[inline]",
	],
)
def test_look_alike_attributes_are_not_markers(attr: str):
	fn = _fn(f"{attr}\nfn m(input: TokenStream) -> TokenStream {{ input }}\n")
	assert entry_point_kind(fn) is None


def test_transform_output_has_no_markers_left():
	src = (
		"extern crate proc_macro;\n"
		"use proc_macro::TokenStream;\n"
		"#[proc_macro]\npub fn a(input: TokenStream) -> TokenStream { input }\n"
		"#[proc_macro_attribute]\npub fn b(args: TokenStream, input: TokenStream) -> TokenStream { input }\n"
	)
	once = transform(src)
	twice = transform(once.source)
	assert len(once.entry_points) == 2
	assert twice.entry_points == ()


def test_duplicate_entry_point_names_are_kept_and_logged(caplog: pytest.LogCaptureFixture):
	src = (
		"#[proc_macro]\npub fn dup(input: TokenStream) -> TokenStream { input }\n"
		"#[proc_macro]\npub fn dup(input: TokenStream) -> TokenStream { input }\n"
	)
	with caplog.at_level(logging.WARNING, logger="wattpack.source.transform"):
		result = transform(src, path="src/lib.rs")
	assert [ep.name for ep in result.entry_points] == ["dup", "dup"]
	assert "duplicate entry point names in src/lib.rs: dup" in caplog.text


def test_entry_point_after_a_nested_block_comment_is_found():
	src = (
		"/* outer /* inner */ still a comment */\n"
		"#[proc_macro]\n"
		"pub fn make(input: TokenStream) -> TokenStream { input }\n"
	)
	result = transform(src)
	assert [ep.name for ep in result.entry_points] == ["make"]
	assert result.source.startswith(ALLOW_WARNINGS + "\n/* outer /* inner */ still a comment */\n")


def test_non_ascii_function_names_are_not_parse_errors():
	result = transform("pub fn café() {}\n")
	assert result.entry_points == ()
	assert result.source.endswith("pub fn café() {}\n")


def test_invalid_source_raises_parse_error():
	with pytest.raises(ParseError) as excinfo:
		transform("#[proc_macro]\npub fn broken(input: TokenStream {\n")
	assert excinfo.value.stage == "source"


def test_rewrite_crate_paths_only_touches_path_tokens():
	src = (
		'use proc_macro::{Span, TokenStream};\n'
		'// proc_macro::Span in a comment\n'
		'const S: &str = "proc_macro::Span";\n'
		'fn f() -> proc_macro :: Span { proc_macro::Span::call_site() }\n'
		'fn proc_macro() {}\n'
	)
	out = rewrite_crate_paths(src)
	assert out == (
		'use proc_macro2::{Span, TokenStream};\n'
		'// proc_macro::Span in a comment\n'
		'const S: &str = "proc_macro::Span";\n'
		'fn f() -> proc_macro2 :: Span { proc_macro2::Span::call_site() }\n'
		'fn proc_macro() {}\n'
	)
