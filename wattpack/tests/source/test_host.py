# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from wattpack.source.host import artifact_file_name, dispatch_shim, render_host_module
from wattpack.source.items import parse_file
from wattpack.source.transform import EntryPoint, EntryPointKind, transform

BARE = EntryPoint(name="identity", kind=EntryPointKind.BARE, attributes=("/// Docs.", "#[proc_macro]"))
DERIVE = EntryPoint(
	name="derive_builder",
	kind=EntryPointKind.DERIVE,
	attributes=("#[proc_macro_derive(Builder, attributes(builder))]",),
)
ATTRIBUTE = EntryPoint(name="traced", kind=EntryPointKind.ATTRIBUTE, attributes=("#[proc_macro_attribute]",))
HACK = EntryPoint(name="hacked", kind=EntryPointKind.HACK, attributes=("#[proc_macro_hack]",))


def test_artifact_file_name():
	assert artifact_file_name("demo_macros", compress=False) == "demo_macros.wasm"
	assert artifact_file_name("demo_macros", compress=True) == "demo_macros.wasm.deflate"


def test_shim_per_kind():
	assert dispatch_shim(BARE).render() == (
		"/// Docs.\n"
		"#[proc_macro]\n"
		"pub fn identity(input: proc_macro::TokenStream) -> proc_macro::TokenStream {\n"
		'    MACRO.proc_macro("identity", input)\n'
		"}"
	)
	assert 'MACRO.proc_macro_derive("derive_builder", input)' in dispatch_shim(DERIVE).render()
	assert 'MACRO.proc_macro("hacked", input)' in dispatch_shim(HACK).render()
	attr = dispatch_shim(ATTRIBUTE).render()
	assert "pub fn traced(args: proc_macro::TokenStream, input: proc_macro::TokenStream)" in attr
	assert 'MACRO.proc_macro_attribute("traced", args, input)' in attr


def test_eager_host_module():
	text = render_host_module("demo_macros", [BARE, ATTRIBUTE], compress=False)
	assert text.startswith("extern crate proc_macro;\n")
	assert 'static WASM: &[u8] = include_bytes!("demo_macros.wasm");' in text
	assert "static MACRO: watt::WasmMacro = watt::WasmMacro::new(WASM);" in text
	assert "once_cell" not in text
	assert "proc_macro_hack" not in text

	fns = [fn for _, fn in parse_file(text).functions()]
	assert [(fn.name, fn.vis) for fn in fns] == [("identity", "pub"), ("traced", "pub")]


def test_compressed_host_module_decompresses_lazily():
	text = render_host_module("demo_macros", [BARE], compress=True)
	assert 'include_bytes!("demo_macros.wasm.deflate")' in text
	assert "miniz_oxide::inflate::decompress_to_vec" in text
	assert "static MACRO: Lazy<watt::WasmMacro>" in text
	assert [fn.name for _, fn in parse_file(text).functions()] == ["identity"]


def test_hack_import_only_when_needed():
	assert "use proc_macro_hack::proc_macro_hack;" in render_host_module("m", [HACK], compress=False)
	assert "use proc_macro_hack::proc_macro_hack;" not in render_host_module("m", [BARE, DERIVE], compress=False)


def test_host_module_matches_entry_points_found_by_transform():
	src = (
		"#[proc_macro]\npub fn a(input: TokenStream) -> TokenStream { input }\n"
		"#[proc_macro_attribute]\npub fn b(args: TokenStream, input: TokenStream) -> TokenStream { input }\n"
	)
	found = transform(src).entry_points
	host = transform(render_host_module("m", found, compress=False)).entry_points
	assert [(ep.name, ep.kind, ep.attributes) for ep in host] == [(ep.name, ep.kind, ep.attributes) for ep in found]
