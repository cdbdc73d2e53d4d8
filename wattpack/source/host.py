# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
The library module of a generated watt host crate.

The host crate is an ordinary proc-macro crate whose entry points are thin
shims: each one carries the original attributes and forwards to the
`MACRO` dispatch handle, which runs the embedded wasm module.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from wattpack.config import DEFLATE_EXTENSION, WASM_EXTENSION
from wattpack.source.items import Attribute, FnItem, Param, parse_file
from wattpack.source.transform import AMBIENT_TOKEN_STREAM, EntryPoint, EntryPointKind

_EAGER_STATICS = """\
extern crate proc_macro;

static WASM: &[u8] = include_bytes!("{file}");
static MACRO: watt::WasmMacro = watt::WasmMacro::new(WASM);
"""

_LAZY_STATICS = """\
extern crate proc_macro;
extern crate once_cell;

use once_cell::sync::Lazy;

static WASM: Lazy<Vec<u8>> = Lazy::new(|| {{
    miniz_oxide::inflate::decompress_to_vec(include_bytes!("{file}")).expect("failed to decompress wasm")
}});
static MACRO: Lazy<watt::WasmMacro> = Lazy::new(|| watt::WasmMacro::new(&WASM));
"""

_HACK_IMPORT = "use proc_macro_hack::proc_macro_hack;\n"


def artifact_file_name(normalized_name: str, *, compress: bool) -> str:
	return normalized_name + (DEFLATE_EXTENSION if compress else WASM_EXTENSION)


def dispatch_shim(ep: EntryPoint) -> FnItem:
	"""
	A public function named like the entry point that forwards its token
	streams to the dispatch handle, tagged with the entry point's name.
	"""
	args = ", ".join(ep.kind.params)
	body = f'{{\n    MACRO.{ep.kind.dispatch_method}("{ep.name}", {args})\n}}'
	return FnItem(
		name=ep.name,
		attrs=tuple(Attribute.synthesized(text) for text in ep.attributes),
		vis="pub",
		params=tuple(Param(pattern=p, ty=AMBIENT_TOKEN_STREAM) for p in ep.kind.params),
		ret=AMBIENT_TOKEN_STREAM,
		body=body,
	)


def render_host_module(normalized_name: str, entry_points: Sequence[EntryPoint], *, compress: bool) -> str:
	file = artifact_file_name(normalized_name, compress=compress)
	template = _LAZY_STATICS if compress else _EAGER_STATICS
	text = template.format(file=file)
	if any(ep.kind is EntryPointKind.HACK for ep in entry_points):
		text += _HACK_IMPORT
	module = parse_file(text)
	module = replace(module, items=module.items + tuple(dispatch_shim(ep) for ep in entry_points))
	return module.render()
