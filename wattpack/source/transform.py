# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Procedural macro entry point discovery and rewriting.

    #[proc_macro]
    pub fn my_macro(input: TokenStream) -> proc_macro::TokenStream { ... }

becomes, in the module that is compiled to WebAssembly,

    #[export_name = "my_macro"]
    pub extern "C" fn my_macro_inner(input: proc_macro2::TokenStream) -> proc_macro2::TokenStream { ... }

and the host crate gets a `my_macro` shim that forwards to the dispatch handle
(see `host.py`).
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from dataclasses import dataclass, replace
from typing import NamedTuple, Sequence

from wattpack.source.items import Attribute, FnItem, Item, Meta, parse_file, parse_meta
from wattpack.source.tokens import Group, TokenTree, is_ident, is_punct, lex, split_top_level

logger = logging.getLogger(__name__)

AMBIENT_TOKEN_STREAM = "proc_macro::TokenStream"
PORTABLE_TOKEN_STREAM = "proc_macro2::TokenStream"
ALLOW_WARNINGS = "#![allow(warnings)]"


class EntryPointKind(enum.Enum):
	BARE = "proc_macro"
	DERIVE = "proc_macro_derive"
	ATTRIBUTE = "proc_macro_attribute"
	HACK = "proc_macro_hack"

	@property
	def dispatch_method(self) -> str:
		"""`watt::WasmMacro` method the host shim calls."""
		if self is EntryPointKind.DERIVE:
			return "proc_macro_derive"
		if self is EntryPointKind.ATTRIBUTE:
			return "proc_macro_attribute"
		return "proc_macro"

	@property
	def params(self) -> tuple[str, ...]:
		if self is EntryPointKind.ATTRIBUTE:
			return ("args", "input")
		return ("input",)

	def accepts(self, meta: Meta) -> bool:
		if self is EntryPointKind.DERIVE:
			return meta.is_list
		if self is EntryPointKind.HACK:
			return not meta.has_value
		return not meta.is_list and not meta.has_value


_MARKERS = {kind.value: kind for kind in EntryPointKind}


@dataclass(frozen=True)
class EntryPoint:
	name: str
	kind: EntryPointKind
	attributes: tuple[str, ...]  # verbatim, in source order


class Transformed(NamedTuple):
	entry_points: tuple[EntryPoint, ...]
	source: str


def marker_kind(meta: Meta, *, depth: int = 0) -> EntryPointKind | None:
	"""
	Entry point kind named by one attribute.

	`cfg_attr(<cond>, <attr>)` is unwrapped once: only its second argument is
	inspected, and a `cfg_attr` nested inside it is not looked into.
	"""
	if meta.path == "cfg_attr":
		if depth > 0 or meta.args is None:
			return None
		parts = split_top_level(meta.args, ",")
		if len(parts) < 2:
			return None
		inner = parse_meta(parts[1])
		if inner is None:
			return None
		return marker_kind(inner, depth=depth + 1)
	kind = _MARKERS.get(meta.path)
	if kind is None or not kind.accepts(meta):
		return None
	return kind


def entry_point_kind(fn: FnItem) -> EntryPointKind | None:
	for attr in fn.attrs:
		if attr.meta is None:
			continue
		kind = marker_kind(attr.meta)
		if kind is not None:
			return kind
	return None


def _is_proc_macro_extern(item: Item) -> bool:
	toks = item.tokens
	for k, tt in enumerate(toks):
		if is_ident(tt, "crate"):
			return k + 1 < len(toks) and is_ident(toks[k + 1], "proc_macro")
	return False


def _rewrite_entry_point(fn: FnItem) -> FnItem:
	params = tuple(p if p.ty is None else replace(p, ty=PORTABLE_TOKEN_STREAM) for p in fn.params)
	return fn.with_abi("C").edit(
		attrs=(Attribute.synthesized(f'#[export_name = "{fn.name}"]'),),
		name=f"{fn.name}_inner",
		params=params,
		ret=PORTABLE_TOKEN_STREAM,
	)


def transform(source_text: str, *, path: str | None = None) -> Transformed:
	"""
	Rewrite a procedural macro crate's library module for the wasm target.

	Returns the discovered entry points (in source order) and the rewritten
	module text. Items that are not entry points are copied verbatim.
	"""
	parsed = parse_file(source_text, path=path)

	# First pass: decide what happens to each item.
	dropped: set[int] = set()
	matched: dict[int, EntryPointKind] = {}
	for idx, item in enumerate(parsed.items):
		if isinstance(item, Item) and item.kind == "extern_crate" and _is_proc_macro_extern(item):
			dropped.add(idx)
			continue
		if isinstance(item, FnItem):
			kind = entry_point_kind(item)
			if kind is not None:
				matched[idx] = kind

	# Second pass: rebuild the item list.
	entry_points: list[EntryPoint] = []
	items: list[Item | FnItem] = []
	for idx, item in enumerate(parsed.items):
		if idx in dropped:
			continue
		kind = matched.get(idx)
		if kind is None:
			items.append(item)
			continue
		assert isinstance(item, FnItem)
		entry_points.append(EntryPoint(name=item.name, kind=kind, attributes=tuple(a.text for a in item.attrs)))
		items.append(_rewrite_entry_point(item))

	dupes = sorted(name for name, n in Counter(ep.name for ep in entry_points).items() if n > 1)
	if dupes:
		logger.warning("duplicate entry point names in %s: %s", path or "<source>", ", ".join(dupes))

	rewritten = replace(parsed, items=tuple(items), prelude=(ALLOW_WARNINGS, *parsed.prelude))
	return Transformed(entry_points=tuple(entry_points), source=rewritten.render())


def _crate_path_spans(tts: Sequence[TokenTree], out: list[tuple[int, int]]) -> None:
	for k, tt in enumerate(tts):
		if isinstance(tt, Group):
			_crate_path_spans(tt.children, out)
			continue
		if is_ident(tt, "proc_macro") and k + 1 < len(tts) and is_punct(tts[k + 1], "::"):
			out.append((tt.start, tt.end))


def rewrite_crate_paths(text: str, *, path: str | None = None) -> str:
	"""
	Point `proc_macro::...` paths at `proc_macro2::...`.

	Works on tokens, so string literals and comments are left alone.
	"""
	spans: list[tuple[int, int]] = []
	_crate_path_spans(lex(text, path=path), spans)
	for start, end in reversed(spans):
		text = text[:start] + "proc_macro2" + text[end:]
	return text
