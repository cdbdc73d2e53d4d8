# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Top-level items of a Rust source file.

`parse_file` groups the token trees produced by `tokens.lex` into items
(attributes + item tokens) and parses function items far enough to rewrite
their signatures. Everything else is kept as opaque text.

Rendering is span-preserving: every parsed item remembers the whitespace and
comments in front of it (`lead`) and its original text, so a file that is
parsed and rendered without edits is reproduced byte for byte.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence, Union

from wattpack.errors import ParseError
from wattpack.source.tokens import (
	Group,
	Leaf,
	TokenTree,
	is_group,
	is_ident,
	is_punct,
	lex,
	span_text,
)

# Leading keywords that may precede `fn` in a function item.
_FN_QUALIFIERS = {"const", "async", "unsafe", "extern", "default", "safe"}
# Items that always end at the first top-level `;` (a brace group inside them is an expression).
_SEMI_ITEMS = {"use", "const", "static", "type", "extern_crate"}


@dataclass(frozen=True)
class Meta:
	"""
	The structured part of an attribute: `path`, `path(args..)` or `path = value`.
	"""

	path: str
	args: tuple[TokenTree, ...] | None = None  # contents of the (...) group for list form
	has_value: bool = False

	@property
	def is_list(self) -> bool:
		return self.args is not None


def parse_meta(tts: Sequence[TokenTree]) -> Meta | None:
	"""
	Parse attribute contents. Returns None when they do not start with a path.
	"""
	segments: list[str] = []
	i = 0
	if is_punct(tts[0] if tts else None, "::"):
		i = 1
	while i < len(tts) and is_ident(tts[i]):
		segments.append(tts[i].text)  # type: ignore[union-attr]
		i += 1
		if i < len(tts) and is_punct(tts[i], "::"):
			i += 1
			continue
		break
	if not segments:
		return None
	path = "::".join(segments)
	if i == len(tts):
		return Meta(path=path)
	if is_group(tts[i], "(") and i + 1 == len(tts):
		return Meta(path=path, args=tts[i].children)  # type: ignore[union-attr]
	if is_punct(tts[i], "="):
		return Meta(path=path, has_value=True)
	return None


@dataclass(frozen=True)
class Attribute:
	text: str
	inner: bool = False
	meta: Meta | None = None  # None for doc comments and synthesized attributes

	@classmethod
	def synthesized(cls, text: str) -> "Attribute":
		return cls(text=text, inner=text.startswith("#!") or text.startswith("//!"))


@dataclass(frozen=True)
class Item:
	"""
	Any top-level item kept as text: `use`, `struct`, `impl`, inner attributes, ...
	"""

	kind: str  # "inner_attr" | "extern_crate" | "use" | "const" | "static" | "type" | "other"
	attrs: tuple[Attribute, ...]
	tokens: tuple[TokenTree, ...]
	text: str
	lead: str | None = None  # None: synthesized, not present in the parsed text

	def render(self) -> str:
		return self.text


@dataclass(frozen=True)
class Param:
	pattern: str
	ty: str | None = None  # None for receivers such as `&self`

	def render(self) -> str:
		if self.ty is None:
			return self.pattern
		return f"{self.pattern}: {self.ty}"


@dataclass(frozen=True)
class FnItem:
	name: str
	attrs: tuple[Attribute, ...] = ()
	vis: str = ""
	qualifiers: tuple[str, ...] = ()
	generics: str = ""
	params: tuple[Param, ...] = ()
	ret: str | None = None
	where: str | None = None
	body: str = "{}"
	lead: str | None = None
	original: str | None = field(default=None, compare=False)
	kind: str = "fn"

	@property
	def abi(self) -> str | None:
		for i, q in enumerate(self.qualifiers):
			if q == "extern":
				if i + 1 < len(self.qualifiers) and self.qualifiers[i + 1].startswith('"'):
					return self.qualifiers[i + 1].strip('"')
				return "C"
		return None

	def edit(self, **changes: object) -> "FnItem":
		"""Copy with changes; the copy is re-rendered instead of copied from the source."""
		return replace(self, original=None, **changes)  # type: ignore[arg-type]

	def with_abi(self, abi: str) -> "FnItem":
		quals: list[str] = []
		skip_literal = False
		for q in self.qualifiers:
			if skip_literal and q.startswith('"'):
				skip_literal = False
				continue
			skip_literal = False
			if q == "extern":
				skip_literal = True
				continue
			quals.append(q)
		quals.extend(["extern", f'"{abi}"'])
		return self.edit(qualifiers=tuple(quals))

	def signature(self) -> str:
		head = " ".join(part for part in (self.vis, *self.qualifiers, "fn") if part)
		sig = f"{head} {self.name}{self.generics}({', '.join(p.render() for p in self.params)})"
		if self.ret is not None:
			sig += f" -> {self.ret}"
		if self.where is not None:
			sig += f" {self.where}"
		return sig

	def render(self) -> str:
		if self.original is not None:
			return self.original
		lines = [a.text for a in self.attrs]
		lines.append(f"{self.signature()} {self.body}")
		return "\n".join(lines)


AnyItem = Union[Item, FnItem]


@dataclass(frozen=True)
class SourceFile:
	source: str
	items: tuple[AnyItem, ...]
	trailing: str = ""
	prelude: tuple[str, ...] = ()  # synthesized inner attributes, emitted first

	def functions(self) -> list[tuple[int, FnItem]]:
		return [(i, it) for i, it in enumerate(self.items) if isinstance(it, FnItem)]

	def render(self) -> str:
		out: list[str] = [p + "\n" for p in self.prelude]
		parsed = [it for it in self.items if it.lead is not None]
		added = [it for it in self.items if it.lead is None]
		for it in parsed:
			out.append(it.lead or "")
			out.append(it.render())
		out.append(self.trailing)
		for it in added:
			text = "".join(out)
			if text and not text.endswith("\n"):
				out.append("\n")
			if text.strip():
				out.append("\n")
			out.append(it.render() + "\n")
		return "".join(out)


def _location(source: str, pos: int) -> tuple[int, int]:
	line = source.count("\n", 0, pos) + 1
	column = pos - (source.rfind("\n", 0, pos) + 1) + 1
	return line, column


def _error(source: str, pos: int, code: str, message: str, path: str | None) -> ParseError:
	line, column = _location(source, pos)
	return ParseError(reason_code=code, message=message, stage="source", path=path, line=line, column=column)


def _attribute_at(source: str, tts: Sequence[TokenTree], i: int) -> tuple[Attribute, int] | None:
	"""
	Recognize an attribute starting at `tts[i]`; returns it and the index after it.
	"""
	tt = tts[i]
	if isinstance(tt, Leaf) and tt.kind == "DOC_COMMENT":
		return Attribute(text=tt.text, inner=tt.text.startswith("//!")), i + 1
	if not is_punct(tt, "#"):
		return None
	if i + 1 < len(tts) and is_group(tts[i + 1], "["):
		group = tts[i + 1]
		assert isinstance(group, Group)
		return Attribute(text=span_text(source, tts[i : i + 2]), meta=parse_meta(group.children)), i + 2
	if i + 2 < len(tts) and is_punct(tts[i + 1], "!") and is_group(tts[i + 2], "["):
		group = tts[i + 2]
		assert isinstance(group, Group)
		return Attribute(text=span_text(source, tts[i : i + 3]), inner=True, meta=parse_meta(group.children)), i + 3
	return None


def _skip_visibility(tts: Sequence[TokenTree], i: int) -> int:
	if is_ident(tts[i] if i < len(tts) else None, "pub"):
		i += 1
		if i < len(tts) and is_group(tts[i], "("):
			i += 1
	return i


def _item_kind(tts: Sequence[TokenTree], i: int) -> str:
	i = _skip_visibility(tts, i)
	j = i
	while j < len(tts):
		tt = tts[j]
		if is_ident(tt) and tt.text in _FN_QUALIFIERS:  # type: ignore[union-attr]
			j += 1
			continue
		if isinstance(tt, Leaf) and tt.kind == "LITERAL" and j > i and is_ident(tts[j - 1], "extern"):
			j += 1
			continue
		break
	if j < len(tts) and is_ident(tts[j], "fn"):
		return "fn"
	if i < len(tts) and is_ident(tts[i], "extern") and i + 1 < len(tts) and is_ident(tts[i + 1], "crate"):
		return "extern_crate"
	if i < len(tts) and is_ident(tts[i]) and tts[i].text in _SEMI_ITEMS:  # type: ignore[union-attr]
		return tts[i].text  # type: ignore[union-attr]
	return "other"


def _item_end(tts: Sequence[TokenTree], i: int, kind: str) -> int | None:
	"""Index of the token that terminates the item starting at `i`."""
	for j in range(i, len(tts)):
		if is_punct(tts[j], ";"):
			if kind == "fn":
				return None
			return j
		if kind not in _SEMI_ITEMS and is_group(tts[j], "{"):
			return j
	return None


def _parse_generics_end(tts: Sequence[TokenTree], i: int) -> int:
	"""`tts[i]` is `<`; returns the index after the matching `>`."""
	depth = 0
	j = i
	while j < len(tts):
		tt = tts[j]
		if is_punct(tt, "<"):
			depth += 1
		elif is_punct(tt, "<<"):
			depth += 2
		elif is_punct(tt, ">"):
			depth -= 1
		elif is_punct(tt, ">>"):
			depth -= 2
		j += 1
		if depth <= 0:
			return j
	return j


def _parse_params(source: str, group: Group) -> tuple[Param, ...]:
	params: list[Param] = []
	for part in _split_commas(group.children):
		colon = next((k for k, tt in enumerate(part) if is_punct(tt, ":")), None)
		if colon is None:
			params.append(Param(pattern=span_text(source, part)))
			continue
		params.append(Param(pattern=span_text(source, part[:colon]), ty=span_text(source, part[colon + 1 :])))
	return tuple(params)


def _split_commas(tts: Sequence[TokenTree]) -> list[tuple[TokenTree, ...]]:
	# Generic arguments are not groups, so `HashMap<K, V>` needs angle tracking.
	parts: list[tuple[TokenTree, ...]] = []
	cur: list[TokenTree] = []
	depth = 0
	for tt in tts:
		if is_punct(tt, "<"):
			depth += 1
		elif is_punct(tt, ">") and depth:
			depth -= 1
		elif is_punct(tt, ">>") and depth:
			depth = max(depth - 2, 0)
		elif is_punct(tt, ",") and depth == 0:
			parts.append(tuple(cur))
			cur = []
			continue
		cur.append(tt)
	if cur:
		parts.append(tuple(cur))
	return parts


def _parse_fn(
	source: str,
	attrs: tuple[Attribute, ...],
	tts: Sequence[TokenTree],
	*,
	lead: str,
	original: str,
	path: str | None,
) -> FnItem:
	def fail(at: TokenTree, message: str) -> ParseError:
		return _error(source, at.start, "SOURCE_MALFORMED_FN", message, path)

	i = _skip_visibility(tts, 0)
	vis = span_text(source, tts[:i])
	quals: list[str] = []
	while not is_ident(tts[i], "fn"):
		quals.append(tts[i].text)  # type: ignore[union-attr]
		i += 1
	i += 1
	if i >= len(tts) or not is_ident(tts[i]):
		raise fail(tts[i - 1], "expected function name after `fn`")
	name = tts[i].text  # type: ignore[union-attr]
	i += 1
	generics = ""
	if i < len(tts) and is_punct(tts[i], "<"):
		end = _parse_generics_end(tts, i)
		generics = span_text(source, tts[i:end])
		i = end
	if i >= len(tts) or not is_group(tts[i], "("):
		raise fail(tts[min(i, len(tts) - 1)], f"expected parameter list for `{name}`")
	params = _parse_params(source, tts[i])  # type: ignore[arg-type]
	i += 1
	ret: str | None = None
	if i < len(tts) and is_punct(tts[i], "->"):
		start = i + 1
		while i < len(tts) and not is_ident(tts[i], "where") and not is_group(tts[i], "{"):
			i += 1
		if start == i:
			raise fail(tts[start - 1], f"expected return type for `{name}`")
		ret = span_text(source, tts[start:i])
	where: str | None = None
	if i < len(tts) and is_ident(tts[i], "where"):
		start = i
		while i < len(tts) and not is_group(tts[i], "{"):
			i += 1
		where = span_text(source, tts[start:i])
	if i != len(tts) - 1 or not is_group(tts[i], "{"):
		raise fail(tts[min(i, len(tts) - 1)], f"expected body for `{name}`")
	return FnItem(
		name=name,
		attrs=attrs,
		vis=vis,
		qualifiers=tuple(quals),
		generics=generics,
		params=params,
		ret=ret,
		where=where,
		body=span_text(source, tts[i : i + 1]),
		lead=lead,
		original=original,
	)


def parse_file(source: str, *, path: str | None = None) -> SourceFile:
	"""
	Parse a Rust source file into top-level items.

	Raises `ParseError` for lexically invalid text, unbalanced delimiters,
	attributes that are not followed by an item, unterminated items and
	function items whose signature cannot be recovered.
	"""
	tts = lex(source, path=path)
	items: list[AnyItem] = []
	prev_end = 0
	i = 0
	while i < len(tts):
		first = i
		attr = _attribute_at(source, tts, i)
		if attr is not None and attr[0].inner:
			a, i = attr
			start, end = tts[first].start, tts[i - 1].end
			items.append(Item(kind="inner_attr", attrs=(a,), tokens=tuple(tts[first:i]), text=a.text, lead=source[prev_end:start]))
			prev_end = end
			continue

		attrs: list[Attribute] = []
		while i < len(tts):
			attr = _attribute_at(source, tts, i)
			if attr is None or attr[0].inner:
				break
			attrs.append(attr[0])
			i = attr[1]
		if i >= len(tts):
			raise _error(source, tts[first].start, "SOURCE_DANGLING_ATTRIBUTE", "attribute is not followed by an item", path)

		kind = _item_kind(tts, i)
		end_idx = _item_end(tts, i, kind)
		if end_idx is None:
			raise _error(source, tts[i].start, "SOURCE_UNTERMINATED_ITEM", f"unterminated {kind} item", path)

		start, end = tts[first].start, tts[end_idx].end
		lead = source[prev_end:start]
		text = source[start:end]
		body = tuple(tts[i : end_idx + 1])
		if kind == "fn":
			items.append(_parse_fn(source, tuple(attrs), body, lead=lead, original=text, path=path))
		else:
			items.append(Item(kind=kind, attrs=tuple(attrs), tokens=body, text=text, lead=lead))
		prev_end = end
		i = end_idx + 1

	return SourceFile(source=source, items=tuple(items), trailing=source[prev_end:])
