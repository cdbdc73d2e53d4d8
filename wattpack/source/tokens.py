# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Token trees for Rust source text.

The lark grammar only knows about delimiters; this module turns its parse
tree into immutable `Leaf`/`Group` values that remember their byte offsets
in the original text, so unchanged code can always be copied verbatim.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence, Union

from lark import Lark, Token, Transformer
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from wattpack.errors import ParseError

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()


@dataclass(frozen=True)
class Leaf:
	kind: str  # IDENT | LIFETIME | LITERAL | PUNCT | DOC_COMMENT
	text: str
	start: int
	end: int


@dataclass(frozen=True)
class Group:
	delim: str  # "(" | "[" | "{"
	children: tuple["TokenTree", ...]
	start: int
	end: int


TokenTree = Union[Leaf, Group]


def _leaf(tok: Token, source: str) -> Leaf:
	return Leaf(kind=tok.type, text=source[tok.start_pos : tok.end_pos], start=tok.start_pos, end=tok.end_pos)


class _TokenTreeBuilder(Transformer):
	def __init__(self, source: str) -> None:
		super().__init__()
		# Leaf text comes from the caller's text, not the blanked copy lark saw.
		self.source = source

	def _children(self, items: list) -> tuple[TokenTree, ...]:
		return tuple(_leaf(c, self.source) if isinstance(c, Token) else c for c in items)

	def start(self, children: list) -> list[TokenTree]:
		return list(self._children(children))

	def _group(self, delim: str, children: list) -> Group:
		open_tok, close_tok = children[0], children[-1]
		return Group(
			delim=delim,
			children=self._children(children[1:-1]),
			start=open_tok.start_pos,
			end=close_tok.end_pos,
		)

	def paren(self, children: list) -> Group:
		return self._group("(", children)

	def bracket(self, children: list) -> Group:
		return self._group("[", children)

	def brace(self, children: list) -> Group:
		return self._group("{", children)


def _position(err: UnexpectedInput) -> tuple[int | None, int | None]:
	# lark reports "?" for positions it does not know (end of input).
	line = getattr(err, "line", None)
	column = getattr(err, "column", None)
	if not isinstance(line, int) or not isinstance(column, int):
		return None, None
	return line, column


_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	maybe_placeholders=False,
)


# Everything that can hide a `/*` or a quote. Words are consumed whole so a
# raw string prefix is only recognised at the start of a token.
_SCAN = re.compile(
	r"""
	(?P<line>//[^\n]*)
	| (?P<block>/\*)
	| (?P<raw>(?P<prefix>[bc]?r)\#*")
	| [bc]?"(?:[^"\\]|\\[\s\S])*"
	| b?'(?:[^'\\\n]|\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F_]+\}|.))'
	| '?[^\W\d]\w*
	""",
	re.VERBOSE,
)


def _blank(text: str) -> str:
	return "".join(c if c == "\n" else " " for c in text)


def _line_col(text: str, pos: int) -> tuple[int, int]:
	return text.count("\n", 0, pos) + 1, pos - text.rfind("\n", 0, pos)


def _block_comment_end(text: str, start: int) -> int | None:
	depth = 0
	i = start
	while i < len(text):
		pair = text[i : i + 2]
		if pair == "/*":
			depth += 1
			i += 2
		elif pair == "*/":
			depth -= 1
			i += 2
			if depth == 0:
				return i
		else:
			i += 1
	return None


def _flatten(text: str, *, path: str | None) -> str:
	"""
	Same-length copy of `text` with the inside of every block comment and raw
	string blanked out (newlines kept), leaving `/*  */` and `r"  "`.
	"""
	out: list[str] = []
	done = 0
	pos = 0
	while pos < len(text):
		m = _SCAN.match(text, pos)
		if m is None:
			pos += 1
			continue
		if m.group("block") is not None:
			end = _block_comment_end(text, pos)
			if end is None:
				line, column = _line_col(text, pos)
				raise ParseError(
					reason_code="SOURCE_UNTERMINATED_COMMENT",
					message="unterminated block comment",
					stage="source",
					path=path,
					line=line,
					column=column,
				)
			out += [text[done:pos], "/*", _blank(text[pos + 2 : end - 2]), "*/"]
			done = pos = end
		elif m.group("raw") is not None:
			hashes = m.end() - 1 - (pos + len(m.group("prefix")))
			close = text.find('"' + "#" * hashes, m.end())
			if close == -1:
				# lark reports the stray quote.
				pos = m.end()
				continue
			end = close + 1 + hashes
			body_start = pos + len(m.group("prefix"))
			out += [text[done:body_start], '"', _blank(text[body_start + 1 : end - 1]), '"']
			done = pos = end
		else:
			pos = m.end()
	out.append(text[done:])
	return "".join(out)


def lex(text: str, *, path: str | None = None) -> list[TokenTree]:
	"""
	Split `text` into top-level token trees.

	Raises `ParseError` for characters that start no Rust token (which also
	covers unterminated string literals), unterminated block comments and
	unbalanced delimiters.
	"""
	flat = _flatten(text, path=path)
	try:
		tree = _PARSER.parse(flat)
	except UnexpectedCharacters as err:
		raise ParseError(
			reason_code="SOURCE_UNEXPECTED_CHARACTER",
			message=f"unexpected character {text[err.pos_in_stream]!r}",
			stage="source",
			path=path,
			line=_position(err)[0],
			column=_position(err)[1],
		) from err
	except UnexpectedEOF as err:
		raise ParseError(
			reason_code="SOURCE_UNBALANCED",
			message="unexpected end of input (unclosed delimiter)",
			stage="source",
			path=path,
		) from err
	except UnexpectedToken as err:
		if err.token.type == "$END":
			message = "unexpected end of input (unclosed delimiter)"
		else:
			message = f"unexpected {str(err.token)!r} (unbalanced delimiter)"
		raise ParseError(
			reason_code="SOURCE_UNBALANCED",
			message=message,
			stage="source",
			path=path,
			line=_position(err)[0],
			column=_position(err)[1],
		) from err
	except UnexpectedInput as err:
		raise ParseError(
			reason_code="SOURCE_INVALID",
			message=str(err).splitlines()[0],
			stage="source",
			path=path,
			line=_position(err)[0],
			column=_position(err)[1],
		) from err
	return _TokenTreeBuilder(text).transform(tree)


def is_ident(tt: TokenTree | None, name: str | None = None) -> bool:
	if not isinstance(tt, Leaf) or tt.kind != "IDENT":
		return False
	return name is None or tt.text == name


def is_punct(tt: TokenTree | None, text: str) -> bool:
	return isinstance(tt, Leaf) and tt.kind == "PUNCT" and tt.text == text


def is_group(tt: TokenTree | None, delim: str) -> bool:
	return isinstance(tt, Group) and tt.delim == delim


def split_top_level(tts: Sequence[TokenTree], sep: str = ",") -> list[tuple[TokenTree, ...]]:
	"""
	Split on a punctuation separator that is not inside any group.

	A trailing separator does not produce an empty trailing part.
	"""
	parts: list[tuple[TokenTree, ...]] = []
	cur: list[TokenTree] = []
	for tt in tts:
		if is_punct(tt, sep):
			parts.append(tuple(cur))
			cur = []
			continue
		cur.append(tt)
	if cur:
		parts.append(tuple(cur))
	return parts


def iter_leaves(tts: Sequence[TokenTree]) -> Iterator[Leaf]:
	for tt in tts:
		if isinstance(tt, Group):
			yield from iter_leaves(tt.children)
		else:
			yield tt


def span_text(source: str, tts: Sequence[TokenTree]) -> str:
	"""Original source text covering `tts` (inner comments and spacing included)."""
	if not tts:
		return ""
	return source[tts[0].start : tts[-1].end]
