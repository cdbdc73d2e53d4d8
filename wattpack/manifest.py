# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Cargo.toml model.

Documents are tomlkit documents, so a manifest that is loaded and written
back without edits is byte-identical, and edits leave unrelated formatting
and comments alone.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import ParseError as TomlParseError
from tomlkit.items import InlineTable, Table
from tomlkit.toml_document import TOMLDocument

from wattpack.errors import ParseError, ValidationError

PLUGIN_FLAGS = ("proc-macro", "proc_macro")
RUNTIME_DEPENDENCY = "watt"
# Crates that rely on compiler internals with no wasm equivalent.
UNSUPPORTED_DEPENDENCIES = ("proc-macro-error", "proc-macro-nested")
DEFAULT_LIB_PATH = "src/lib.rs"


@dataclass(frozen=True)
class Manifest:
	doc: TOMLDocument
	path: Path | None = None

	def data(self) -> dict[str, Any]:
		"""Plain-Python view of the document (no formatting information)."""
		return self.doc.unwrap()

	@property
	def name(self) -> str | None:
		pkg = self.data().get("package")
		if not isinstance(pkg, dict):
			return None
		name = pkg.get("name")
		return name if isinstance(name, str) else None

	@property
	def normalized_name(self) -> str | None:
		return normalize_name(self.name) if self.name else None

	@property
	def edition(self) -> str:
		pkg = self.data().get("package") or {}
		edition = pkg.get("edition") if isinstance(pkg, dict) else None
		return edition if isinstance(edition, str) else "2015"

	@property
	def is_macro_package(self) -> bool:
		lib = self.data().get("lib")
		if not isinstance(lib, dict):
			return False
		return any(lib.get(flag) is True for flag in PLUGIN_FLAGS)

	@property
	def lib_path(self) -> str:
		lib = self.data().get("lib")
		if isinstance(lib, dict) and isinstance(lib.get("path"), str):
			return lib["path"]
		return DEFAULT_LIB_PATH

	def dependency_names(self) -> dict[str, str]:
		"""
		Declared dependency key -> crate name (these differ for renamed
		dependencies: `foo = { package = "bar" }`).
		"""
		deps = self.data().get("dependencies")
		if not isinstance(deps, dict):
			return {}
		out: dict[str, str] = {}
		for key, spec in deps.items():
			crate = spec.get("package") if isinstance(spec, dict) else None
			out[key] = crate if isinstance(crate, str) else key
		return out

	def dumps(self) -> str:
		return tomlkit.dumps(self.doc)

	def copy(self) -> "Manifest":
		return Manifest(doc=tomlkit.parse(self.dumps()), path=self.path)


def normalize_name(name: str) -> str:
	"""Crate name as it appears in artifact file names."""
	return name.replace("-", "_")


def parse(text: str, *, path: Path | None = None) -> Manifest:
	try:
		doc = tomlkit.parse(text)
	except TomlParseError as err:
		raise ParseError(
			reason_code="MANIFEST_INVALID_TOML",
			message=str(err),
			stage="manifest",
			path=str(path) if path is not None else None,
			line=getattr(err, "line", None),
			column=getattr(err, "col", None),
		) from err
	return Manifest(doc=doc, path=path)


def load(path: Path) -> Manifest:
	try:
		text = path.read_text(encoding="utf-8")
	except OSError as err:
		raise ValidationError(
			reason_code="MANIFEST_UNREADABLE",
			message=f"failed to read {path.name}: {err}",
			stage="manifest",
			path=str(path),
		) from err
	return parse(text, path=path)


def write(manifest: Manifest, path: Path | None = None) -> None:
	target = path or manifest.path
	if target is None:
		raise ValueError("manifest has no path to write to")
	tmp = target.with_name(target.name + f".tmp.{os.getpid()}")
	tmp.write_text(manifest.dumps(), encoding="utf-8")
	os.replace(tmp, target)


def validate(manifest: Manifest) -> None:
	"""
	Check that the manifest describes a proc-macro crate that can be rebuilt
	for wasm. The first unmet condition is reported.
	"""
	where = str(manifest.path) if manifest.path is not None else None
	data = manifest.data()
	if not isinstance(data.get("package"), dict):
		raise ValidationError(reason_code="NO_PACKAGE", message="Cargo.toml has no [package]", stage="manifest", path=where)
	name = manifest.name
	if not name:
		raise ValidationError(reason_code="NO_NAME", message="Cargo.toml has no package.name", stage="manifest", path=where)
	if not manifest.is_macro_package:
		raise ValidationError(
			reason_code="NOT_PROC_MACRO",
			message="crate is not a proc macro ([lib] proc-macro = true is missing)",
			package=name,
			stage="manifest",
			path=where,
		)
	crates = manifest.dependency_names()
	if RUNTIME_DEPENDENCY in crates.values():
		raise ValidationError(
			reason_code="ALREADY_TRANSFORMED",
			message=f"crate already depends on `{RUNTIME_DEPENDENCY}`",
			package=name,
			stage="manifest",
			path=where,
		)
	unsupported = sorted(set(crates.values()) & set(UNSUPPORTED_DEPENDENCIES))
	if unsupported:
		raise ValidationError(
			reason_code="UNSUPPORTED_DEPENDENCY",
			message=f"dependencies cannot run inside wasm: {', '.join(unsupported)}",
			package=name,
			stage="manifest",
			path=where,
		)


def implicit_table(manifest: Manifest, *keys: str) -> Table:
	"""
	The table at `keys`, created when missing. Intermediate tables are created
	as super tables so only the innermost header (e.g. `[patch.crates-io]`)
	is written.
	"""
	container: Any = manifest.doc
	for depth, key in enumerate(keys):
		if key not in container:
			last = depth == len(keys) - 1
			container[key] = tomlkit.table() if last else tomlkit.table(is_super_table=True)
		container = container[key]
	return container


def dependency(kind: str, value: str) -> InlineTable:
	table = tomlkit.inline_table()
	table[kind] = value
	return table
