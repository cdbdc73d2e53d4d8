# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Manifest rewrites for the three manifests a build produces.

- `to_bytecode_target`: the crate as a wasm shared library depending only on
  the dispatch runtime.
- `to_compile_target`: the working copy that cargo actually compiles; it keeps
  the original dependencies and redirects `proc-macro2`/`syn` to their
  wasm-capable forks, and it fills in size-oriented `[profile.release]`
  settings.
- `to_host_manifest`: the generated host crate, i.e. `to_bytecode_target`
  with the library kept a proc macro.

Every function returns a new `Manifest`; the argument is never mutated.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import tomlkit
from tomlkit.items import Table

from wattpack.manifest import PLUGIN_FLAGS, Manifest, dependency, implicit_table

logger = logging.getLogger(__name__)

RUNTIME_DEPENDENCY = ("watt", "0.4")
HACK_DEPENDENCY = "proc-macro-hack"
COMPRESSION_DEPENDENCIES = (("miniz_oxide", "0.3"), ("once_cell", "1.4"))
PORTABLE_DEPENDENCY = ("proc-macro2", "1.0")
REDIRECT_TABLE = ("patch", "crates-io")
# Forks of the token-stream crates that run inside the watt interpreter.
WASM_REDIRECTS = (
	("proc-macro2", "https://github.com/dtolnay/watt"),
	("syn", "https://github.com/jakobhellermann/syn-watt"),
)
# Size-oriented release settings for the wasm build; values the crate sets win.
RELEASE_PROFILE = (("opt-level", "s"), ("lto", True))


def _set(container: Any, key: str, value: Any) -> None:
	# Replacing in place keeps the table where it was in the file.
	if key in container:
		container[key] = value
	else:
		container.add(key, value)


def _plain_dependency(spec: Any) -> Any:
	if isinstance(spec, dict):
		table = tomlkit.inline_table()
		table.update(spec)
		return table
	return spec


def _retarget_library(manifest: Manifest) -> None:
	lib = implicit_table(manifest, "lib")
	for flag in PLUGIN_FLAGS:
		if flag in lib:
			del lib[flag]
	crate_type = tomlkit.array()
	crate_type.append("cdylib")
	lib["crate-type"] = crate_type


def _replace_dependencies(manifest: Manifest, *, compress: bool) -> None:
	old = manifest.data().get("dependencies")
	old = old if isinstance(old, dict) else {}
	deps: Table = tomlkit.table()
	name, version = RUNTIME_DEPENDENCY
	deps[name] = version
	if HACK_DEPENDENCY in old:
		deps[HACK_DEPENDENCY] = _plain_dependency(old[HACK_DEPENDENCY])
	if compress:
		for name, version in COMPRESSION_DEPENDENCIES:
			deps[name] = version
	_set(manifest.doc, "dependencies", deps)


def _neutralize_features(manifest: Manifest) -> None:
	features = manifest.doc.get("features")
	if features is None:
		return
	logger.warning(
		"%s declares features; they are kept as no-ops because the wasm build enables everything",
		manifest.name or "package",
	)
	for key in list(features.keys()):
		features[key] = tomlkit.array()


def to_bytecode_target(manifest: Manifest, *, compress: bool) -> Manifest:
	out = manifest.copy()
	_retarget_library(out)
	_replace_dependencies(out, compress=compress)
	_neutralize_features(out)
	return out


def to_compile_target(manifest: Manifest) -> Manifest:
	out = manifest.copy()
	_retarget_library(out)
	deps = implicit_table(out, "dependencies")
	name, version = PORTABLE_DEPENDENCY
	if name not in deps:
		deps[name] = version
	redirects = implicit_table(out, *REDIRECT_TABLE)
	for crate, url in WASM_REDIRECTS:
		redirects[crate] = dependency("git", url)
	profile = implicit_table(out, "profile", "release")
	for key, value in RELEASE_PROFILE:
		if key not in profile:
			profile[key] = value
	return out


def to_host_manifest(manifest: Manifest, *, compress: bool) -> Manifest:
	"""
	`to_bytecode_target` with the library switched back to a proc macro: the
	host crate has the same runtime dependencies but is itself the plugin.
	"""
	lib = manifest.data().get("lib") or {}
	flag = next((f for f in PLUGIN_FLAGS if f in lib), PLUGIN_FLAGS[0])
	out = to_bytecode_target(manifest, compress=compress)
	doc = out.doc
	target = doc["lib"]
	del target["crate-type"]
	target[flag] = True
	if "path" in target:
		del target["path"]
	if "build-dependencies" in doc:
		del doc["build-dependencies"]
	package = doc.get("package")
	if package is not None and "build" in package:
		del package["build"]
	return out


def add_redirects(manifest: Manifest, redirects: Mapping[str, str]) -> Manifest:
	"""Point each crate name in `redirects` at a local path in `[patch.crates-io]`."""
	out = manifest.copy()
	if not redirects:
		return out
	table = implicit_table(out, *REDIRECT_TABLE)
	for crate, path in redirects.items():
		table[crate] = dependency("path", path)
	return out
