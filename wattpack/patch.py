# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Rebuild every procedural macro dependency of a workspace as a watt crate and
redirect the workspace to the rebuilt copies via `[patch.crates-io]`.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from wattpack import manifest as manifest_mod
from wattpack.build import BuildOptions, build
from wattpack.config import PATCH_DIR, CompilationOptions, Toolchain
from wattpack.errors import ParseError, ValidationError
from wattpack.manifest_rewrite import add_redirects
from wattpack.toolchain import SubprocessRunner, ToolRunner, require_tools, run_tool

logger = logging.getLogger(__name__)

MACRO_TARGET_KIND = "proc-macro"


@dataclass(frozen=True)
class PatchOptions:
	workspace_dir: Path
	compilation: CompilationOptions = field(default_factory=CompilationOptions)


@dataclass(frozen=True)
class DependencyNode:
	name: str
	version: str
	package_id: str
	manifest_path: Path
	is_macro_package: bool


@dataclass(frozen=True)
class PatchReport:
	patched: tuple[str, ...]
	crate_paths: tuple[Path, ...] = ()

	def to_dict(self) -> dict[str, Any]:
		return {"patched": list(self.patched), "crate_paths": [str(p) for p in self.crate_paths]}


def _node(raw: dict[str, Any]) -> DependencyNode:
	targets = raw.get("targets") or []
	is_macro = any(MACRO_TARGET_KIND in (t.get("kind") or []) for t in targets if isinstance(t, dict))
	return DependencyNode(
		name=str(raw["name"]),
		version=str(raw["version"]),
		package_id=str(raw["id"]),
		manifest_path=Path(str(raw["manifest_path"])),
		is_macro_package=is_macro,
	)


def parse_metadata(text: str, *, path: str | None = None) -> list[DependencyNode]:
	"""
	Dependency nodes from `cargo metadata --format-version 1` output, with the
	workspace's own members left out.
	"""
	try:
		data = json.loads(text)
		members = set(data.get("workspace_members") or [])
		return [_node(raw) for raw in data["packages"] if raw.get("id") not in members]
	except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as err:
		raise ParseError(
			reason_code="METADATA_INVALID",
			message=f"unexpected cargo metadata output: {err}",
			stage="patch",
			path=path,
		) from err


def load_dependency_graph(workspace_dir: Path, *, toolchain: Toolchain, runner: ToolRunner) -> list[DependencyNode]:
	res = run_tool(
		runner,
		[toolchain.cargo, "metadata", "--format-version", "1", "--all-features"],
		cwd=workspace_dir,
		stage="patch",
	)
	return parse_metadata(res.stdout, path=str(workspace_dir))


def macro_dependencies(nodes: list[DependencyNode]) -> list[DependencyNode]:
	"""Macro packages in graph order, each (name, version) once."""
	seen: dict[tuple[str, str], DependencyNode] = {}
	for node in nodes:
		if node.is_macro_package:
			seen.setdefault((node.name, node.version), node)
	unique = list(seen.values())
	by_name: dict[str, list[str]] = {}
	for node in unique:
		by_name.setdefault(node.name, []).append(node.version)
	ambiguous = sorted(name for name, versions in by_name.items() if len(versions) > 1)
	if ambiguous:
		detail = "; ".join(f"{name} ({', '.join(by_name[name])})" for name in ambiguous)
		raise ValidationError(
			reason_code="AMBIGUOUS_REDIRECT",
			message=f"several versions of one macro package cannot share a redirect: {detail}",
			stage="patch",
		)
	return unique


def patch_workspace(
	opts: PatchOptions,
	*,
	toolchain: Toolchain | None = None,
	runner: ToolRunner | None = None,
	which: Callable[[str], str | None] = shutil.which,
) -> PatchReport:
	toolchain = toolchain or Toolchain.from_env()
	runner = runner or SubprocessRunner()
	require_tools(toolchain, opts.compilation, which=which)

	ws = opts.workspace_dir
	deps = macro_dependencies(load_dependency_graph(ws, toolchain=toolchain, runner=runner))
	if not deps:
		logger.info("no procedural macro dependencies in %s", ws)
		return PatchReport(patched=())

	patched: list[str] = []
	crate_paths: list[Path] = []
	# Sequential; a failure leaves the crates built so far in place.
	for node in deps:
		logger.info("patching %s %s", node.name, node.version)
		report = build(
			BuildOptions(
				package_dir=node.manifest_path.parent,
				compilation=opts.compilation,
				crate_path=ws / PATCH_DIR / node.name,
				overwrite=True,
				only_copy_essential=True,
			),
			toolchain=toolchain,
			runner=runner,
			which=which,
		)
		patched.append(node.name)
		crate_paths.append(report.crate_path)

	manifest = manifest_mod.load(ws / "Cargo.toml")
	redirects = {name: f"./{PATCH_DIR}/{name}" for name in patched}
	manifest_mod.write(add_redirects(manifest, redirects))
	logger.info("redirected %d crate(s) to %s", len(patched), ws / PATCH_DIR)
	return PatchReport(patched=tuple(patched), crate_paths=tuple(crate_paths))
