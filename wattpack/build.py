# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Build orchestrator: proc-macro crate -> wasm module -> watt host crate.

The caller's package directory is never modified. All rewriting happens in a
temporary working copy, and the host crate is assembled in a staging
directory that is renamed into place only after every step has succeeded.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from wattpack import manifest as manifest_mod
from wattpack.config import HOST_SUFFIX, CompilationOptions, Toolchain
from wattpack.errors import ArtifactNotFound, BuildError, ValidationError
from wattpack.manifest import Manifest, normalize_name
from wattpack.manifest_rewrite import to_compile_target, to_host_manifest
from wattpack.source import EntryPoint, artifact_file_name, render_host_module, rewrite_crate_paths, transform
from wattpack.toolchain import SubprocessRunner, ToolRunner, require_tools, run_tool

logger = logging.getLogger(__name__)

MANIFEST_NAME = "Cargo.toml"
LOCKFILE_NAME = "Cargo.lock"
HOST_LOCKFILE_NAME = "Cargo.watt.lock"
# Never copied into a working copy or a host crate.
_ALWAYS_SKIPPED = {"target", ".git"}


@dataclass(frozen=True)
class BuildOptions:
	package_dir: Path
	compilation: CompilationOptions = field(default_factory=CompilationOptions)
	output_root: Path = Path(".")
	crate_path: Path | None = None  # exact output directory; default <output_root>/<name>-watt
	overwrite: bool = False
	only_copy_essential: bool = False


@dataclass(frozen=True)
class CompiledPackage:
	name: str
	entry_points: tuple[EntryPoint, ...]
	wasm: bytes
	lockfile: bytes | None = None


@dataclass(frozen=True)
class BuildReport:
	package: str
	crate_path: Path
	entry_points: tuple[EntryPoint, ...]
	artifact_size: int
	embedded_size: int

	def to_dict(self) -> dict[str, Any]:
		return {
			"package": self.package,
			"crate_path": str(self.crate_path),
			"entry_points": [{"name": ep.name, "kind": ep.kind.value} for ep in self.entry_points],
			"artifact_size": self.artifact_size,
			"embedded_size": self.embedded_size,
		}


def host_crate_path(name: str, output_root: Path) -> Path:
	return output_root / f"{name}-{HOST_SUFFIX}"


def artifact_path(target_dir: Path, target: str, name: str) -> Path:
	"""Where cargo puts the release cdylib for crate `name`."""
	return target_dir / target / "release" / f"{normalize_name(name)}.wasm"


def compress_artifact(wasm: bytes) -> bytes:
	"""Raw DEFLATE stream (no zlib header), as `miniz_oxide::inflate::decompress_to_vec` expects."""
	comp = zlib.compressobj(level=9, wbits=-15)
	return comp.compress(wasm) + comp.flush()


def _copy_tree(src: Path, dst: Path, *, skip: set[str]) -> None:
	"""Copy `src` to `dst`, leaving out symlinks and the top-level entries in `skip`."""

	def ignore(directory: str, names: list[str]) -> list[str]:
		top = Path(directory) == src
		return [n for n in names if (top and n in skip) or (Path(directory) / n).is_symlink()]

	shutil.copytree(src, dst, symlinks=False, ignore=ignore)


def _load_validated(package_dir: Path) -> Manifest:
	manifest = manifest_mod.load(package_dir / MANIFEST_NAME)
	manifest_mod.validate(manifest)
	return manifest


def _rust_sources(work: Path, lib: Path) -> list[Path]:
	files = sorted(p for p in (work / "src").rglob("*.rs") if p.is_file()) if (work / "src").is_dir() else []
	if lib not in files:
		files.append(lib)
	return files


def prepare_working_copy(package_dir: Path, manifest: Manifest, work: Path) -> tuple[EntryPoint, ...]:
	"""
	Copy the package to `work` and rewrite it for the wasm target.

	Returns the entry points found in the library module.
	"""
	name = manifest.name or ""
	_copy_tree(package_dir, work, skip=_ALWAYS_SKIPPED)
	manifest_mod.write(to_compile_target(manifest), work / MANIFEST_NAME)

	lib = work / manifest.lib_path
	if not lib.is_file():
		raise ValidationError(
			reason_code="LIB_NOT_FOUND",
			message=f"library module {manifest.lib_path} does not exist",
			package=name,
			stage="source",
			path=str(package_dir / manifest.lib_path),
		)
	result = transform(lib.read_text(encoding="utf-8"), path=str(package_dir / manifest.lib_path))
	lib.write_text(result.source, encoding="utf-8")

	for rs in _rust_sources(work, lib):
		text = rs.read_text(encoding="utf-8")
		rewritten = rewrite_crate_paths(text, path=str(rs))
		if rewritten != text:
			rs.write_text(rewritten, encoding="utf-8")

	lock = work / LOCKFILE_NAME
	if lock.exists():
		lock.unlink()
	return result.entry_points


def _rustflags(toolchain: Toolchain, work: Path, name: str) -> str:
	flags = toolchain.rustflags.split()
	flags.append(f"--remap-path-prefix={work}=/{name}")
	if toolchain.cargo_home is not None:
		flags.append(f"--remap-path-prefix={toolchain.cargo_home}=/cargo")
	return " ".join(flags)


def compile_package(
	package_dir: Path,
	manifest: Manifest,
	compilation: CompilationOptions,
	*,
	toolchain: Toolchain,
	runner: ToolRunner,
) -> CompiledPackage:
	"""
	Compile a validated proc-macro package to wasm and return the final bytes.

	Tool availability is the caller's concern (`require_tools`).
	"""
	name = manifest.name or ""
	with tempfile.TemporaryDirectory(prefix="wattpack-") as tmp:
		work = Path(tmp) / name
		entry_points = prepare_working_copy(package_dir, manifest, work)
		if not entry_points:
			logger.warning("%s: no procedural macro entry points found", name)

		target_dir = toolchain.target_dir or (work / "target")
		argv = [
			toolchain.cargo,
			"build",
			"--release",
			"--target",
			toolchain.target,
			"--target-dir",
			str(target_dir),
		]
		logger.info("compiling %s for %s", name, toolchain.target)
		started = time.monotonic()
		run_tool(
			runner,
			argv,
			cwd=work,
			env={"RUSTFLAGS": _rustflags(toolchain, work, name)},
			package=name,
			stage="compile",
		)
		logger.info("finished %s in %.1fs", name, time.monotonic() - started)

		wasm_file = artifact_path(target_dir, toolchain.target, name)
		if not wasm_file.is_file():
			raise ArtifactNotFound(
				reason_code="ARTIFACT_NOT_FOUND",
				message=f"cargo succeeded but {wasm_file.name} was not produced",
				package=name,
				stage="compile",
				path=str(wasm_file),
			)
		if compilation.strip:
			run_tool(runner, [toolchain.wasm_strip, str(wasm_file)], cwd=work, package=name, stage="strip")
		if compilation.optimize:
			run_tool(
				runner,
				[toolchain.wasm_opt, "-Oz", str(wasm_file), "-o", str(wasm_file)],
				cwd=work,
				package=name,
				stage="optimize",
			)

		wasm = wasm_file.read_bytes()
		lock = work / LOCKFILE_NAME
		lockfile = lock.read_bytes() if lock.is_file() else None
	logger.info("%s: %d entry point(s), %dkb of wasm", name, len(entry_points), len(wasm) // 1024)
	return CompiledPackage(name=name, entry_points=entry_points, wasm=wasm, lockfile=lockfile)


def create_host_package(
	package_dir: Path,
	manifest: Manifest,
	compiled: CompiledPackage,
	crate_path: Path,
	*,
	compress: bool,
	only_copy_essential: bool,
) -> int:
	"""
	Write the watt host crate to `crate_path` (which must not exist).

	Returns the size of the embedded artifact.
	"""
	norm = normalize_name(compiled.name)
	staging = crate_path.with_name(f".{crate_path.name}.partial")
	if staging.exists():
		shutil.rmtree(staging)
	crate_path.parent.mkdir(parents=True, exist_ok=True)

	if only_copy_essential:
		staging.mkdir()
	else:
		# The output may live inside the package directory (`wattpack build .`).
		skip = _ALWAYS_SKIPPED | {"src", LOCKFILE_NAME, staging.name, crate_path.name}
		_copy_tree(package_dir, staging, skip=skip)

	src = staging / "src"
	src.mkdir(exist_ok=True)
	embedded = compress_artifact(compiled.wasm) if compress else compiled.wasm
	(src / artifact_file_name(norm, compress=compress)).write_bytes(embedded)
	(src / "lib.rs").write_text(render_host_module(norm, compiled.entry_points, compress=compress), encoding="utf-8")
	manifest_mod.write(to_host_manifest(manifest, compress=compress), staging / MANIFEST_NAME)
	if compiled.lockfile is not None:
		(staging / HOST_LOCKFILE_NAME).write_bytes(compiled.lockfile)

	os.replace(staging, crate_path)
	return len(embedded)


def _format_host(crate_path: Path, name: str, *, toolchain: Toolchain, runner: ToolRunner) -> None:
	try:
		run_tool(runner, [toolchain.cargo, "fmt"], cwd=crate_path, package=name, stage="host")
	except BuildError as err:
		logger.warning("failed to format %s: %s", crate_path, err.message)


def build(
	opts: BuildOptions,
	*,
	toolchain: Toolchain | None = None,
	runner: ToolRunner | None = None,
	which: Callable[[str], str | None] = shutil.which,
) -> BuildReport:
	toolchain = toolchain or Toolchain.from_env()
	runner = runner or SubprocessRunner()
	require_tools(toolchain, opts.compilation, which=which)

	manifest = _load_validated(opts.package_dir)
	name = manifest.name or ""
	crate_path = opts.crate_path or host_crate_path(name, opts.output_root)
	if crate_path.exists():
		if not opts.overwrite:
			raise ValidationError(
				reason_code="OUTPUT_EXISTS",
				message=f"'{crate_path}' already exists; use --overwrite to replace it",
				package=name,
				stage="host",
				path=str(crate_path),
			)
		shutil.rmtree(crate_path)

	compiled = compile_package(opts.package_dir, manifest, opts.compilation, toolchain=toolchain, runner=runner)
	embedded_size = create_host_package(
		opts.package_dir,
		manifest,
		compiled,
		crate_path,
		compress=opts.compilation.compress,
		only_copy_essential=opts.only_copy_essential,
	)
	logger.info("generated crate in %s", crate_path)
	_format_host(crate_path, name, toolchain=toolchain, runner=runner)

	return BuildReport(
		package=name,
		crate_path=crate_path,
		entry_points=compiled.entry_points,
		artifact_size=len(compiled.wasm),
		embedded_size=embedded_size,
	)
