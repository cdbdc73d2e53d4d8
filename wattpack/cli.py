# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import json
import logging
import shutil
from pathlib import Path
from typing import Callable

from wattpack.build import BuildOptions, build
from wattpack.config import CompilationOptions, Toolchain
from wattpack.errors import WattError
from wattpack.inputs import Input, materialize, parse_crate_spec, parse_git_url
from wattpack.patch import PatchOptions, patch_workspace
from wattpack.toolchain import SubprocessRunner, ToolRunner
from wattpack.verify import VerifyOptions, verify

logger = logging.getLogger(__name__)


def _add_compilation_flags(p: argparse.ArgumentParser) -> None:
	p.add_argument("--strip", action="store_true", help="Run wasm-strip on the compiled module")
	p.add_argument("--optimize", action="store_true", help="Run wasm-opt -Oz on the compiled module")
	p.add_argument(
		"--compress",
		action="store_true",
		help="Embed the module DEFLATE-compressed and decompress it lazily at expansion time",
	)


def _add_input_flags(p: argparse.ArgumentParser) -> None:
	p.add_argument("path", type=Path, nargs="?", default=Path("."), help="Crate directory (default: .)")
	remote = p.add_mutually_exclusive_group()
	remote.add_argument("--crate", metavar="NAME[@VERSION]", default=None, help="Fetch the crate from crates.io")
	remote.add_argument("--git", metavar="git+URL[@REF][#subdirectory=PATH]", default=None, help="Clone the crate from git")


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="wattpack", description="Precompile procedural macro crates to WebAssembly (watt)")
	verbosity = p.add_mutually_exclusive_group()
	verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug output, including tool output")
	verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
	sub = p.add_subparsers(dest="cmd", required=True)

	b = sub.add_parser("build", help="Compile a proc-macro crate to wasm and generate a <name>-watt crate")
	_add_input_flags(b)
	b.add_argument("--output", type=Path, default=Path("."), help="Directory to create <name>-watt in (default: .)")
	b.add_argument("--overwrite", action="store_true", help="Replace an existing <name>-watt directory")
	b.add_argument(
		"--only-copy-essential",
		action="store_true",
		help="Only write Cargo.toml, src/lib.rs and the module (skip README, LICENSE, ...)",
	)
	b.add_argument("--json", action="store_true", help="Emit a machine-readable JSON report")
	_add_compilation_flags(b)

	v = sub.add_parser("verify", help="Rebuild a crate and compare it with a published .wasm file")
	v.add_argument("artifact", type=Path, help="Path to the .wasm file to check")
	_add_input_flags(v)
	v.add_argument("--json", action="store_true", help="Emit a machine-readable JSON report")
	_add_compilation_flags(v)

	pt = sub.add_parser("patch", help="Rebuild all proc-macro dependencies of a workspace and redirect to them")
	pt.add_argument("workspace", type=Path, nargs="?", default=Path("."), help="Workspace directory (default: .)")
	pt.add_argument("--json", action="store_true", help="Emit a machine-readable JSON report")
	_add_compilation_flags(pt)
	return p


def _configure_logging(args: argparse.Namespace) -> None:
	level = logging.INFO
	if args.verbose:
		level = logging.DEBUG
	elif args.quiet:
		level = logging.WARNING
	logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
	logging.getLogger("wattpack").setLevel(level)


def _compilation(args: argparse.Namespace) -> CompilationOptions:
	return CompilationOptions(strip=bool(args.strip), optimize=bool(args.optimize), compress=bool(args.compress))


def _input(args: argparse.Namespace) -> Input:
	if args.crate:
		return Input(crate=parse_crate_spec(args.crate))
	if args.git:
		return Input(git=parse_git_url(args.git))
	return Input(path=args.path)


def _emit(report: dict, *, as_json: bool) -> None:
	if as_json:
		print(json.dumps(report, sort_keys=True, separators=(",", ":")))


def main(
	argv: list[str] | None = None,
	*,
	runner: ToolRunner | None = None,
	toolchain: Toolchain | None = None,
	which: Callable[[str], str | None] = shutil.which,
) -> int:
	p = _build_parser()
	args = p.parse_args(argv)
	_configure_logging(args)

	toolchain = toolchain or Toolchain.from_env()
	runner = runner or SubprocessRunner()
	compilation = _compilation(args)

	try:
		if args.cmd == "build":
			inp = _input(args)
			with materialize(inp, toolchain=toolchain, runner=runner) as package_dir:
				opts = BuildOptions(
					package_dir=package_dir,
					compilation=compilation,
					output_root=args.output,
					overwrite=bool(args.overwrite),
					only_copy_essential=bool(args.only_copy_essential),
				)
				report = build(opts, toolchain=toolchain, runner=runner, which=which)
			_emit(report.to_dict(), as_json=args.json)
			return 0

		if args.cmd == "verify":
			inp = _input(args)
			with materialize(inp, toolchain=toolchain, runner=runner) as package_dir:
				opts = VerifyOptions(package_dir=package_dir, artifact_path=args.artifact, compilation=compilation)
				report = verify(opts, toolchain=toolchain, runner=runner, which=which)
			if not args.json:
				print(f"{report.artifact_path.name}: reproduced from {inp.describe()} (sha256 {report.sha256})")
			_emit(report.to_dict(), as_json=args.json)
			return 0

		if args.cmd == "patch":
			opts = PatchOptions(workspace_dir=args.workspace, compilation=compilation)
			report = patch_workspace(opts, toolchain=toolchain, runner=runner, which=which)
			_emit(report.to_dict(), as_json=args.json)
			return 0
	except WattError as err:
		if getattr(args, "json", False):
			print(json.dumps({"ok": False, "error": err.to_dict()}, sort_keys=True, separators=(",", ":")))
		logger.error("%s", err.format_human())
		return 1

	raise AssertionError("unreachable")
