# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import pytest
import tomlkit

from wattpack.config import Toolchain
from wattpack.toolchain import ToolResult

DEMO_LIB = """\
extern crate proc_macro;

use proc_macro::TokenStream;

/// Expands to its input.
#[proc_macro]
pub fn identity(input: TokenStream) -> TokenStream {
    input
}

#[proc_macro_attribute]
pub fn traced(args: TokenStream, input: TokenStream) -> TokenStream {
    let _ = args;
    input
}
"""

DEMO_MANIFEST = """\
[package]
name = "demo-macros"
version = "0.1.0"
edition = "2018"

[lib]
proc-macro = true

[dependencies]
quote = "1.0"
syn = { version = "1.0", features = ["full"] }
"""


class FakeRunner:
	"""
	Stands in for cargo, wasm-strip, wasm-opt and git.

	`cargo build` writes `\\0asm` + sha256(library module) at the path cargo
	would use, so identical sources give identical modules and any source edit
	changes the bytes.
	"""

	def __init__(
		self,
		*,
		metadata: dict[str, Any] | None = None,
		fail: Callable[[tuple[str, ...]], bool] | None = None,
		produce_artifact: bool = True,
		clone_files: Mapping[str, str] | None = None,
	) -> None:
		self.metadata = metadata
		self.fail = fail
		self.produce_artifact = produce_artifact
		self.clone_files = dict(clone_files or {})
		self.calls: list[tuple[tuple[str, ...], Path, dict[str, str] | None]] = []
		# Working copy contents (Cargo.toml and every .rs file) at each `cargo build`.
		self.builds: list[dict[str, str]] = []

	def run(self, argv: Sequence[str], *, cwd: Path, env: Mapping[str, str] | None = None) -> ToolResult:
		args = tuple(argv)
		self.calls.append((args, Path(cwd), dict(env) if env is not None else None))
		if self.fail is not None and self.fail(args):
			return ToolResult(argv=args, returncode=101, stdout="", stderr="error: simulated failure")
		tool = Path(args[0]).name
		sub = args[1] if len(args) > 1 else ""
		if tool == "cargo" and sub == "build":
			self._cargo_build(args, Path(cwd))
		elif tool == "cargo" and sub == "metadata":
			return ToolResult(argv=args, returncode=0, stdout=json.dumps(self.metadata or {"packages": []}))
		elif tool == "wasm-strip":
			path = Path(args[1])
			path.write_bytes(path.read_bytes()[:-4])
		elif tool == "wasm-opt":
			src, dst = Path(args[2]), Path(args[args.index("-o") + 1])
			dst.write_bytes(src.read_bytes()[:-4])
		elif tool == "git" and sub == "clone":
			dest = Path(args[-1])
			for rel, text in self.clone_files.items():
				(dest / rel).parent.mkdir(parents=True, exist_ok=True)
				(dest / rel).write_text(text, encoding="utf-8")
		return ToolResult(argv=args, returncode=0)

	def _cargo_build(self, args: tuple[str, ...], cwd: Path) -> None:
		data = tomlkit.parse((cwd / "Cargo.toml").read_text(encoding="utf-8")).unwrap()
		name = data["package"]["name"]
		lib = cwd / data.get("lib", {}).get("path", "src/lib.rs")
		self.builds.append(
			{p.relative_to(cwd).as_posix(): p.read_text(encoding="utf-8") for p in [cwd / "Cargo.toml", *sorted(cwd.rglob("*.rs"))]}
		)
		target = args[args.index("--target") + 1]
		target_dir = Path(args[args.index("--target-dir") + 1])
		(cwd / "Cargo.lock").write_text("# regenerated by cargo\nversion = 3\n", encoding="utf-8")
		if not self.produce_artifact:
			return
		out = target_dir / target / "release" / f"{name.replace('-', '_')}.wasm"
		out.parent.mkdir(parents=True, exist_ok=True)
		out.write_bytes(b"\0asm" + hashlib.sha256(lib.read_bytes()).digest())

	def commands(self) -> list[tuple[str, ...]]:
		return [argv for argv, _, _ in self.calls]

	def calls_to(self, tool: str, sub: str | None = None) -> list[tuple[tuple[str, ...], Path, dict[str, str] | None]]:
		return [
			c
			for c in self.calls
			if Path(c[0][0]).name == tool and (sub is None or (len(c[0]) > 1 and c[0][1] == sub))
		]


def write_crate(root: Path, *, manifest: str = DEMO_MANIFEST, lib: str = DEMO_LIB, files: Mapping[str, str] | None = None) -> Path:
	root.mkdir(parents=True, exist_ok=True)
	(root / "Cargo.toml").write_text(manifest, encoding="utf-8")
	(root / "src").mkdir(exist_ok=True)
	(root / "src" / "lib.rs").write_text(lib, encoding="utf-8")
	for rel, text in (files or {}).items():
		(root / rel).parent.mkdir(parents=True, exist_ok=True)
		(root / rel).write_text(text, encoding="utf-8")
	return root


@pytest.fixture
def runner() -> FakeRunner:
	return FakeRunner()


@pytest.fixture
def make_runner() -> Callable[..., FakeRunner]:
	return FakeRunner


@pytest.fixture
def toolchain() -> Toolchain:
	return Toolchain(cargo_home=Path("/home/builder/.cargo"))


@pytest.fixture
def which_all() -> Callable[[str], str | None]:
	return lambda name: f"/usr/bin/{name}"


@pytest.fixture
def demo_crate(tmp_path: Path) -> Path:
	return write_crate(tmp_path / "demo-macros", files={"README.md": "# demo\n", "src/util.rs": "use proc_macro::Span;\n"})


@pytest.fixture
def crate_writer() -> Callable[..., Path]:
	return write_crate


@pytest.fixture
def demo_files() -> dict[str, str]:
	return {"Cargo.toml": DEMO_MANIFEST, "src/lib.rs": DEMO_LIB}
