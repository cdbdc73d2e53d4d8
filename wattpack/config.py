# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Explicit configuration for the pipeline.

The environment is read in one place, `Toolchain.from_env`. The CLI calls it
once and passes the result down with the per-command options; the library
entry points (`build`, `verify`, `patch_workspace`) call it when the caller
passes no toolchain.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

WASM_TARGET = "wasm32-unknown-unknown"
WASM_EXTENSION = ".wasm"
DEFLATE_EXTENSION = ".wasm.deflate"
HOST_SUFFIX = "watt"
PATCH_DIR = ".watt-patched"


@dataclass(frozen=True)
class CompilationOptions:
	strip: bool = False
	optimize: bool = False
	compress: bool = False


@dataclass(frozen=True)
class Toolchain:
	cargo: str = "cargo"
	wasm_strip: str = "wasm-strip"
	wasm_opt: str = "wasm-opt"
	git: str = "git"
	target: str = WASM_TARGET
	target_dir: Path | None = None  # default: <working copy>/target
	cargo_home: Path | None = None
	rustflags: str = ""  # the user's RUSTFLAGS; path remapping is appended

	@classmethod
	def from_env(cls, env: Mapping[str, str] | None = None) -> "Toolchain":
		env = os.environ if env is None else env
		target_dir = env.get("CARGO_TARGET_DIR")
		cargo_home = env.get("CARGO_HOME")
		if not cargo_home:
			cargo_home = str(Path.home() / ".cargo")
		return cls(
			cargo=env.get("CARGO") or "cargo",
			wasm_strip=env.get("WASM_STRIP") or "wasm-strip",
			wasm_opt=env.get("WASM_OPT") or "wasm-opt",
			git=env.get("GIT") or "git",
			target_dir=Path(target_dir) if target_dir else None,
			cargo_home=Path(cargo_home),
			rustflags=env.get("RUSTFLAGS") or "",
		)
