# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
External tool invocation.

Every external process (cargo, wasm-strip, wasm-opt, git) goes through a
`ToolRunner` so the pipeline can be exercised without a Rust toolchain.
Invocations block until the process exits; there is no timeout, so a hung
tool hangs the command.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from wattpack.config import CompilationOptions, Toolchain
from wattpack.errors import BuildError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
	argv: tuple[str, ...]
	returncode: int
	stdout: str = ""
	stderr: str = ""

	@property
	def ok(self) -> bool:
		return self.returncode == 0

	def combined_output(self) -> str:
		return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class ToolRunner(Protocol):
	def run(self, argv: Sequence[str], *, cwd: Path, env: Mapping[str, str] | None = None) -> ToolResult:
		...


class SubprocessRunner:
	"""Runs tools as child processes, overlaying `env` on the inherited environment."""

	def run(self, argv: Sequence[str], *, cwd: Path, env: Mapping[str, str] | None = None) -> ToolResult:
		full_env = None
		if env:
			full_env = {**os.environ, **env}
		proc = subprocess.run(
			list(argv),
			cwd=str(cwd),
			env=full_env,
			capture_output=True,
			text=True,
		)
		return ToolResult(argv=tuple(argv), returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


def run_tool(
	runner: ToolRunner,
	argv: Sequence[str],
	*,
	cwd: Path,
	env: Mapping[str, str] | None = None,
	package: str | None = None,
	stage: str,
) -> ToolResult:
	"""
	Run one tool and turn failure into a `BuildError` carrying its output.
	"""
	logger.debug("running %s (cwd=%s)", " ".join(argv), cwd)
	try:
		res = runner.run(argv, cwd=cwd, env=env)
	except OSError as err:
		raise BuildError(
			reason_code="TOOL_SPAWN_FAILED",
			message=f"failed to run {argv[0]}: {err}",
			package=package,
			stage=stage,
		) from err
	output = res.combined_output()
	if output:
		logger.debug("%s output:\n%s", argv[0], output)
	if not res.ok:
		raise BuildError(
			reason_code="TOOL_FAILED",
			message=f"{' '.join(argv[:2])} exited with status {res.returncode}",
			package=package,
			stage=stage,
			output=output or None,
		)
	return res


def require_tools(
	toolchain: Toolchain,
	compilation: CompilationOptions,
	*,
	which: Callable[[str], str | None] = shutil.which,
) -> None:
	"""
	Fail before any work starts when a tool the run will need is missing.
	"""
	needed = [("cargo", toolchain.cargo)]
	if compilation.strip:
		needed.append(("strip", toolchain.wasm_strip))
	if compilation.optimize:
		needed.append(("optimize", toolchain.wasm_opt))
	missing = [f"{tool} (needed for {what})" for what, tool in needed if which(tool) is None]
	if missing:
		raise BuildError(
			reason_code="TOOL_MISSING",
			message=f"required tools not found on PATH: {', '.join(missing)}",
			stage="preflight",
		)
