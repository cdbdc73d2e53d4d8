# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Reproducibility check: rebuild a package and compare the result with a
published `.wasm` file byte for byte.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from wattpack import manifest as manifest_mod
from wattpack.build import MANIFEST_NAME, compile_package
from wattpack.config import WASM_EXTENSION, CompilationOptions, Toolchain
from wattpack.errors import ValidationError, VerificationError
from wattpack.toolchain import SubprocessRunner, ToolRunner, require_tools

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifyOptions:
	package_dir: Path
	artifact_path: Path
	compilation: CompilationOptions = field(default_factory=CompilationOptions)


@dataclass(frozen=True)
class VerifyReport:
	package: str
	artifact_path: Path
	size: int
	sha256: str

	def to_dict(self) -> dict[str, Any]:
		return {
			"package": self.package,
			"artifact_path": str(self.artifact_path),
			"size": self.size,
			"sha256": self.sha256,
		}


def sha256_hex(data: bytes) -> str:
	return hashlib.sha256(data).hexdigest()


def verify(
	opts: VerifyOptions,
	*,
	toolchain: Toolchain | None = None,
	runner: ToolRunner | None = None,
	which: Callable[[str], str | None] = shutil.which,
) -> VerifyReport:
	artifact = opts.artifact_path
	if artifact.suffix != WASM_EXTENSION:
		raise ValidationError(
			reason_code="NOT_WASM",
			message=f"'{artifact.name}' is not a {WASM_EXTENSION} file",
			stage="verify",
			path=str(artifact),
		)
	toolchain = toolchain or Toolchain.from_env()
	runner = runner or SubprocessRunner()
	require_tools(toolchain, opts.compilation, which=which)

	try:
		expected = artifact.read_bytes()
	except OSError as err:
		raise ValidationError(
			reason_code="ARTIFACT_UNREADABLE",
			message=f"failed to read {artifact}: {err}",
			stage="verify",
			path=str(artifact),
		) from err

	manifest = manifest_mod.load(opts.package_dir / MANIFEST_NAME)
	manifest_mod.validate(manifest)
	compiled = compile_package(opts.package_dir, manifest, opts.compilation, toolchain=toolchain, runner=runner)

	if compiled.wasm != expected:
		raise VerificationError(
			reason_code="MISMATCH",
			message=f"'{artifact.name}' was not compiled from '{compiled.name}' or the build is not reproducible",
			package=compiled.name,
			stage="verify",
			path=str(artifact),
			sha256_expected=sha256_hex(expected),
			sha256_got=sha256_hex(compiled.wasm),
			size_expected=len(expected),
			size_got=len(compiled.wasm),
		)
	logger.info("%s matches %s", artifact.name, compiled.name)
	return VerifyReport(
		package=compiled.name,
		artifact_path=artifact,
		size=len(expected),
		sha256=sha256_hex(expected),
	)
