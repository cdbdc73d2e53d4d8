# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class WattError(Exception):
	"""
	A structured, serializable error for the wattpack pipeline.

	Every failure is terminal for the running command; the CLI reports it once.
	`reason_code` is stable, `message` is for humans, the remaining fields carry
	whatever context the failing stage knows about.
	"""

	reason_code: str
	message: str
	package: str | None = None
	stage: str | None = None  # "manifest" | "source" | "compile" | "strip" | "optimize" | "host" | "patch" | "verify" | "input"
	path: str | None = None
	output: str | None = None

	def __str__(self) -> str:
		return self.format_human()

	def to_dict(self) -> dict[str, Any]:
		return {
			"kind": type(self).__name__,
			"reason_code": self.reason_code,
			"message": self.message,
			"package": self.package,
			"stage": self.stage,
			"path": self.path,
			"output": self.output,
		}

	def format_human(self) -> str:
		parts: list[str] = [f"[{self.reason_code}] {self.message}"]
		if self.package:
			parts.append(f"package={self.package}")
		if self.stage:
			parts.append(f"stage={self.stage}")
		if self.path:
			parts.append(f"path={self.path}")
		text = " ".join(parts)
		if self.output:
			text += "\n" + self.output.rstrip()
		return text


@dataclass(frozen=True)
class ParseError(WattError):
	"""Malformed manifest or source text."""

	line: int | None = None
	column: int | None = None

	def to_dict(self) -> dict[str, Any]:
		return {**super().to_dict(), "line": self.line, "column": self.column}

	def format_human(self) -> str:
		text = super().format_human()
		if self.line is not None:
			text += f" at {self.line}:{self.column}"
		return text


@dataclass(frozen=True)
class ValidationError(WattError):
	"""The manifest does not describe a package this tool can transform."""


@dataclass(frozen=True)
class BuildError(WattError):
	"""An external tool failed, could not be started, or is missing."""


@dataclass(frozen=True)
class ArtifactNotFound(BuildError):
	"""The compiler reported success but the expected artifact is absent."""


@dataclass(frozen=True)
class VerificationError(WattError):
	sha256_expected: str | None = None
	sha256_got: str | None = None
	size_expected: int | None = None
	size_got: int | None = None

	def to_dict(self) -> dict[str, Any]:
		return {
			**super().to_dict(),
			"sha256_expected": self.sha256_expected,
			"sha256_got": self.sha256_got,
			"size_expected": self.size_expected,
			"size_got": self.size_got,
		}

	def format_human(self) -> str:
		parts = [super().format_human()]
		if self.sha256_expected or self.sha256_got:
			parts.append(f"sha256_expected={self.sha256_expected}")
			parts.append(f"sha256_got={self.sha256_got}")
		if self.size_expected is not None or self.size_got is not None:
			parts.append(f"size_expected={self.size_expected}")
			parts.append(f"size_got={self.size_got}")
		return " ".join(parts)
