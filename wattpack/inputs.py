# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Where a package to build or verify comes from.

A local directory is used as-is. A crates.io release or a git repository is
fetched into a temporary directory that lives as long as the `materialize`
context.
"""

from __future__ import annotations

import io
import logging
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import requests

from wattpack import __version__
from wattpack.config import Toolchain
from wattpack.errors import BuildError, ValidationError
from wattpack.toolchain import ToolRunner, run_tool

logger = logging.getLogger(__name__)

CRATES_IO_API = "https://crates.io/api/v1/crates"
# crates.io rejects requests without a user agent.
HEADERS = {"user-agent": f"wattpack/{__version__}"}
REQUEST_TIMEOUT = 60


@dataclass(frozen=True)
class CrateSpec:
	name: str
	version: str | None = None  # None: latest stable release


@dataclass(frozen=True)
class GitSource:
	url: str
	ref: str = "HEAD"
	subdirectory: str | None = None


@dataclass(frozen=True)
class Input:
	path: Path | None = None
	crate: CrateSpec | None = None
	git: GitSource | None = None

	def describe(self) -> str:
		if self.crate is not None:
			return f"{self.crate.name}@{self.crate.version or 'latest'} (crates.io)"
		if self.git is not None:
			return f"{self.git.url}@{self.git.ref}"
		return str(self.path or Path("."))


def parse_crate_spec(spec: str) -> CrateSpec:
	"""`name` or `name@version`."""
	name, _, version = spec.partition("@")
	if not name:
		raise ValidationError(reason_code="INVALID_CRATE_SPEC", message=f"invalid crate spec: {spec!r}", stage="input")
	return CrateSpec(name=name, version=version or None)


def parse_git_url(source: str) -> GitSource:
	"""
	Parse `git+URL[@REF][#subdirectory=PATH]`; the `git+` prefix is optional.

	>>> parse_git_url("git+https://github.com/user/repo@main#subdirectory=macros")
	GitSource(url='https://github.com/user/repo', ref='main', subdirectory='macros')
	"""
	url = source.removeprefix("git+")
	subdirectory = None
	if "#subdirectory=" in url:
		url, subdirectory = url.split("#subdirectory=", 1)
	elif "#" in url:
		url, subdirectory = url.split("#", 1)
	ref = "HEAD"
	# Only look for a ref after the last path separator so `git@host:` style
	# URLs keep their user part.
	head, sep, tail = url.rpartition("/")
	if "@" in tail:
		tail, ref = tail.rsplit("@", 1)
		url = head + sep + tail
	return GitSource(url=url, ref=ref, subdirectory=subdirectory or None)


def _fetch_failed(code: str, message: str, err: Exception | None = None) -> BuildError:
	return BuildError(reason_code=code, message=message if err is None else f"{message}: {err}", stage="input")


def _get(session: requests.Session, url: str) -> requests.Response:
	logger.debug("GET %s", url)
	try:
		response = session.get(url, headers=HEADERS, timeout=REQUEST_TIMEOUT)
		response.raise_for_status()
	except requests.RequestException as err:
		raise _fetch_failed("FETCH_FAILED", f"failed to fetch {url}", err) from err
	return response


def latest_version(name: str, *, session: requests.Session) -> str:
	data = _get(session, f"{CRATES_IO_API}/{name}").json()
	info = data.get("crate") if isinstance(data, dict) else None
	if not isinstance(info, dict):
		raise _fetch_failed("FETCH_FAILED", f"unexpected crates.io response for {name}")
	version = info.get("max_stable_version") or info.get("max_version")
	if not isinstance(version, str) or not version:
		raise _fetch_failed("FETCH_FAILED", f"crates.io lists no release of {name}")
	return version


def _safe_members(tar: tarfile.TarFile, dest: Path) -> list[tarfile.TarInfo]:
	members: list[tarfile.TarInfo] = []
	for member in tar.getmembers():
		rel = PurePosixPath(member.name)
		if rel.is_absolute() or ".." in rel.parts:
			raise _fetch_failed("ARCHIVE_UNSAFE", f"refusing to extract {member.name!r} outside {dest}")
		if member.isfile() or member.isdir():
			members.append(member)
	return members


def download_crate(spec: CrateSpec, dest: Path, *, session: requests.Session) -> Path:
	"""
	Download and unpack a `.crate` archive under `dest`; returns the package
	directory (`<dest>/<name>-<version>`).
	"""
	version = spec.version or latest_version(spec.name, session=session)
	logger.info("downloading %s %s from crates.io", spec.name, version)
	response = _get(session, f"{CRATES_IO_API}/{spec.name}/{version}/download")
	try:
		with tarfile.open(fileobj=io.BytesIO(response.content), mode="r:gz") as tar:
			tar.extractall(dest, members=_safe_members(tar, dest))
	except tarfile.TarError as err:
		raise _fetch_failed("ARCHIVE_INVALID", f"{spec.name} {version} is not a valid .crate archive", err) from err
	package_dir = dest / f"{spec.name}-{version}"
	if not package_dir.is_dir():
		raise _fetch_failed("ARCHIVE_INVALID", f"{spec.name} {version} archive has no {package_dir.name}/ directory")
	return package_dir


def clone_git(source: GitSource, dest: Path, *, toolchain: Toolchain, runner: ToolRunner) -> Path:
	argv = [toolchain.git, "clone", "--depth", "1"]
	if source.ref != "HEAD":
		argv += ["--branch", source.ref]
	argv += [source.url, str(dest)]
	logger.info("cloning %s", source.url)
	run_tool(runner, argv, cwd=dest.parent, stage="input")
	package_dir = dest / source.subdirectory if source.subdirectory else dest
	if not package_dir.is_dir():
		raise ValidationError(
			reason_code="SUBDIRECTORY_NOT_FOUND",
			message=f"{source.subdirectory} does not exist in {source.url}",
			stage="input",
		)
	return package_dir


class materialize:
	"""
	Context manager yielding a local package directory for `inp`.

	Fetched inputs live in a temporary directory that is removed on exit.
	Errors raised inside the `with` block pass through untouched.
	"""

	def __init__(
		self,
		inp: Input,
		*,
		toolchain: Toolchain,
		runner: ToolRunner,
		session: requests.Session | None = None,
	) -> None:
		self.inp = inp
		self.toolchain = toolchain
		self.runner = runner
		self.session = session
		self._tmp: tempfile.TemporaryDirectory[str] | None = None

	def __enter__(self) -> Path:
		inp = self.inp
		if inp.crate is None and inp.git is None:
			return inp.path or Path(".")
		self._tmp = tempfile.TemporaryDirectory(prefix="wattpack-input-")
		tmp = Path(self._tmp.name)
		try:
			if inp.crate is not None and self.session is not None:
				return download_crate(inp.crate, tmp, session=self.session)
			if inp.crate is not None:
				with requests.Session() as owned:
					return download_crate(inp.crate, tmp, session=owned)
			assert inp.git is not None
			return clone_git(inp.git, tmp / "checkout", toolchain=self.toolchain, runner=self.runner)
		except BaseException:
			self._cleanup()
			raise

	def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
		self._cleanup()

	def _cleanup(self) -> None:
		if self._tmp is not None:
			self._tmp.cleanup()
			self._tmp = None
