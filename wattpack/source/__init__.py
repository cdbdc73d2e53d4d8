# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Rust source handling: token trees, top-level items, entry point rewriting and
host module generation.
"""

from wattpack.source.host import artifact_file_name, dispatch_shim, render_host_module
from wattpack.source.items import FnItem, Item, SourceFile, parse_file
from wattpack.source.transform import (
	EntryPoint,
	EntryPointKind,
	Transformed,
	rewrite_crate_paths,
	transform,
)

__all__ = [
	"EntryPoint",
	"EntryPointKind",
	"FnItem",
	"Item",
	"SourceFile",
	"Transformed",
	"artifact_file_name",
	"dispatch_shim",
	"parse_file",
	"render_host_module",
	"rewrite_crate_paths",
	"transform",
]
