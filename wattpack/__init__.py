# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
wattpack: precompile procedural macro crates to WebAssembly.

Pipeline:
  source:    token-tree parser + entry point rewriting for the library module
  manifest:  Cargo.toml model and rewriters
  build:     working copy -> cargo -> wasm tools -> generated watt host crate
  patch:     rebuild every proc-macro dependency of a workspace
  verify:    rebuild and byte-compare against a published artifact
"""

__version__ = "0.1.0"

__all__ = ["source", "manifest", "manifest_rewrite", "build", "patch", "verify"]
