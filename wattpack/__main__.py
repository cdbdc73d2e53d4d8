# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import sys

from wattpack.cli import main

if __name__ == "__main__":
	sys.exit(main())
