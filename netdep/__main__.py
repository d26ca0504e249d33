"""Entry point for ``python -m netdep``."""

import sys

from netdep.cli import main

sys.exit(main())
