"""Entry point for ``python -m lpmanager_indexer``."""

import sys

from lpmanager_indexer.cli import main

sys.exit(main())
