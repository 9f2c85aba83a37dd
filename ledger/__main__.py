"""Allow running the ledger CLI with ``python -m ledger``."""

import sys

from ledger.cli import main

sys.exit(main())
