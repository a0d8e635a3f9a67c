"""Allow ``python -m secretsmith``."""

import sys

from secretsmith.cli import main

sys.exit(main())
