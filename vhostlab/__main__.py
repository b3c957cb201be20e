"""Allow ``python -m vhostlab``."""

import sys

from vhostlab import cli

if __name__ == "__main__":
    sys.exit(cli.main())
