from __future__ import annotations

import sys

from ijrelease.release.cli import main as cli_main


def main() -> int:
    """Entry point of the ``ijrelease`` console script."""
    try:
        return cli_main()
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 130


if __name__ == '__main__':
    sys.exit(main())
