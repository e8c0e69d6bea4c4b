"""Entry point for running the command line interface."""

import sys

from paycheck_engine.cli import main

if __name__ == "__main__":
    sys.exit(main())
