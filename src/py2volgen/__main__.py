"""
Entry Point - Module Execution

This module serves as the entry point when running the package as a module:
    python -m py2volgen

All argument parsing and the build itself live in cli.py.
"""

import sys

from py2volgen.cli import main

if __name__ == "__main__":
    sys.exit(main())
