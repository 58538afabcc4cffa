"""
Main entry point for running the package as a module.

Uses the Click-based CLI from tradetags/cli/.
"""
import sys

from tradetags.cli import main

if __name__ == "__main__":
    sys.exit(main())
