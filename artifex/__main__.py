"""Main entry point when executing artifex as a package.

This allows running the package using python -m artifex.
"""

from artifex.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
