"""Main entry point when executing rescoord as a package.

This allows running the package using python -m rescoord.
"""

from rescoord.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
