"""Main entry point for the Herald CLI.

Usage:
    python -m herald --help
    herald --help  # If installed via pip/uv
"""

from herald.cli import main

if __name__ == "__main__":
    main()
