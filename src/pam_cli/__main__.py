"""
Main entry point for the pam CLI.

This module is executed when running `python -m pam_cli` or via the `pam` executable.
"""

from .cli import app


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
