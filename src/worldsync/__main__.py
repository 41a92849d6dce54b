"""
Main entry point for running the worldsync client as a module.

This allows the package to be executed with:
    python -m worldsync

The recommended way is the installed CLI command:
    worldsync-client
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
