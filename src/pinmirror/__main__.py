"""CLI entrypoint for running pinmirror as a module."""

from pinmirror.cli import cli
from pinmirror.logging import setup_logging

if __name__ == "__main__":
    setup_logging()
    cli()
