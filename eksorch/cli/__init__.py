"""eksorch command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``eksorch`` script).
"""

from eksorch.cli.main import cli

__all__ = ["cli"]
