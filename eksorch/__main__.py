"""Entry point for `python -m eksorch`.

Usage:
    python -m eksorch apply -f stack.yaml
"""

from __future__ import annotations

from eksorch.cli import cli

cli()
