"""Run the parley CLI with ``python -m parley``."""

from parley.cli import app

app()
