"""Console logging for the command-line front end."""

from __future__ import annotations

import logging
import sys


def configure_logging(verbose: bool = False) -> None:
    """Attach a stderr handler to the package logger (idempotent)."""
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger("mcp_auth_scaffold")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.propagate = False
