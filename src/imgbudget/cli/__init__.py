"""CLI package for imgbudget.

Usage:
    from imgbudget.cli import app
"""

from __future__ import annotations

from imgbudget.cli.main import app

__all__ = ["app"]
