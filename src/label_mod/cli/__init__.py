"""Command line interface for label-mod."""

from __future__ import annotations

from label_mod.cli.main import cli, main

__all__ = ["cli", "main"]
