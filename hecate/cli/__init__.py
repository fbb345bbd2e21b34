"""Hecate CLI - Kommandozeilen-Interface."""

from hecate.cli.main import app

__all__ = ["app"]
