"""Command line interface: ``sdlcflow validate|plan|simulate|resume|status``."""

from sdlcflow.cli.main import main

__all__ = ["main"]
