"""
CLI layer for anime-spine.

A Typer application whose commands delegate to the run controller and the
state store. This package handles only terminal transport: argument
parsing, progress display and table formatting.

Entry point::

    anime-spine --help
"""

from anime_spine.cli.app import app

__all__ = ["app"]
