"""
Bestcrow - event-sourced escrow indexer.

Ingests Bestcrow contract events into an append-only log, projects them
into per-escrow records and serves canonical lifecycle status.
"""

try:
    from importlib.metadata import version

    __version__ = version("bestcrow")
except Exception:
    __version__ = "0.0.0"

__all__ = ["__version__"]
