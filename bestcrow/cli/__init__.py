"""Command-line interface for bestcrow."""
