"""HTTP read API for bestcrow (FastAPI)."""
