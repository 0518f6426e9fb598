"""
Kartel backend test suite.

This package contains:
- unit/: Unit tests (in-memory and SQLite stores, no network)
- integration/: HTTP tests against the FastAPI app with injected collaborators
"""
