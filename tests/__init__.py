"""
JOAP Backup Engine Test Suite.

This package contains:
- unit/: Unit tests (temporary SQLite files, in-memory datastore, manual clock)
- integration/: Integration tests (full engine, HTTP API, CLI)
"""
