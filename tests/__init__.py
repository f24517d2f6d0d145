"""
Woning Store Test Suite.

This package contains:
- unit/: Unit tests (in-memory and SQLite backends, mock HTTP transport)
- integration/: Integration tests (fully wired store, in-memory remote)
"""
