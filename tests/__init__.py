"""
reltrack Test Suite.

This package contains:
- unit/: Unit tests (SQLite in a temp directory, no network)
- integration/: Service wiring tests (store + rotation + exporter)
"""
