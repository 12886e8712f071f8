"""
Milestone DB Test Suite.

This package contains:
- unit/: Unit tests (in-memory engine, no external dependencies)
- integration/: Integration tests (real MongoDB, opt-in)
"""
