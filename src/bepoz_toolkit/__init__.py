"""
bepoz-toolkit — package root

File: src/bepoz_toolkit/__init__.py

Purpose
- Administrative tool launcher for the point-of-sale back office: fetch catalog
  scripts, cache them with integrity checks, validate preconditions, and run
  them in a fresh interpreter session with live output.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
