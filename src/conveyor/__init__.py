"""
conveyor — package root

File: src/conveyor/__init__.py
Last updated: 2026-10-19

Purpose
- Package root for a sequential-stage CI/CD pipeline runner: Checkout, Build,
  Test, Publish, and Deploy with parameter guards, outcome hooks, scoped
  registry credentials, a production approval gate, commit status reporting,
  and owner/author notifications.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
