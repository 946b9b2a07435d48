# src/ampseq/commands/__init__.py
"""
Command package.

Submodules are imported explicitly by ampseq.cli to avoid circular imports.
Do NOT import submodules here.
"""
__all__ = [
    "init",
    "samples",
    "run",
]
