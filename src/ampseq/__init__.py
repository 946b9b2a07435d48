"""Amplicon sequence variant pipeline orchestrator."""

__version__ = "0.3.0"
