"""Commit-reveal ENS registration through a private bundle relay."""

__version__ = "0.1.0"
