"""Tollgate: session and credential-change service."""

__version__ = "0.1.0"
