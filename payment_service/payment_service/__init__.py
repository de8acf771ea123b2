"""Crypto payment confirmation service."""

__version__ = "0.1.0"
