"""Automated lottery with verifiable-randomness winner selection."""

__version__ = "1.0.0"
