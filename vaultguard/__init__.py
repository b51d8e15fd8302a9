"""Vaultguard: threat detection and adaptive rate limiting for the password vault."""

__version__ = "0.1.0"
