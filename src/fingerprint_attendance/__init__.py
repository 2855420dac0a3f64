"""Fingerprint attendance backend: enrollment handshake, attendance merge and eligibility."""

__version__ = "1.0.0"
