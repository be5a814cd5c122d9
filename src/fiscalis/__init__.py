"""Fiscal-obligation provisioning and tracking for micro-entrepreneurs."""

__version__ = "0.1.0"
