"""Execution engine for visual WhatsApp automation flows."""

__version__ = "1.0.0"
