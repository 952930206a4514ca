"""Wireless link supervisor: history, notifications and automatic reconnection."""

__version__ = "0.1.0"
