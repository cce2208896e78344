"""Automation rules, transfer detection and balance posting for expense messages."""

__version__ = "0.1.0"
