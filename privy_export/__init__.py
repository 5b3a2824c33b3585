"""Resumable, deduplicating export of Privy users to CSV."""

__version__ = "1.0.0"
