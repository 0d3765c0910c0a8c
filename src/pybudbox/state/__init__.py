"""State/store layer.

This package is the single source of truth for which polled snapshot is
current, which events a link reports, and the timing policy for retries.
"""
