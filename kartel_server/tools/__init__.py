"""
CLI tools for Kartel administration.

This module provides command-line tools for:
- recover: Rebuild a collection list from its individual records

Invariants:
    - Tools talk to the store directly (no running API required)
    - Operations are idempotent where possible
"""

from .recover import recover

__all__ = ["recover"]
