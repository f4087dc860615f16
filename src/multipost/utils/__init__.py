"""
Utilities module - Retry helpers.
"""
from multipost.utils.retry import retry

__all__ = [
    "retry",
]
