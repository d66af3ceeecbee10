"""
Infrastructure package.

Async delivery of action notifications to consumers on an event loop.
"""

from .stream import ActionStream, ActionStreamError

__all__ = [
    'ActionStream',
    'ActionStreamError'
]
