"""
Monitoring package.

Contains the ActionMonitor that backs the approval/verifier view.
"""

from .verifier import ActionMonitor

__all__ = [
    'ActionMonitor'
]
