"""
Test package for the LLM-OS action event system

This package contains:
- Unit tests for the registry, gating policy, producers and previews
- Tests for the monitor and the async action stream
- API tests through the FastAPI test client
"""

__version__ = "1.0.0"
