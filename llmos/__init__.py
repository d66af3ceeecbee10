"""LLM-OS action event system: action registry, approval workflow and monitoring."""

__version__ = "1.0.0"
