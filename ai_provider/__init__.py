"""Multi-provider LLM request routing with canonical streaming events."""

__version__ = "0.1.0"
