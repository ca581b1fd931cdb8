"""EOR quote normalization and LLM enhancement service."""

__version__ = "0.1.0"
