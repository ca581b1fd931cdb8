from .quote_validator import (
    is_valid_quote,
    is_valid_quote_with_context,
    is_valid_normalized_quote,
    validate_quote_with_debugging,
)

__all__ = [
    "is_valid_quote",
    "is_valid_quote_with_context",
    "is_valid_normalized_quote",
    "validate_quote_with_debugging",
]
