from .transformers import (
    QUOTE_TRANSFORMERS,
    NORMALIZED_TRANSFORMERS,
    transform_response_to_quote,
)
from .normalizer import normalize_quote, validate_normalized_quote, get_quote_summary, compare_quotes
from .display import merge_enhancement_extras, extras_from_enhanced

__all__ = [
    "QUOTE_TRANSFORMERS",
    "NORMALIZED_TRANSFORMERS",
    "transform_response_to_quote",
    "normalize_quote",
    "validate_normalized_quote",
    "get_quote_summary",
    "compare_quotes",
    "merge_enhancement_extras",
    "extras_from_enhanced",
]
