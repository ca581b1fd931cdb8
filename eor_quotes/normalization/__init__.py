from .benefits import (
    identify_benefit_key,
    normalize_benefit_amount,
    normalize_and_deduplicate_quote_costs,
    parse_amount,
)

__all__ = [
    "identify_benefit_key",
    "normalize_benefit_amount",
    "normalize_and_deduplicate_quote_costs",
    "parse_amount",
]
