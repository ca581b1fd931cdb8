"""Enhancement — engine, cache, inclusions extraction, reconciliation and error type."""
