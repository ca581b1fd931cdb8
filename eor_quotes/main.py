"""
EOR Quote Enhancement — Main Entry Point

Run as an API server:
    python -m eor_quotes --serve
    # or: uvicorn eor_quotes.api:app --reload --port 8000

Convert an amount between currencies:
    python -m eor_quotes --convert 100 USD EUR

Normalize a raw provider response saved as JSON:
    python -m eor_quotes --normalize remote path/to/response.json
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from eor_quotes.config import get_settings
from eor_quotes.currency.converter import convert_currency
from eor_quotes.models.currency import ConversionResult
from eor_quotes.models.schemas import NormalizedQuote
from eor_quotes.providers.normalizer import get_quote_summary, normalize_quote
from eor_quotes.utils.logger import setup_logging

USAGE = __doc__


def convert(amount: float, source: str, target: str) -> ConversionResult:
    """Convert *amount* and log the outcome."""
    setup_logging()
    logger = logging.getLogger(__name__)

    result = asyncio.run(convert_currency(amount, source, target))
    if result.success and result.data:
        data = result.data.conversion_data
        logger.info(
            f"  {data.source_amount:,.2f} {data.source_currency.code} = "
            f"{data.target_amount:,.2f} {data.target_currency.code} (rate {data.exchange_rate})"
        )
    else:
        logger.error(f"  Conversion failed: {result.error}")
    return result


def normalize(provider: str, file_path: str) -> NormalizedQuote:
    """Normalize a raw provider response file and log its summary."""
    setup_logging()
    logger = logging.getLogger(__name__)

    raw = json.loads(Path(file_path).read_text(encoding="utf-8"))
    quote = normalize_quote(provider, raw)
    logger.info(f"  {get_quote_summary(quote)}")
    for name, amount in quote.breakdown.items():
        logger.info(f"    {name:<32} {amount:>12,.2f}")
    return quote


def serve(host: str | None = None, port: int | None = None) -> None:
    """Start the FastAPI server."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    host = host or settings.host
    port = port or settings.port
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run("eor_quotes.api:app", host=host, port=port, reload=settings.debug)


def main(argv: list[str]) -> int:
    if "--serve" in argv:
        serve()
        return 0

    if "--convert" in argv:
        args = argv[argv.index("--convert") + 1:]
        if len(args) < 3:
            print(USAGE)
            return 2
        try:
            amount = float(args[0])
        except ValueError:
            print(f"Invalid amount: {args[0]}")
            return 2
        return 0 if convert(amount, args[1], args[2]).success else 1

    if "--normalize" in argv:
        args = argv[argv.index("--normalize") + 1:]
        if len(args) < 2:
            print(USAGE)
            return 2
        normalize(args[0], args[1])
        return 0

    print(USAGE)
    return 2


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
