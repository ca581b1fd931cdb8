from .converter import ConversionSlots, CurrencyConverter, convert_currency, get_currency_converter

__all__ = ["ConversionSlots", "CurrencyConverter", "convert_currency", "get_currency_converter"]
