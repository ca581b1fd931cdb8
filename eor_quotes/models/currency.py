"""
Currency conversion result schemas (shared by every conversion provider).
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel


class CurrencyInfo(BaseModel):
    code: str
    name: str = ""
    symbol: str = ""

    @classmethod
    def from_code(cls, code: str) -> "CurrencyInfo":
        return cls(code=code, name=code, symbol=code)


class ConversionData(BaseModel):
    exchange_rate: str
    source_currency: CurrencyInfo
    target_currency: CurrencyInfo
    source_amount: float
    target_amount: float


class ConversionPayload(BaseModel):
    conversion_data: ConversionData


class ConversionResult(BaseModel):
    success: bool
    data: Optional[ConversionPayload] = None
    error: Optional[str] = None

    @classmethod
    def ok(
        cls,
        amount: float,
        source: str,
        target: str,
        rate: float | str,
        target_amount: float,
    ) -> "ConversionResult":
        return cls(
            success=True,
            data=ConversionPayload(
                conversion_data=ConversionData(
                    exchange_rate=str(rate),
                    source_currency=CurrencyInfo.from_code(source),
                    target_currency=CurrencyInfo.from_code(target),
                    source_amount=amount,
                    target_amount=target_amount,
                )
            ),
        )

    @classmethod
    def failed(cls, error: str) -> "ConversionResult":
        return cls(success=False, error=error)
