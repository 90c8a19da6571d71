from __future__ import annotations

from typing import Dict, Optional, Protocol

from pricefloors.core.errors import CurrencyConversionError


class CurrencyConverter(Protocol):
    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        ...


class RateTableConverter:
    """
    Static rate table adapter: rates[from][to] = multiplier.
    Inverse rates are derived when only the opposite pair is known.
    """

    def __init__(self, rates: Optional[Dict[str, Dict[str, float]]] = None):
        self.rates = {
            src.upper(): {dst.upper(): float(r) for dst, r in row.items()}
            for src, row in (rates or {}).items()
        }

    def convert(self, amount: float, from_currency: str, to_currency: str) -> float:
        src = (from_currency or "").upper()
        dst = (to_currency or "").upper()
        if src == dst:
            return amount
        direct = self.rates.get(src, {}).get(dst)
        if direct is not None:
            return amount * direct
        inverse = self.rates.get(dst, {}).get(src)
        if inverse:
            return amount / inverse
        raise CurrencyConversionError(f"no conversion rate {src} -> {dst}")
