# pricefloors/services/floors/adjustments.py
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

CpmAdjustment = Callable[[float, Dict[str, Any], Dict[str, Any]], float]
InverseAdjustment = Callable[[float, Dict[str, Any]], float]

BID_CPM_ADJUSTMENT = "bidCpmAdjustment"
INVERSE_BID_ADJUSTMENT = "inverseBidAdjustment"


class BidderSettings:
    """
    Per-bidder price adjustment callbacks.

    - `standard` entries apply to any bidder without its own entry
    - bidCpmAdjustment(cpm, bid, bid_request) -> adjusted cpm
    - inverseBidAdjustment(floor, bid_request) -> floor the bidder must beat
    """

    STANDARD = "standard"

    def __init__(self, settings: Optional[Dict[str, Dict[str, Callable]]] = None):
        self._settings: Dict[str, Dict[str, Callable]] = {}
        for bidder, entry in (settings or {}).items():
            self._settings[bidder] = dict(entry)

    def register(
        self,
        bidder: str,
        *,
        bid_cpm_adjustment: Optional[CpmAdjustment] = None,
        inverse_bid_adjustment: Optional[InverseAdjustment] = None,
    ) -> None:
        entry = self._settings.setdefault(bidder, {})
        if bid_cpm_adjustment is not None:
            entry[BID_CPM_ADJUSTMENT] = bid_cpm_adjustment
        if inverse_bid_adjustment is not None:
            entry[INVERSE_BID_ADJUSTMENT] = inverse_bid_adjustment

    def get(self, bidder: Optional[str], key: str) -> Optional[Callable]:
        own = self._settings.get(bidder or "", {})
        if key in own:
            return own[key]
        return self._settings.get(self.STANDARD, {}).get(key)

    def adjust_cpm(
        self,
        cpm: float,
        bid: Optional[Dict[str, Any]],
        bid_request: Optional[Dict[str, Any]],
    ) -> float:
        bidder = (bid or {}).get("bidderCode") or (bid_request or {}).get("bidder")
        fn = self.get(bidder, BID_CPM_ADJUSTMENT)
        if fn is None:
            return cpm
        return float(fn(cpm, {**(bid or {}), "cpm": cpm}, bid_request or {}))
