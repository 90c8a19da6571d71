# pricefloors/services/floors/enforcement.py
"""
Floor enforcement (bid responses) and the proactive floor query (bid requests).

Currency conversion failures differ between the two callers:
- get_floor: report the floor in the catalog's own currency
- add_bid_response: the bid is passed through unenforced
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any, Dict, Optional

from pricefloors.core.errors import CurrencyConversionError
from pricefloors.infra.currency import CurrencyConverter
from pricefloors.services.floors.adjustments import INVERSE_BID_ADJUSTMENT, BidderSettings
from pricefloors.services.floors.fields import FieldRegistry
from pricefloors.services.floors.matching import get_first_matching_floor
from pricefloors.services.floors.models import (
    DEFAULT_CURRENCY,
    SYN_FIELD,
    WILDCARD,
    AuctionFloorData,
    EnforcementResult,
    MatchResult,
)

logger = logging.getLogger(__name__)

FLOOR_NOT_MET = "Bid does not meet price floor"

_FIXED_POINT = Decimal(10) ** 10


def round_up(number: float, precision: int) -> float:
    scale = 10 ** precision
    return math.ceil(round(float(number) * scale, 1)) / scale


def calculate_adjusted_floor(old_floor: float, new_floor: float) -> float:
    """
    Bidder-equivalent floor f^2 / a, where a is the bidder's adjustment
    applied to f. Scaled to fixed point to keep binary float drift out.
    """
    old = Decimal(str(old_floor)) * _FIXED_POINT
    new = Decimal(str(new_floor)) * _FIXED_POINT
    return float((old / new * old) / _FIXED_POINT)


def adjust_floor_for_bidder(
    floor: float,
    bid_request: Dict[str, Any],
    bidder_settings: BidderSettings,
) -> float:
    inverse = bidder_settings.get(bid_request.get("bidder"), INVERSE_BID_ADJUSTMENT)
    if inverse is not None:
        return float(inverse(floor, bid_request))
    adjusted = bidder_settings.adjust_cpm(floor, None, bid_request)
    return calculate_adjusted_floor(floor, adjusted) if adjusted else floor


# =========================================================
# Proactive query
# =========================================================

def _media_type_sizes(bid_request: Dict[str, Any], media_type: str) -> list:
    media_types = bid_request.get("mediaTypes") or {}
    if media_type == "banner":
        return (media_types.get("banner") or {}).get("sizes") or []
    if media_type == "video":
        size = (media_types.get("video") or {}).get("playerSize") or []
        # playerSize may be a single [w, h]
        return [size] if size and not isinstance(size[0], (list, tuple)) else size
    if media_type == "native":
        sizes = ((media_types.get("native") or {}).get("image") or {}).get("sizes")
        return [sizes] if sizes else []
    return []


def update_request_params_from_context(bid_request: Dict[str, Any], params: Dict[str, Any]) -> Dict[str, Any]:
    """A '*' mediaType/size is narrowed when the participant's context is unambiguous."""
    media_types = list((bid_request.get("mediaTypes") or {}).keys())
    if params["mediaType"] == WILDCARD and len(media_types) == 1:
        params["mediaType"] = media_types[0]
    if params["size"] == WILDCARD and params["mediaType"] in media_types:
        sizes = _media_type_sizes(bid_request, params["mediaType"])
        if len(sizes) == 1:
            params["size"] = sizes[0]
    return params


def get_floor(
    floor_data: Optional[AuctionFloorData],
    bid_request: Dict[str, Any],
    params: Optional[Dict[str, Any]] = None,
    *,
    registry: FieldRegistry,
    converter: CurrencyConverter,
    bidder_settings: BidderSettings,
) -> Dict[str, Any]:
    if floor_data is None or floor_data.skipped or floor_data.catalog is None:
        return {}

    params = {
        "currency": DEFAULT_CURRENCY,
        "mediaType": WILDCARD,
        "size": WILDCARD,
        **{k: v for k, v in (params or {}).items() if v is not None},
    }
    params = update_request_params_from_context(bid_request, params)

    catalog = floor_data.catalog
    floor_info = get_first_matching_floor(
        catalog,
        dict(bid_request),
        {"mediaType": params["mediaType"], "size": params["size"]},
        registry=registry,
    )
    floor = floor_info.matching_floor
    if floor is None:
        return {}

    currency = params["currency"] or catalog.currency
    if currency != catalog.currency:
        try:
            floor = converter.convert(floor, catalog.currency, currency)
        except CurrencyConversionError:
            logger.warning(
                "Price Floors: unable to get currency conversion for getFloor for bidder %s; "
                "returning the floor in %s",
                bid_request.get("bidder"), catalog.currency,
            )
            currency = catalog.currency

    if floor_data.enforcement.bid_adjustment and floor:
        floor = adjust_floor_for_bidder(floor, bid_request, bidder_settings)

    return {"floor": round_up(floor, 4), "currency": currency}


# =========================================================
# Enforcement
# =========================================================

def add_floor_data_to_bid(
    floor_data: AuctionFloorData,
    floor_info: MatchResult,
    bid: Dict[str, Any],
    adjusted_cpm: float,
    bidder_floor: Optional[float] = None,
) -> None:
    catalog = floor_data.catalog
    bid["floorData"] = {
        "floorValue": floor_info.matching_floor,
        "floorRule": floor_info.matching_rule,
        "floorRuleValue": floor_info.floor_rule_value,
        "floorCurrency": catalog.currency,
        "cpmAfterAdjustments": adjusted_cpm,
        "bidderFloor": bidder_floor,
        "enforcements": floor_data.enforcement.model_dump(by_alias=True),
        "matchedFields": {},
    }
    segments = (floor_info.matching_data or "").split(catalog.delimiter)
    for index, field in enumerate(catalog.fields):
        if field is SYN_FIELD or index >= len(segments):
            continue
        bid["floorData"]["matchedFields"][field] = segments[index]


def should_floor_bid(floor_data: AuctionFloorData, floor_info: MatchResult, bid: Dict[str, Any]) -> bool:
    enforcement = floor_data.enforcement
    should_floor_deal = enforcement.floor_deals or not bid.get("dealId")
    bid_below_floor = bid["floorData"]["cpmAfterAdjustments"] < floor_info.matching_floor
    return enforcement.enforce_js and bid_below_floor and should_floor_deal


def add_bid_response(
    floor_data: Optional[AuctionFloorData],
    ad_unit_code: Optional[str],
    bid: Dict[str, Any],
    *,
    registry: FieldRegistry,
    converter: CurrencyConverter,
    bidder_settings: BidderSettings,
) -> EnforcementResult:
    if floor_data is None or not bid or floor_data.skipped or floor_data.catalog is None:
        return EnforcementResult(accepted=True)

    catalog = floor_data.catalog
    bid_request = floor_data.participants.get(bid.get("requestId") or bid.get("bidId") or "")
    response_ctx = {**bid, "size": [bid.get("width"), bid.get("height")]}
    if ad_unit_code and not response_ctx.get("adUnitCode"):
        response_ctx["adUnitCode"] = ad_unit_code

    floor_info = get_first_matching_floor(catalog, bid_request, response_ctx, registry=registry)
    if floor_info.matching_floor is None:
        logger.warning("Price Floors: unable to determine a matching price floor for bid response %s", bid.get("requestId"))
        return EnforcementResult(accepted=True)

    floor_currency = catalog.currency.upper()
    bid_currency = (bid.get("currency") or DEFAULT_CURRENCY).upper()
    original_currency = (bid.get("originalCurrency") or "").upper()
    cpm = float(bid.get("cpm") or 0)

    if floor_currency == bid_currency:
        adjusted_cpm = cpm
    elif original_currency and floor_currency == original_currency:
        adjusted_cpm = float(bid.get("originalCpm") or 0)
    else:
        try:
            adjusted_cpm = converter.convert(cpm, bid_currency, floor_currency)
        except CurrencyConversionError as e:
            logger.error(
                "Price Floors: unable to convert bid response to floor currency, bid not enforced: %s", e
            )
            return EnforcementResult(accepted=True)

    adjusted_cpm = bidder_settings.adjust_cpm(adjusted_cpm, bid, bid_request)

    bidder_floor = None
    if floor_data.enforcement.bid_adjustment and floor_info.matching_floor:
        request_ctx = bid_request or {"bidder": bid.get("bidderCode"), "adUnitCode": ad_unit_code}
        bidder_floor = adjust_floor_for_bidder(floor_info.matching_floor, request_ctx, bidder_settings)

    add_floor_data_to_bid(floor_data, floor_info, bid, adjusted_cpm, bidder_floor)

    if should_floor_bid(floor_data, floor_info, bid):
        logger.warning(
            "Price Floors: %s's bid response for %s was rejected due to floor not met "
            "(adjusted cpm: %s, floor: %s)",
            bid.get("bidderCode"), ad_unit_code, adjusted_cpm, floor_info.matching_floor,
        )
        return EnforcementResult(accepted=False, reason=FLOOR_NOT_MET)
    return EnforcementResult(accepted=True)
