# pricefloors/services/floors/ortb.py
"""OpenRTB request annotation: per-imp floors and the PBS request-wide summary."""

from __future__ import annotations

import logging
from typing import Any, Dict

from pricefloors.core.errors import CurrencyConversionError
from pricefloors.core.utils import deep_get, deep_set, merge_deep, to_float
from pricefloors.infra.currency import CurrencyConverter
from pricefloors.services.floors.models import DEFAULT_CURRENCY, WILDCARD

logger = logging.getLogger(__name__)


def set_ortb_imp_bid_floor(imp: Dict[str, Any], bid_request: Dict[str, Any], context: Dict[str, Any]) -> None:
    """Sets imp.bidfloor / imp.bidfloorcur from the participant's floor query."""
    get_floor = bid_request.get("getFloor")
    if not callable(get_floor):
        return
    try:
        result = get_floor({
            "currency": context.get("currency") or DEFAULT_CURRENCY,
            "mediaType": context.get("mediaType") or WILDCARD,
            "size": WILDCARD,
        })
    except Exception as e:  # custom field resolvers are publisher code
        logger.warning("Cannot compute floor for bid %s: %s", bid_request.get("bidId"), e)
        return

    floor = to_float(result.get("floor"))
    currency = result.get("currency")
    if currency is not None and floor is not None:
        imp["bidfloor"] = floor
        imp["bidfloorcur"] = currency


def set_imp_ext_prebid_floors(
    imp: Dict[str, Any],
    req_context: Dict[str, Any],
    converter: CurrencyConverter,
) -> None:
    """
    PBS dialect:
    - imp.ext.prebid.floors.floorMin = lowest of bidfloor and the imp's own floorMin
    - req_context['floorMin'] tracks the lowest value across imps, in the
      currency of the first imp seen
    """
    if imp.get("bidfloor") is None:
        return

    summary = req_context.get("floorMin") or {}
    floor_min = summary.get("floorMin")
    floor_min_cur = summary.get("floorMinCur") or imp.get("bidfloorcur")

    imp_floor_cur = (
        deep_get(imp, "ext.prebid.floors.floorMinCur")
        or deep_get(imp, "ext.prebid.floorMinCur")
        or floor_min_cur
    )
    imp_floor_min = deep_get(imp, "ext.prebid.floors.floorMin") or deep_get(imp, "ext.prebid.floorMin")

    try:
        converted_floor = converter.convert(imp["bidfloor"], imp.get("bidfloorcur"), floor_min_cur)
        converted_imp_min = (
            converter.convert(imp_floor_min, imp_floor_cur, floor_min_cur)
            if imp_floor_min and imp_floor_cur
            else None
        )
    except CurrencyConversionError as e:
        logger.warning("Cannot summarize floorMin for imp %s: %s", imp.get("id"), e)
        return

    lowest = converted_imp_min if converted_imp_min and converted_imp_min < converted_floor else converted_floor

    deep_set(imp, "ext.prebid.floors.floorMin", lowest)
    if floor_min is None or floor_min > lowest:
        floor_min = lowest
    req_context["floorMin"] = {"floorMin": floor_min, "floorMinCur": floor_min_cur}


def set_ortb_ext_prebid_floors(
    ortb_request: Dict[str, Any],
    req_context: Dict[str, Any],
    *,
    floors_active: bool,
) -> None:
    """Tells the server floors were already handled here, and passes the floorMin summary."""
    if floors_active:
        deep_set(ortb_request, "ext.prebid.floors.enabled", deep_get(ortb_request, "ext.prebid.floors.enabled") or False)
    if req_context.get("floorMin"):
        merge_deep(ortb_request, {"ext": {"prebid": {"floors": dict(req_context["floorMin"])}}})
