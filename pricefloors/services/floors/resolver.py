# pricefloors/services/floors/resolver.py
"""
Per-auction floor data.

Builds the immutable-for-the-auction dataset from the active configuration:
- schema v2 -> one model group sampled per auction
- no global rules -> rules derived from line item `floors` fragments
- still nothing -> auction skipped
- otherwise a skip sample against the effective skip rate
Every participant is stamped with floor metadata; participants that may be
signalled get a `getFloor` query callable.
"""

from __future__ import annotations

import copy
import logging
import random
from typing import Any, Callable, Dict, List, Optional

from pricefloors.core.utils import is_number, to_float
from pricefloors.schemas.floors_config import EnforcementConfig
from pricefloors.services.floors.fields import FieldRegistry
from pricefloors.services.floors.models import (
    DEFAULT_CURRENCY,
    DEFAULT_DELIMITER,
    ActiveFloorsConfig,
    AuctionFloorData,
    ModelGroup,
    MultiModelCatalog,
    RuleCatalog,
)
from pricefloors.services.floors.validator import catalog_from_dict, is_floors_data_valid

logger = logging.getLogger(__name__)

RandomSource = Callable[[], float]
FloorQueryFactory = Callable[[Dict[str, Any]], Callable[..., Dict[str, Any]]]

# participant keys inherited from the line item when missing
INHERITED_KEYS = ("mediaTypes", "ortb2Imp")


def pick_random_model(
    model_groups: List[ModelGroup],
    weight_sum: float,
    random_source: RandomSource = random.random,
) -> ModelGroup:
    """
    Weighted lottery: draw an integer in [1, weight_sum] and subtract each
    group's weight in order; the group that brings it to <= 0 wins.
    """
    ticket = int(random_source() * weight_sum + 1)
    for group in model_groups:
        ticket -= group.weight
        if ticket <= 0:
            return group
    return model_groups[-1]


def get_floors_data_for_auction(catalog: RuleCatalog, ad_unit_code: Optional[str] = None) -> RuleCatalog:
    """Deep copy with lowercase keys; line item rules get the item code prefixed."""
    auction_catalog = copy.deepcopy(catalog)
    auction_catalog.matching_inputs = {}
    auction_catalog.delimiter = catalog.delimiter or DEFAULT_DELIMITER
    auction_catalog.currency = catalog.currency or DEFAULT_CURRENCY

    prefix = None
    if ad_unit_code and "adUnitCode" not in auction_catalog.fields:
        auction_catalog.fields.insert(0, "adUnitCode")
        prefix = f"{ad_unit_code}{auction_catalog.delimiter}"
        if auction_catalog.default_rule is not None:
            auction_catalog.default_rule = (prefix + auction_catalog.default_rule).lower()
    elif auction_catalog.default_rule is not None:
        auction_catalog.default_rule = auction_catalog.default_rule.lower()

    auction_catalog.values = {
        ((prefix or "") + key).lower(): value for key, value in catalog.values.items()
    }
    return auction_catalog


def get_floor_data_from_line_items(line_items: List[Dict[str, Any]], registry: FieldRegistry) -> Optional[RuleCatalog]:
    """
    Only used when neither config nor fetch supplied rules.
    The first line item declaring a schema sets it for all.
    """
    schema_item = next(
        (li for li in line_items if isinstance(li.get("floors"), dict) and li["floors"].get("schema") is not None),
        None,
    )
    schema_floors = schema_item["floors"] if schema_item else {}

    result: Optional[RuleCatalog] = None
    for line_item in line_items:
        own = line_item.get("floors")
        code = line_item.get("code")
        if own is None and not schema_floors:
            continue
        if isinstance(own, dict) and own.get("schema") is not None and own["schema"] != schema_floors.get("schema"):
            logger.error(
                "Price Floors: line item '%s' declares a different schema from one previously declared by "
                "line item '%s'. Floor config for '%s' will be ignored.",
                code, schema_item.get("code"), code,
            )
            continue

        floors = copy.deepcopy(schema_floors)
        floors["values"] = None
        if isinstance(own, dict):
            floors.update(copy.deepcopy(own))

        if is_floors_data_valid(floors, registry) and floors.get("floorsSchemaVersion") == 1:
            item_catalog = get_floors_data_for_auction(catalog_from_dict(floors), code)
            if result is None:
                result = item_catalog
                result.location = "adUnit"
            else:
                result.values.update(item_catalog.values)
        elif own is not None:
            logger.warning(
                "Price Floors: line item '%s' provides an invalid floor definition, it will be ignored", code
            )
    return result


def get_no_floor_signal_bidders(catalog: Optional[RuleCatalog], enforcement: EnforcementConfig) -> List[str]:
    # the catalog's list takes priority over the enforcement config
    if catalog is not None and catalog.no_floor_signal_bidders:
        return list(catalog.no_floor_signal_bidders)
    return list(enforcement.no_floor_signal_bidders or [])


def update_line_items_for_auction(
    line_items: List[Dict[str, Any]],
    floor_data: AuctionFloorData,
    floor_query_factory: Optional[FloorQueryFactory] = None,
) -> None:
    no_signal = get_no_floor_signal_bidders(floor_data.catalog, floor_data.enforcement)
    catalog = floor_data.catalog

    for line_item in line_items:
        for bid in line_item.get("bids") or []:
            bid.setdefault("adUnitCode", line_item.get("code"))
            for key in INHERITED_KEYS:
                if key not in bid and key in line_item:
                    bid[key] = copy.deepcopy(line_item[key])

            is_no_floor_signaled = bid.get("bidder") in no_signal
            if floor_data.skipped or is_no_floor_signaled:
                if is_no_floor_signaled:
                    logger.info("Price Floors: noFloorSignal to %s", bid.get("bidder"))
                bid.pop("getFloor", None)
            elif floor_query_factory is not None:
                bid["getFloor"] = floor_query_factory(bid)

            bid["auctionId"] = floor_data.auction_id
            bid["floorData"] = {
                "noFloorSignaled": is_no_floor_signaled,
                "skipped": floor_data.skipped,
                "skipRate": floor_data.skip_rate,
                "floorMin": floor_data.floor_min,
                "modelVersion": catalog.model_version if catalog else None,
                "modelWeight": catalog.model_weight if catalog else None,
                "modelTimestamp": catalog.model_timestamp if catalog else None,
                "location": floor_data.location,
                "floorProvider": floor_data.floor_provider,
                "fetchStatus": floor_data.fetch_status,
            }
            if bid.get("bidId"):
                floor_data.participants[bid["bidId"]] = bid


def create_floors_data_for_auction(
    line_items: List[Dict[str, Any]],
    auction_id: str,
    active: ActiveFloorsConfig,
    *,
    registry: FieldRegistry,
    random_source: RandomSource = random.random,
    skip_rate_override: Any = None,
    fetch_status: Optional[str] = None,
    floor_query_factory: Optional[FloorQueryFactory] = None,
) -> AuctionFloorData:
    data = copy.deepcopy(active.data)
    if isinstance(data, MultiModelCatalog):
        data = data.promote(pick_random_model(data.model_groups, data.model_weight_sum, random_source))

    if data is None or not data.values:
        catalog = get_floor_data_from_line_items(line_items, registry)
    else:
        catalog = get_floors_data_for_auction(data)

    config = active.config
    if catalog is not None and config.floor_min is not None:
        catalog.floor_min = config.floor_min

    skip_rate = catalog.skip_rate if catalog is not None and catalog.skip_rate is not None else active.skip_rate
    if catalog is None or not catalog.values:
        skipped = True
    else:
        # debug override first, then the catalog's, then static config
        override = to_float(skip_rate_override)
        effective = override if override is not None else skip_rate
        skipped = is_number(effective) and random_source() * 100 < effective

    floor_data = AuctionFloorData(
        auction_id=auction_id,
        catalog=catalog,
        enforcement=config.enforcement.model_copy(deep=True),
        skipped=skipped,
        skip_rate=skip_rate,
        floor_min=config.floor_min,
        floor_provider=active.floor_provider,
        fetch_status=fetch_status,
    )
    update_line_items_for_auction(line_items, floor_data, floor_query_factory)
    return floor_data
