# pricefloors/services/floors/validator.py
"""
Rule catalog validation.

Contract:
- validate(raw, registry) -> RuleCatalog | MultiModelCatalog | None
- raw input is never mutated (works on a deep copy)
- invalid rules are dropped silently; the catalog is valid iff one survives
- unknown schema versions / disallowed fields are logged and rejected
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, Optional

from pricefloors.core.utils import deep_get, is_number
from pricefloors.services.floors.fields import FieldRegistry
from pricefloors.services.floors.models import (
    DEFAULT_DELIMITER,
    SYN_FIELD,
    WILDCARD,
    Catalog,
    ModelGroup,
    MultiModelCatalog,
    RuleCatalog,
)

logger = logging.getLogger(__name__)


# =========================================================
# Normalization
# =========================================================

def normalize_default(model: Dict[str, Any]) -> Dict[str, Any]:
    """Expand a scalar `default` into an all-wildcard rule."""
    default = model.get("default")
    if not is_number(default):
        return model

    schema = model.get("schema")
    if not isinstance(schema, dict):
        schema = {}
        model["schema"] = schema
    fields = schema.get("fields")

    default_rule = WILDCARD
    if not fields:
        schema["fields"] = [SYN_FIELD]
    elif isinstance(fields, list):
        delimiter = schema.get("delimiter") or DEFAULT_DELIMITER
        if not isinstance(delimiter, str):
            return model
        default_rule = delimiter.join([WILDCARD] * len(fields))
    else:
        # malformed fields; schema validation rejects it
        return model

    values = model.get("values")
    if not isinstance(values, dict):
        values = {}
        model["values"] = values
    if values.get(default_rule) is None:
        values[default_rule] = default
        model["meta"] = {"defaultRule": default_rule}
    return model


# =========================================================
# Rules
# =========================================================

def validate_schema_fields(fields: Any, registry: FieldRegistry) -> bool:
    if isinstance(fields, list) and fields and all(registry.is_allowed(f) for f in fields):
        return True
    logger.error("Price Floors: fields received do not match allowed fields: %s", fields)
    return False


def is_valid_rule(key: Any, floor: Any, num_fields: int, delimiter: str) -> bool:
    if not isinstance(key, str) or len(key.split(delimiter)) != num_fields:
        return False
    return is_number(floor) and floor >= 0


def validate_rules(model: Dict[str, Any], num_fields: int, delimiter: str) -> bool:
    values = model.get("values")
    if not isinstance(values, dict):
        return False
    model["values"] = {
        k: v for k, v in values.items() if is_valid_rule(k, v, num_fields, delimiter)
    }
    return len(model["values"]) > 0


def model_is_valid(model: Dict[str, Any], registry: FieldRegistry) -> bool:
    model = normalize_default(model)
    fields = deep_get(model, "schema.fields")
    if not validate_schema_fields(fields, registry):
        return False
    delimiter = deep_get(model, "schema.delimiter") or DEFAULT_DELIMITER
    if not isinstance(delimiter, str) or len(delimiter) != 1:
        logger.error("Price Floors: schema delimiter must be a single character: %r", delimiter)
        return False
    return validate_rules(model, len(fields), delimiter)


# =========================================================
# Schema versions
# =========================================================

def _validate_v1(data: Dict[str, Any], registry: FieldRegistry) -> bool:
    return model_is_valid(data, registry)


def _validate_v2(data: Dict[str, Any], registry: FieldRegistry) -> bool:
    groups = data.get("modelGroups")
    if not isinstance(groups, list) or not groups:
        return False
    weight_sum = 0
    for model in groups:
        if not isinstance(model, dict):
            return False
        weight = model.get("modelWeight")
        if not (is_number(weight) and weight > 0 and model_is_valid(model, registry)):
            return False
        weight_sum += weight
    data["modelWeightSum"] = weight_sum
    return True


SCHEMA_VALIDATORS: Dict[int, Callable[[Dict[str, Any], FieldRegistry], bool]] = {
    1: _validate_v1,
    2: _validate_v2,
}


def is_floors_data_valid(data: Any, registry: FieldRegistry) -> bool:
    """Validates (and normalizes) `data` in place."""
    if not isinstance(data, dict):
        return False
    version = data.get("floorsSchemaVersion") or 1
    data["floorsSchemaVersion"] = version
    # bool is an int subclass
    known = isinstance(version, int) and not isinstance(version, bool)
    validator = SCHEMA_VALIDATORS.get(version) if known else None
    if validator is None:
        logger.error("Price Floors: unknown floorsSchemaVersion: %s", version)
        return False
    return validator(data, registry)


# =========================================================
# Build catalogs
# =========================================================

def _opt_number(v: Any) -> Optional[float]:
    return float(v) if is_number(v) else None


def _rule_catalog(d: Dict[str, Any]) -> RuleCatalog:
    schema = d["schema"]
    bidders = d.get("noFloorSignalBidders")
    timestamp = d.get("modelTimestamp")
    return RuleCatalog(
        fields=list(schema["fields"]),
        values={k: float(v) for k, v in d["values"].items()},
        delimiter=schema.get("delimiter") or DEFAULT_DELIMITER,
        currency=d.get("currency") or None,
        floor_min=_opt_number(d.get("floorMin")),
        default=_opt_number(d.get("default")),
        default_rule=deep_get(d, "meta.defaultRule"),
        skip_rate=_opt_number(d.get("skipRate")),
        floor_provider=d.get("floorProvider") or None,
        model_version=d.get("modelVersion"),
        model_weight=_opt_number(d.get("modelWeight")),
        model_timestamp=timestamp if is_number(timestamp) else None,
        no_floor_signal_bidders=list(bidders) if isinstance(bidders, list) else [],
        location=d.get("location"),
        schema_version=1,
    )


def catalog_from_dict(data: Dict[str, Any]) -> Catalog:
    """Build a catalog from data that already passed is_floors_data_valid."""
    if data.get("floorsSchemaVersion") == 2:
        bidders = data.get("noFloorSignalBidders")
        timestamp = data.get("modelTimestamp")
        return MultiModelCatalog(
            model_groups=[
                ModelGroup(catalog=_rule_catalog(m), weight=float(m["modelWeight"]))
                for m in data["modelGroups"]
            ],
            model_weight_sum=float(data["modelWeightSum"]),
            currency=data.get("currency") or None,
            floor_min=_opt_number(data.get("floorMin")),
            skip_rate=_opt_number(data.get("skipRate")),
            floor_provider=data.get("floorProvider") or None,
            model_timestamp=timestamp if is_number(timestamp) else None,
            no_floor_signal_bidders=list(bidders) if isinstance(bidders, list) else [],
            location=data.get("location"),
        )
    return _rule_catalog(data)


def validate(raw: Any, registry: FieldRegistry) -> Optional[Catalog]:
    if not isinstance(raw, dict):
        return None
    data = copy.deepcopy(raw)
    if not is_floors_data_valid(data, registry):
        return None
    return catalog_from_dict(data)


def parse_floor_data(raw: Any, location: str, registry: FieldRegistry) -> Optional[Catalog]:
    catalog = validate(raw, registry)
    if catalog is None:
        logger.error("Price Floors: the floors data did not contain correct values: %s", raw)
        return None
    catalog.location = location
    logger.info("Price Floors: a %s set the auction floor data", location)
    return catalog
