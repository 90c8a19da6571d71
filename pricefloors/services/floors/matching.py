# pricefloors/services/floors/matching.py
"""
Rule matching.

For every schema field the context yields [exact, '*'] (or just ['*']).
Candidates are the cartesian product of those options, left-most field
varying slowest, then stably sorted by number of wildcard segments. The
first candidate present in the catalog wins. Results are memoized on the
catalog instance by the exact-value key.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from typing import Any, Dict, List, Optional

from pricefloors.core.utils import deep_get, is_number
from pricefloors.services.floors.fields import FieldRegistry
from pricefloors.services.floors.models import (
    DEFAULT_DELIMITER,
    WILDCARD,
    FieldName,
    MatchResult,
    RuleCatalog,
)


def enumerate_possible_field_values(
    fields: List[FieldName],
    registry: FieldRegistry,
    bid_request: Optional[Dict[str, Any]],
    bid_response: Optional[Dict[str, Any]],
) -> List[List[str]]:
    options: List[List[str]] = []
    for field in fields:
        exact = registry.resolve(field, bid_request or {}, bid_response or {}) or WILDCARD
        # rule keys are stored lowercase; compare case-insensitively
        options.append([WILDCARD] if exact == WILDCARD else [exact.lower(), WILDCARD])
    return options


def wildcard_count(key: str, delimiter: str) -> int:
    return sum(1 for segment in key.split(delimiter) if segment == WILDCARD)


def generate_possible_enumerations(field_values: List[List[str]], delimiter: str) -> List[str]:
    keys = [delimiter.join(combo) for combo in itertools.product(*field_values)]
    # sorted() is stable: equal wildcard counts keep left-most exactness first
    return sorted(keys, key=lambda k: wildcard_count(k, delimiter))


def get_first_matching_floor(
    catalog: RuleCatalog,
    bid_request: Optional[Dict[str, Any]],
    bid_response: Optional[Dict[str, Any]] = None,
    *,
    registry: FieldRegistry,
) -> MatchResult:
    fields = catalog.fields or []
    if not fields:
        return MatchResult()

    delimiter = catalog.delimiter or DEFAULT_DELIMITER
    field_values = enumerate_possible_field_values(fields, registry, bid_request, bid_response)

    matching_input = delimiter.join(values[0] for values in field_values)
    previous = catalog.matching_inputs.get(matching_input)
    if previous is not None:
        return replace(previous)

    candidates = generate_possible_enumerations(field_values, delimiter)
    matching_rule = next((key for key in candidates if key in catalog.values), None)

    floor_min = catalog.floor_min or 0.0
    # request-scoped floorMin wins over the catalog's
    request_floor_min = deep_get(bid_request or {}, "ortb2Imp.ext.prebid.floors.floorMin")
    if is_number(request_floor_min):
        floor_min = float(request_floor_min)

    result = MatchResult(
        floor_min=floor_min,
        matching_data=candidates[0],
    )
    if matching_rule is not None:
        rule_value = catalog.values[matching_rule]
        result.floor_rule_value = rule_value
        result.matching_floor = max(floor_min, rule_value)
        result.matching_rule = None if matching_rule == catalog.default_rule else matching_rule

    catalog.matching_inputs[matching_input] = replace(result)
    return result
