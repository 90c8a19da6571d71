"""Rule matching: candidate generation, precedence, memoization."""

from __future__ import annotations

from unittest import mock

import pytest

from pricefloors.services.floors import matching
from pricefloors.services.floors.matching import (
    enumerate_possible_field_values,
    generate_possible_enumerations,
    get_first_matching_floor,
    wildcard_count,
)
from pricefloors.services.floors.validator import validate


def _response(media_type, size):
    return {"mediaType": media_type, "size": size}


@pytest.mark.parametrize(
    "media_type,size,expected",
    [
        ("banner", [300, 250], 1.5),
        ("banner", [640, 480], 1.0),
        ("video", [640, 480], 0.5),
        ("video", [300, 250], 0.5),
    ],
)
def test_most_specific_rule_wins(registry, media_size_data, media_type, size, expected) -> None:
    catalog = validate(media_size_data, registry)
    result = get_first_matching_floor(catalog, {}, _response(media_type, size), registry=registry)
    assert result.matching_floor == expected
    assert result.floor_rule_value == expected


def test_match_result_details(registry, media_size_data) -> None:
    catalog = validate(media_size_data, registry)
    result = get_first_matching_floor(catalog, {}, _response("banner", [640, 480]), registry=registry)
    assert result.matching_rule == "banner|*"
    assert result.matching_data == "banner|640x480"
    assert result.floor_min == 0.0


def test_no_matching_rule(registry) -> None:
    catalog = validate({"schema": {"fields": ["mediaType"]}, "values": {"banner": 1.0}}, registry)
    result = get_first_matching_floor(catalog, {}, {"mediaType": "video"}, registry=registry)
    assert result.matching_floor is None
    assert result.matching_rule is None


def test_candidates_have_one_segment_per_field(registry) -> None:
    fields = ["mediaType", "size", "adUnitCode", "domain"]
    request = {"adUnitCode": "div-1", "refererInfo": {"topmostLocation": "https://www.example.com/a"}}
    options = enumerate_possible_field_values(fields, registry, request, _response("banner", [300, 250]))
    candidates = generate_possible_enumerations(options, "|")

    assert len(candidates) == 2 ** 4
    assert all(len(c.split("|")) == len(fields) for c in candidates)
    counts = [wildcard_count(c, "|") for c in candidates]
    assert counts == sorted(counts)
    assert candidates[0] == "banner|300x250|div-1|www.example.com"
    assert candidates[-1] == "*|*|*|*"


def test_left_most_field_exactness_breaks_ties(registry) -> None:
    options = enumerate_possible_field_values(["mediaType", "size"], registry, {}, _response("banner", [300, 250]))
    candidates = generate_possible_enumerations(options, "|")
    assert candidates == ["banner|300x250", "banner|*", "*|300x250", "*|*"]


def test_unresolved_field_only_yields_wildcard(registry) -> None:
    options = enumerate_possible_field_values(["gptSlot", "mediaType"], registry, {}, {"mediaType": "video"})
    assert options == [["*"], ["video", "*"]]


def test_exact_values_are_lowercased(registry) -> None:
    catalog = validate({"schema": {"fields": ["adUnitCode"]}, "values": {"div-top": 2.0}}, registry)
    result = get_first_matching_floor(catalog, {"adUnitCode": "DIV-Top"}, {}, registry=registry)
    assert result.matching_floor == 2.0


class TestFloorMin:
    def test_catalog_floor_min_raises_floor(self, registry, media_size_data) -> None:
        catalog = validate(media_size_data, registry)
        catalog.floor_min = 2.0
        result = get_first_matching_floor(catalog, {}, _response("banner", [300, 250]), registry=registry)
        assert result.matching_floor == 2.0
        assert result.floor_rule_value == 1.5

    def test_request_floor_min_overrides_catalog(self, registry, media_size_data) -> None:
        catalog = validate(media_size_data, registry)
        catalog.floor_min = 2.0
        request = {"ortb2Imp": {"ext": {"prebid": {"floors": {"floorMin": 3}}}}}
        result = get_first_matching_floor(catalog, request, _response("banner", [300, 250]), registry=registry)
        assert result.matching_floor == 3.0
        assert result.floor_min == 3.0


class TestDefaultRule:
    def test_default_rule_match_reports_no_rule(self, registry) -> None:
        data = {"schema": {"fields": ["mediaType"]}, "values": {"banner": 1.0}, "default": 0.2}
        catalog = validate(data, registry)
        result = get_first_matching_floor(catalog, {}, {"mediaType": "video"}, registry=registry)
        assert result.matching_floor == 0.2
        assert result.matching_rule is None

    def test_explicit_rule_still_reported(self, registry) -> None:
        data = {"schema": {"fields": ["mediaType"]}, "values": {"banner": 1.0}, "default": 0.2}
        catalog = validate(data, registry)
        result = get_first_matching_floor(catalog, {}, {"mediaType": "banner"}, registry=registry)
        assert result.matching_rule == "banner"

    def test_default_only_catalog(self, registry) -> None:
        catalog = validate({"default": 0.4}, registry)
        result = get_first_matching_floor(catalog, {}, {"mediaType": "video"}, registry=registry)
        assert result.matching_floor == 0.4


class TestMemoization:
    def test_second_match_does_not_re_enumerate(self, registry, media_size_data) -> None:
        catalog = validate(media_size_data, registry)
        with mock.patch.object(
            matching, "generate_possible_enumerations", wraps=generate_possible_enumerations
        ) as counter:
            first = get_first_matching_floor(catalog, {}, _response("banner", [300, 250]), registry=registry)
            second = get_first_matching_floor(catalog, {}, _response("banner", [300, 250]), registry=registry)
            assert counter.call_count == 1

            get_first_matching_floor(catalog, {}, _response("banner", [728, 90]), registry=registry)
            assert counter.call_count == 2

        assert first == second
        assert first is not second

    def test_cached_result_is_not_shared(self, registry, media_size_data) -> None:
        catalog = validate(media_size_data, registry)
        first = get_first_matching_floor(catalog, {}, _response("banner", [300, 250]), registry=registry)
        first.matching_floor = 99.0
        again = get_first_matching_floor(catalog, {}, _response("banner", [300, 250]), registry=registry)
        assert again.matching_floor == 1.5


def test_custom_field_resolver(registry) -> None:
    registry.register("deviceType", lambda req, resp: req.get("device"))
    catalog = validate(
        {"schema": {"fields": ["deviceType", "mediaType"]}, "values": {"mobile|banner": 0.8, "*|banner": 0.3}},
        registry,
    )
    assert get_first_matching_floor(catalog, {"device": "mobile"}, {"mediaType": "banner"}, registry=registry).matching_floor == 0.8
    assert get_first_matching_floor(catalog, {"device": "tablet"}, {"mediaType": "banner"}, registry=registry).matching_floor == 0.3
