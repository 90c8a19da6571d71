"""Rule catalog validation."""

from __future__ import annotations

import copy

from pricefloors.services.floors.models import SYN_FIELD, MultiModelCatalog, RuleCatalog
from pricefloors.services.floors.validator import parse_floor_data, validate


def test_valid_v1_catalog(registry, media_size_data) -> None:
    catalog = validate(media_size_data, registry)
    assert isinstance(catalog, RuleCatalog)
    assert catalog.fields == ["mediaType", "size"]
    assert catalog.values == {"banner|300x250": 1.5, "banner|*": 1.0, "*|*": 0.5}
    assert catalog.currency == "USD"
    assert catalog.default_rule is None


def test_input_is_not_mutated(registry, media_size_data) -> None:
    before = copy.deepcopy(media_size_data)
    validate(media_size_data, registry)
    assert media_size_data == before


def test_unknown_field_rejects_catalog(registry) -> None:
    data = {"schema": {"fields": ["mediaType", "browser"]}, "values": {"banner|chrome": 1.0}}
    assert validate(data, registry) is None


def test_custom_field_is_accepted_once_registered(registry) -> None:
    data = {"schema": {"fields": ["browser"]}, "values": {"chrome": 1.0}}
    assert validate(data, registry) is None
    registry.register("browser", lambda req, resp: req.get("browser"))
    assert validate(data, registry).values == {"chrome": 1.0}


def test_invalid_rules_are_dropped(registry) -> None:
    data = {
        "schema": {"fields": ["mediaType", "size"]},
        "values": {
            "banner|300x250": 1.0,
            "banner": 2.0,            # wrong segment count
            "video|*": "3",           # not a number
            "native|*": -1,           # negative
            "banner|728x90": True,    # bools are not prices
        },
    }
    catalog = validate(data, registry)
    assert catalog.values == {"banner|300x250": 1.0}


def test_no_surviving_rule_rejects_catalog(registry) -> None:
    data = {"schema": {"fields": ["mediaType"]}, "values": {"banner|x": 1.0}}
    assert validate(data, registry) is None


def test_scalar_default_becomes_wildcard_rule(registry) -> None:
    data = {"schema": {"fields": ["mediaType", "size"]}, "values": {"banner|300x250": 1.0}, "default": 0.2}
    catalog = validate(data, registry)
    assert catalog.values["*|*"] == 0.2
    assert catalog.default_rule == "*|*"


def test_explicit_wildcard_rule_wins_over_default(registry) -> None:
    data = {"schema": {"fields": ["mediaType"]}, "values": {"*": 0.7}, "default": 0.2}
    catalog = validate(data, registry)
    assert catalog.values == {"*": 0.7}
    assert catalog.default_rule is None


def test_default_only_catalog_uses_synthetic_field(registry) -> None:
    catalog = validate({"default": 0.5}, registry)
    assert catalog.fields == [SYN_FIELD]
    assert catalog.values == {"*": 0.5}


def test_delimiter_must_be_single_character(registry) -> None:
    data = {"schema": {"fields": ["mediaType", "size"], "delimiter": "||"}, "values": {"banner||*": 1.0}}
    assert validate(data, registry) is None


def test_non_string_delimiter_with_default(registry) -> None:
    data = {"default": 1.0, "schema": {"fields": ["mediaType"], "delimiter": 5}, "values": {"banner": 2.0}}
    assert validate(data, registry) is None


def test_unknown_schema_version(registry, media_size_data) -> None:
    media_size_data["floorsSchemaVersion"] = 3
    assert validate(media_size_data, registry) is None


def test_boolean_schema_version_is_rejected(registry, media_size_data) -> None:
    media_size_data["floorsSchemaVersion"] = True
    assert validate(media_size_data, registry) is None


def test_not_a_mapping(registry) -> None:
    assert validate(["banner"], registry) is None
    assert validate(None, registry) is None


class TestSchemaV2:
    def _data(self):
        return {
            "floorsSchemaVersion": 2,
            "currency": "EUR",
            "skipRate": 10,
            "modelGroups": [
                {
                    "modelWeight": 1,
                    "modelVersion": "m1",
                    "schema": {"fields": ["mediaType"]},
                    "values": {"banner": 1.0},
                },
                {
                    "modelWeight": 3,
                    "modelVersion": "m2",
                    "schema": {"fields": ["size"]},
                    "values": {"300x250": 2.0},
                    "default": 0.1,
                },
            ],
        }

    def test_weights_are_summed(self, registry) -> None:
        catalog = validate(self._data(), registry)
        assert isinstance(catalog, MultiModelCatalog)
        assert catalog.model_weight_sum == 4
        assert [g.weight for g in catalog.model_groups] == [1, 3]
        assert catalog.model_groups[1].catalog.values == {"300x250": 2.0, "*": 0.1}

    def test_non_positive_weight_rejects_catalog(self, registry) -> None:
        data = self._data()
        data["modelGroups"][0]["modelWeight"] = 0
        assert validate(data, registry) is None

    def test_invalid_group_rejects_catalog(self, registry) -> None:
        data = self._data()
        data["modelGroups"][1]["schema"]["fields"] = ["nope"]
        assert validate(data, registry) is None

    def test_promote_merges_top_level_settings(self, registry) -> None:
        catalog = validate(self._data(), registry)
        promoted = catalog.promote(catalog.model_groups[0])
        assert promoted.currency == "EUR"
        assert promoted.skip_rate == 10
        assert promoted.model_weight == 1
        assert promoted.model_version == "m1"


class TestRevalidation:
    def test_v1_is_idempotent(self, registry) -> None:
        data = {
            "currency": "USD",
            "modelVersion": "v-1",
            "schema": {"fields": ["mediaType", "size"]},
            "values": {"banner|300x250": 1.5, "banner|*": 1.0, "bad": 9},
            "default": 0.25,
            "noFloorSignalBidders": ["x"],
        }
        first = validate(data, registry)
        second = validate(first.to_dict(), registry)
        assert second == first
        assert second.values == {"banner|300x250": 1.5, "banner|*": 1.0, "*|*": 0.25}

    def test_v2_is_idempotent(self, registry) -> None:
        first = validate(TestSchemaV2()._data(), registry)
        second = validate(first.to_dict(), registry)
        assert second == first

    def test_default_only_is_idempotent(self, registry) -> None:
        first = validate({"default": 0.5}, registry)
        assert validate(first.to_dict(), registry) == first


def test_parse_floor_data_sets_location(registry, media_size_data) -> None:
    catalog = parse_floor_data(media_size_data, "setConfig", registry)
    assert catalog.location == "setConfig"
    assert parse_floor_data({"values": {}}, "fetch", registry) is None
