"""Floors service facade: config handling, auction table, eviction."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from pricefloors.core.errors import ConfigError
from pricefloors.infra.currency import RateTableConverter
from pricefloors.repositories.auction_floor_repo import AuctionFloorRepository
from pricefloors.schemas.floors_config import EnforcementConfig
from pricefloors.services.floors.config_loader import load_floors_config_from_file
from pricefloors.services.floors.floors_service import FloorQuery, FloorsService, OrtbImp
from pricefloors.services.floors.models import AuctionFloorData

SAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "pricefloors" / "config" / "floors.yaml"

DATA = {
    "skipRate": 0,
    "floorProvider": "inline",
    "schema": {"fields": ["mediaType", "size"]},
    "values": {"banner|300x250": 1.5, "banner|*": 1.0, "*|*": 0.5},
}


def _line_items():
    return [
        {
            "code": "div-1",
            "mediaTypes": {"banner": {"sizes": [[300, 250]]}},
            "bids": [{"bidder": "bidderA", "bidId": "b1"}],
        }
    ]


def _run_auction(service, request):
    async def scenario():
        return await service.start_auction(request)
    return asyncio.run(scenario())


class TestSetConfig:
    def test_inline_data(self) -> None:
        service = FloorsService()
        service.set_config({"skipRate": 50, "floorProvider": "static", "data": DATA})
        assert service.enabled is True
        assert service.active.data.location == "setConfig"
        # data-level settings win over the top-level ones
        assert service.active.skip_rate == 0
        assert service.active.floor_provider == "inline"

    def test_invalid_data_still_enables(self) -> None:
        service = FloorsService()
        service.set_config({"skipRate": 20, "data": {"schema": {"fields": ["bogus"]}, "values": {"x": 1}}})
        assert service.enabled is True
        assert service.active.data is None
        assert service.active.skip_rate == 20

    def test_disabled_config_tears_down(self) -> None:
        service = FloorsService()
        service.set_config({"data": DATA, "additionalSchemaFields": {"deviceType": lambda req, resp: None}})
        assert service.registry.custom_fields == ["deviceType"]
        _run_auction(service, {"auctionId": "a1", "lineItems": _line_items()})
        assert service.get_auction("a1") is not None

        service.set_config({"enabled": False})
        assert service.enabled is False
        assert service.get_auction("a1") is None
        assert service.registry.custom_fields == []

    def test_invalid_config_raises(self) -> None:
        with pytest.raises(ValueError):
            FloorsService().set_config({"skipRate": 101})

    def test_describe_has_no_callables(self) -> None:
        service = FloorsService()
        service.set_config({"data": DATA, "additionalSchemaFields": {"deviceType": lambda req, resp: None}})
        described = service.describe()
        assert described["config"]["additionalSchemaFields"] == ["deviceType"]
        assert described["data"]["values"] == DATA["values"]
        assert described["location"] == "setConfig"


class TestAuctions:
    def test_disabled_service_passes_auction_through(self) -> None:
        service = FloorsService()
        result = _run_auction(service, {"lineItems": _line_items()})
        assert result["auctionId"]
        assert service.get_auction(result["auctionId"]) is None
        assert "floorData" not in result["lineItems"][0]["bids"][0]

    def test_floor_query_on_participant(self) -> None:
        service = FloorsService(random_source=lambda: 0.5)
        service.set_config({"data": DATA})
        result = _run_auction(service, {"auctionId": "a1", "lineItems": _line_items()})

        bid = result["lineItems"][0]["bids"][0]
        assert isinstance(bid["getFloor"], FloorQuery)
        assert bid["getFloor"]() == {"floor": 1.5, "currency": "USD"}
        assert bid["getFloor"]({"mediaType": "video"}) == {"floor": 0.5, "currency": "USD"}

    def test_debug_skip_rate(self) -> None:
        service = FloorsService(random_source=lambda: 0.5)
        service.set_config({"data": DATA})
        result = _run_auction(service, {"auctionId": "a1", "lineItems": _line_items(), "debugSkipRate": 100})
        assert service.get_auction("a1").skipped is True
        assert "getFloor" not in result["lineItems"][0]["bids"][0]

    def test_enforcement_through_service(self) -> None:
        service = FloorsService(random_source=lambda: 0.5)
        service.set_config({"data": DATA})
        _run_auction(service, {"auctionId": "a1", "lineItems": _line_items()})

        low = {"auctionId": "a1", "requestId": "b1", "cpm": 1.2, "currency": "USD",
               "mediaType": "banner", "width": 300, "height": 250, "bidderCode": "bidderA"}
        assert service.add_bid_response("div-1", low).accepted is False
        late = dict(low, auctionId="unknown")
        assert service.add_bid_response("div-1", late).accepted is True

    def test_ortb_annotation(self) -> None:
        service = FloorsService(random_source=lambda: 0.5)
        service.set_config({"data": DATA})
        _run_auction(service, {"auctionId": "a1", "lineItems": _line_items()})
        participant = service.get_auction("a1").participants["b1"]

        out = service.annotate_ortb_imp(participant, {"id": "b1"}, pbs=True)
        assert out["imp"]["bidfloor"] == 1.5
        assert out["imp"]["bidfloorcur"] == "USD"
        assert out["request"]["ext"]["prebid"]["floors"] == {"enabled": False, "floorMin": 1.5, "floorMinCur": "USD"}

    def test_ortb_request_spans_every_imp(self) -> None:
        service = FloorsService(random_source=lambda: 0.5, converter=RateTableConverter({"USD": {"EUR": 0.5}}))
        service.set_config({"data": DATA})
        line_items = _line_items() + [
            {
                "code": "div-2",
                "mediaTypes": {"banner": {"sizes": [[728, 90]]}},
                "bids": [{"bidder": "bidderA", "bidId": "b2"}],
            }
        ]
        _run_auction(service, {"auctionId": "a1", "lineItems": line_items})
        participants = service.get_auction("a1").participants

        out = service.annotate_ortb_request(
            [
                OrtbImp(participants["b1"], {"id": "b1"}, currency="EUR"),
                OrtbImp(participants["b2"], {"id": "b2"}, currency="USD"),
            ],
            pbs=True,
        )
        first, second = out["imps"]
        assert (first["bidfloor"], first["bidfloorcur"]) == (pytest.approx(0.75), "EUR")
        assert (second["bidfloor"], second["bidfloorcur"]) == (1.0, "USD")
        # the summary is kept in the first imp's currency
        floors = out["request"]["ext"]["prebid"]["floors"]
        assert floors["enabled"] is False
        assert floors["floorMinCur"] == "EUR"
        assert floors["floorMin"] == pytest.approx(0.5)

    def test_ortb_request_without_pbs_leaves_request_alone(self) -> None:
        service = FloorsService(random_source=lambda: 0.5)
        service.set_config({"data": DATA})
        _run_auction(service, {"auctionId": "a1", "lineItems": _line_items()})
        participant = service.get_auction("a1").participants["b1"]

        out = service.annotate_ortb_request([OrtbImp(participant, {"id": "b1"})], {"id": "req-1"})
        assert out["imps"] == [{"id": "b1", "bidfloor": 1.5, "bidfloorcur": "USD"}]
        assert out["request"] == {"id": "req-1"}

    def test_auction_end_evicts_after_retention(self) -> None:
        service = FloorsService(random_source=lambda: 0.5, retention_ms=20)
        service.set_config({"data": DATA})

        async def scenario():
            await service.start_auction({"auctionId": "a1", "lineItems": _line_items()})
            service.on_auction_end("a1")
            still_there = service.get_auction("a1") is not None
            await asyncio.sleep(0.06)
            return still_there

        assert asyncio.run(scenario()) is True
        assert service.get_auction("a1") is None


class TestRepository:
    def _floor_data(self, auction_id):
        return AuctionFloorData(auction_id=auction_id, catalog=None, enforcement=EnforcementConfig(), skipped=True)

    def test_save_get_delete(self) -> None:
        repo = AuctionFloorRepository()
        repo.save(self._floor_data("a1"))
        assert repo.get("a1").auction_id == "a1"
        assert repo.get(None) is None
        assert repo.list_ids() == ["a1"]
        repo.delete("a1")
        assert len(repo) == 0

    def test_clear_cancels_pending_evictions(self) -> None:
        repo = AuctionFloorRepository()

        async def scenario():
            repo.save(self._floor_data("a1"))
            repo.schedule_eviction("a1", 20)
            repo.clear()
            repo.save(self._floor_data("a1"))
            await asyncio.sleep(0.05)
            return repo.get("a1")

        assert asyncio.run(scenario()) is not None

    def test_eviction_of_unknown_auction_is_ignored(self) -> None:
        repo = AuctionFloorRepository()

        async def scenario():
            repo.schedule_eviction("missing", 10)

        asyncio.run(scenario())
        assert len(repo) == 0


class TestConfigLoader:
    def test_sample_config(self) -> None:
        config = load_floors_config_from_file(str(SAMPLE_CONFIG))
        assert config.enabled is True
        assert config.auction_delay == 0
        assert config.data["schema"]["fields"] == ["mediaType", "size"]

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigError):
            load_floors_config_from_file(str(tmp_path / "nope.yaml"))

    def test_top_level_config(self, tmp_path) -> None:
        path = tmp_path / "floors.yaml"
        path.write_text("enabled: false\nskipRate: 5\n", encoding="utf-8")
        config = load_floors_config_from_file(str(path))
        assert config.enabled is False
        assert config.skip_rate == 5
