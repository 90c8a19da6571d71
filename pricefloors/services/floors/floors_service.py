# pricefloors/services/floors/floors_service.py
"""
Floors service facade.

Owns the process-wide floors state that the auction pipeline talks to:
- the active configuration (static config + whatever a fetch replaced)
- the field registry (built-ins + publisher fields)
- the fetch/delay coordinator
- the per-auction floor data table
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import Any, Callable, Dict, Iterable, NamedTuple, Optional, Union

from pricefloors.core.config import settings
from pricefloors.core.utils import is_number
from pricefloors.infra.currency import CurrencyConverter, RateTableConverter
from pricefloors.infra.http_client import get_floors_payload
from pricefloors.repositories.auction_floor_repo import AuctionFloorRepository
from pricefloors.schemas.floors_config import FloorsConfig
from pricefloors.services.floors import enforcement, ortb
from pricefloors.services.floors.adjustments import BidderSettings
from pricefloors.services.floors.coordinator import DeferredAuction, Fetcher, FetchCoordinator, NextFn
from pricefloors.services.floors.fields import FieldRegistry
from pricefloors.services.floors.models import (
    ActiveFloorsConfig,
    AuctionFloorData,
    EnforcementResult,
)
from pricefloors.services.floors.resolver import RandomSource, create_floors_data_for_auction
from pricefloors.services.floors.validator import parse_floor_data

logger = logging.getLogger(__name__)


class OrtbImp(NamedTuple):
    bid_request: Dict[str, Any]
    imp: Dict[str, Any]
    currency: Optional[str] = None
    media_type: Optional[str] = None


class FloorQuery:
    """`getFloor` callable handed to a participant."""

    def __init__(self, service: "FloorsService", bid_request: Dict[str, Any]):
        self._service = service
        self._bid_request = bid_request

    def __call__(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._service.get_floor(self._bid_request, params)


class FloorsService:
    def __init__(
        self,
        *,
        registry: Optional[FieldRegistry] = None,
        repository: Optional[AuctionFloorRepository] = None,
        converter: Optional[CurrencyConverter] = None,
        bidder_settings: Optional[BidderSettings] = None,
        random_source: RandomSource = random.random,
        fetcher: Fetcher = get_floors_payload,
        fetch_timeout: float = settings.FLOORS_FETCH_TIMEOUT_SECONDS,
        retention_ms: int = settings.FLOOR_DATA_RETENTION_MS,
    ):
        self.registry = registry or FieldRegistry()
        self.repository = repository or AuctionFloorRepository()
        self.converter = converter or RateTableConverter()
        self.bidder_settings = bidder_settings or BidderSettings()
        self.random_source = random_source
        self.retention_ms = retention_ms

        self.active: Optional[ActiveFloorsConfig] = None
        self.coordinator = FetchCoordinator(
            fetcher=fetcher,
            continue_auction=self._build_auction_floor_data,
            apply_payload=self._apply_fetched_data,
            timeout_seconds=fetch_timeout,
        )

    @property
    def enabled(self) -> bool:
        return self.active is not None

    # =====================================================
    # Configuration
    # =====================================================

    def set_config(self, config: Union[FloorsConfig, Dict[str, Any]]) -> None:
        """
        Apply a floors configuration.
        - enabled=false tears everything down
        - invalid inline data is logged and dropped, the rest still applies
        - a configured endpoint starts a fetch (unless one is in flight)
        """
        if not isinstance(config, FloorsConfig):
            config = FloorsConfig.model_validate(config)

        if not config.enabled:
            logger.info("Price Floors: disabled by configuration")
            self.disable()
            return

        self.registry.register_many(config.additional_schema_fields)

        data = parse_floor_data(config.data, "setConfig", self.registry) if config.data else None

        raw = config.data or {}
        skip_rate = raw.get("skipRate") if is_number(raw.get("skipRate")) else config.skip_rate
        self.active = ActiveFloorsConfig(
            config=config,
            data=data,
            skip_rate=skip_rate,
            floor_provider=raw.get("floorProvider") or config.floor_provider,
        )

        self.coordinator.generate_and_handle_fetch(config.endpoint)

    def disable(self) -> None:
        self.active = None
        # parked auctions resume here, without floors
        self.coordinator.reset()
        self.repository.clear()
        self.registry.reset()

    def _apply_fetched_data(self, payload: Any) -> None:
        if self.active is None:
            return
        catalog = parse_floor_data(payload, "fetch", self.registry)
        if catalog is None:
            return
        self.active.data = catalog
        if is_number(payload.get("skipRate")):
            self.active.skip_rate = payload["skipRate"]
        if payload.get("floorProvider"):
            self.active.floor_provider = payload["floorProvider"]

    # =====================================================
    # Auction lifecycle
    # =====================================================

    def request_bids_hook(self, next_fn: NextFn, request: Dict[str, Any]) -> Optional[DeferredAuction]:
        if self.active is None:
            next_fn(request)
            return None
        return self.coordinator.request_bids_hook(
            next_fn, request, auction_delay_ms=self.active.config.auction_delay
        )

    async def start_auction(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Runs the request through the hook; resolves once the auction may proceed."""
        request.setdefault("auctionId", str(uuid.uuid4()))
        done: asyncio.Future = asyncio.get_running_loop().create_future()

        def _next(req: Dict[str, Any]) -> None:
            if not done.done():
                done.set_result(req)

        self.request_bids_hook(_next, request)
        return await done

    def _build_auction_floor_data(self, request: Dict[str, Any], fetch_status: Optional[str]) -> None:
        if self.active is None:
            return
        auction_id = request.setdefault("auctionId", str(uuid.uuid4()))
        floor_data = create_floors_data_for_auction(
            request.get("lineItems") or [],
            auction_id,
            self.active,
            registry=self.registry,
            random_source=self.random_source,
            skip_rate_override=request.get("debugSkipRate", request.get("pbjs_skipRate")),
            fetch_status=fetch_status,
            floor_query_factory=self._floor_query,
        )
        self.repository.save(floor_data)
        logger.debug(
            "auction %s floors: skipped=%s location=%s fetch_status=%s",
            auction_id, floor_data.skipped, floor_data.location, fetch_status,
        )

    def _floor_query(self, bid_request: Dict[str, Any]) -> Callable[..., Dict[str, Any]]:
        return FloorQuery(self, bid_request)

    def on_auction_end(self, auction_id: str) -> None:
        self.repository.schedule_eviction(auction_id, self.retention_ms)

    def get_auction(self, auction_id: str) -> Optional[AuctionFloorData]:
        return self.repository.get(auction_id)

    # =====================================================
    # Floors
    # =====================================================

    def get_floor(self, bid_request: Dict[str, Any], params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = dict(params or {})
        if not params.get("currency"):
            params["currency"] = settings.DEFAULT_CURRENCY
        return enforcement.get_floor(
            self.repository.get(bid_request.get("auctionId")),
            bid_request,
            params,
            registry=self.registry,
            converter=self.converter,
            bidder_settings=self.bidder_settings,
        )

    def add_bid_response(self, ad_unit_code: Optional[str], bid: Dict[str, Any]) -> EnforcementResult:
        return enforcement.add_bid_response(
            self.repository.get(bid.get("auctionId")),
            ad_unit_code,
            bid,
            registry=self.registry,
            converter=self.converter,
            bidder_settings=self.bidder_settings,
        )

    def annotate_ortb_imp(
        self,
        bid_request: Dict[str, Any],
        imp: Dict[str, Any],
        *,
        currency: Optional[str] = None,
        media_type: Optional[str] = None,
        pbs: bool = False,
    ) -> Dict[str, Any]:
        """
        OpenRTB annotation for one participant.
        Returns {"imp": ..., "request": ...}; `request` carries the PBS ext only when pbs=True.
        """
        out = self.annotate_ortb_request([OrtbImp(bid_request, imp, currency, media_type)], pbs=pbs)
        return {"imp": out["imps"][0], "request": out["request"]}

    def annotate_ortb_request(
        self,
        imps: Iterable[OrtbImp],
        ortb_request: Optional[Dict[str, Any]] = None,
        *,
        pbs: bool = False,
    ) -> Dict[str, Any]:
        """
        OpenRTB annotation for a whole request.
        - every imp gets bidfloor/bidfloorcur in its own requested currency
        - with pbs=True the floorMin summary spans all imps, in the first imp's currency
        """
        ortb_request = ortb_request if ortb_request is not None else {}
        req_context: Dict[str, Any] = {}
        annotated = []
        for entry in imps:
            context = {"currency": entry.currency or settings.DEFAULT_CURRENCY, "mediaType": entry.media_type}
            ortb.set_ortb_imp_bid_floor(entry.imp, entry.bid_request, context)
            if pbs:
                ortb.set_imp_ext_prebid_floors(entry.imp, req_context, self.converter)
            annotated.append(entry.imp)

        if pbs:
            ortb.set_ortb_ext_prebid_floors(ortb_request, req_context, floors_active=self.enabled)
        return {"imps": annotated, "request": ortb_request}

    def describe(self) -> Dict[str, Any]:
        active = self.active
        return {
            "enabled": self.enabled,
            "config": active.config.public_dict() if active else None,
            "data": active.data.to_dict() if active and active.data is not None else None,
            "location": active.data.location if active and active.data is not None else None,
            "skipRate": active.skip_rate if active else None,
            "floorProvider": active.floor_provider if active else None,
            "fetching": self.coordinator.fetching,
            "fetchStatus": self.coordinator.fetch_status,
            "pendingAuctions": self.coordinator.pending_auctions,
            "customFields": self.registry.custom_fields,
            "auctions": len(self.repository),
        }
