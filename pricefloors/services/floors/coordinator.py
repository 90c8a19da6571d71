# pricefloors/services/floors/coordinator.py
"""
Fetch & delay coordination.

State: idle -> fetching -> (success | error) -> idle.
- at most one outstanding fetch; a second request while fetching is ignored
- auctions started while fetching (and auction_delay > 0) are parked with a
  timer; fetch settlement resumes all of them in order, a timer resumes only
  its own auction with fetch status `timeout`
- every parked auction resumes exactly once
- reset() bumps the generation so a fetch started before a disable is dropped
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pricefloors.schemas.floors_config import EndpointConfig
from pricefloors.services.floors.models import FETCH_ERROR, FETCH_SUCCESS, FETCH_TIMEOUT

logger = logging.getLogger(__name__)

Fetcher = Callable[..., Awaitable[Any]]
NextFn = Callable[[Dict[str, Any]], Any]


@dataclass(eq=False)
class DeferredAuction:
    request: Dict[str, Any]
    next_fn: NextFn
    timer: Optional[asyncio.TimerHandle] = None
    has_exited: bool = False


class FetchCoordinator:
    def __init__(
        self,
        *,
        fetcher: Fetcher,
        continue_auction: Callable[[Dict[str, Any], Optional[str]], None],
        apply_payload: Callable[[Any], None],
        timeout_seconds: float = 10.0,
    ):
        self._fetcher = fetcher
        self._continue = continue_auction
        self._apply_payload = apply_payload
        self.timeout_seconds = timeout_seconds

        self.fetching = False
        self.fetch_status: Optional[str] = None
        self._delayed: List[DeferredAuction] = []
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def pending_auctions(self) -> int:
        return len(self._delayed)

    # =====================================================
    # Fetch
    # =====================================================

    def generate_and_handle_fetch(self, endpoint: EndpointConfig) -> Optional[asyncio.Task]:
        if not endpoint.url:
            return None
        if self.fetching:
            logger.warning("Price Floors: a fetch is already occurring. Skipping.")
            return None

        method = (endpoint.method or "GET").upper()
        if method != "GET":
            logger.error("Price Floors: 'GET' is the only request method supported at this time!")
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Price Floors: no running event loop, fetch of %s skipped", endpoint.url)
            return None

        self.fetching = True
        self._task = loop.create_task(self._run_fetch(endpoint.url, self._generation))
        return self._task

    async def _run_fetch(self, url: str, generation: int) -> None:
        try:
            payload = await self._fetcher(url, timeout=self.timeout_seconds)
        except Exception as e:  # transport, status or decoding failure
            if generation != self._generation:
                logger.info("Price Floors: discarding failed fetch for a superseded config")
                return
            self.handle_fetch_error(e)
            return

        if generation != self._generation:
            logger.info("Price Floors: discarding fetched data for a superseded config")
            return
        self.handle_fetch_response(payload)

    def handle_fetch_response(self, payload: Any) -> None:
        self.fetching = False
        self.fetch_status = FETCH_SUCCESS
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError:
                pass
        try:
            self._apply_payload(payload)
        except Exception as e:
            logger.error("Price Floors: fetched data rejected: %s", e)
        finally:
            self.resume_delayed_auctions()

    def handle_fetch_error(self, error: Exception) -> None:
        self.fetching = False
        self.fetch_status = FETCH_ERROR
        logger.error("Price Floors: fetch errored with: %s", error)
        self.resume_delayed_auctions()

    # =====================================================
    # Auction deferral
    # =====================================================

    def request_bids_hook(self, next_fn: NextFn, request: Dict[str, Any], *, auction_delay_ms: int) -> DeferredAuction:
        deferred = DeferredAuction(request=request, next_fn=next_fn)
        if auction_delay_ms > 0 and self.fetching:
            loop = asyncio.get_running_loop()
            deferred.timer = loop.call_later(auction_delay_ms / 1000.0, self._on_timeout, deferred)
            self._delayed.append(deferred)
        else:
            self.continue_auction(deferred)
        return deferred

    def _on_timeout(self, deferred: DeferredAuction) -> None:
        logger.warning("Price Floors: fetch attempt did not return in time for auction")
        self.continue_auction(deferred, fetch_status=FETCH_TIMEOUT)

    def continue_auction(self, deferred: DeferredAuction, fetch_status: Optional[str] = None) -> None:
        if deferred.has_exited:
            return
        deferred.has_exited = True
        if deferred in self._delayed:
            self._delayed.remove(deferred)
        if deferred.timer is not None:
            deferred.timer.cancel()

        try:
            self._continue(deferred.request, fetch_status or self.fetch_status)
        except Exception:
            # the auction still runs, without floors
            logger.exception(
                "Price Floors: could not build floor data for auction %s", deferred.request.get("auctionId")
            )
        deferred.next_fn(deferred.request)

    def resume_delayed_auctions(self) -> None:
        delayed, self._delayed = self._delayed, []
        for deferred in delayed:
            self.continue_auction(deferred)

    def reset(self) -> None:
        self._generation += 1
        self.fetching = False
        self.fetch_status = None
        self._task = None
        # parked auctions still have to run, with whatever config is now active
        self.resume_delayed_auctions()
