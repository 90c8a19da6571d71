# pricefloors/repositories/auction_floor_repo.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from pricefloors.services.floors.models import AuctionFloorData

logger = logging.getLogger(__name__)


class AuctionFloorRepository:
    """
    In-process table of per-auction floor data, keyed by auction id.

    - one record per auction, written once when the auction starts
    - evicted some time after auction end so late bids still see floors
    - missing records mean "no floor", never an error
    """

    def __init__(self) -> None:
        self._rows: Dict[str, AuctionFloorData] = {}
        self._evictions: Dict[str, asyncio.TimerHandle] = {}

    def save(self, floor_data: AuctionFloorData) -> None:
        self._rows[floor_data.auction_id] = floor_data

    def get(self, auction_id: Optional[str]) -> Optional[AuctionFloorData]:
        if not auction_id:
            return None
        return self._rows.get(auction_id)

    def list_ids(self) -> List[str]:
        return list(self._rows.keys())

    def delete(self, auction_id: str) -> None:
        self._rows.pop(auction_id, None)
        handle = self._evictions.pop(auction_id, None)
        if handle is not None:
            handle.cancel()

    def schedule_eviction(self, auction_id: str, delay_ms: int) -> None:
        if auction_id not in self._rows:
            return
        previous = self._evictions.pop(auction_id, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._evictions[auction_id] = loop.call_later(delay_ms / 1000.0, self._evict, auction_id)

    def _evict(self, auction_id: str) -> None:
        self._evictions.pop(auction_id, None)
        self._rows.pop(auction_id, None)
        logger.debug("evicted floor data for auction %s", auction_id)

    def clear(self) -> None:
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions = {}
        self._rows = {}

    def __len__(self) -> int:
        return len(self._rows)
