from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from pricefloors.core.errors import FloorsError
from pricefloors.schemas.floors_api import (
    BidResponseRequest,
    BidResponseResult,
    FloorQueryRequest,
    OrtbImpRequest,
    OrtbRequestAnnotation,
    StartAuctionRequest,
)
from pricefloors.services.floors.floors_service import OrtbImp

router = APIRouter()


def _public_bid(bid: Dict[str, Any]) -> Dict[str, Any]:
    # getFloor is a callable; expose whether it is attached instead
    out = {k: v for k, v in bid.items() if k != "getFloor"}
    out["hasFloorQuery"] = callable(bid.get("getFloor"))
    return out


def _get_participant(request: Request, auction_id: str, bid_id: str) -> Dict[str, Any]:
    floors = request.state.floors
    auction = floors.get_auction(auction_id)
    if auction is None:
        raise HTTPException(status_code=404, detail=f"No floor data for auction {auction_id}")
    participant = auction.participants.get(bid_id)
    if participant is None:
        raise HTTPException(status_code=404, detail=f"Unknown bid {bid_id} in auction {auction_id}")
    return participant


@router.get("/config")
def get_floors_config(request: Request):
    return request.state.floors.describe()


@router.put("/config")
async def put_floors_config(request: Request, body: Dict[str, Any]):
    """
    Apply a floors configuration.
    - async so a configured endpoint fetch is scheduled on the server loop
    """
    floors = request.state.floors
    try:
        floors.set_config(body)
    except (ValueError, FloorsError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return floors.describe()


@router.post("/auctions")
async def start_auction(request: Request, payload: StartAuctionRequest):
    floors = request.state.floors

    line_items = [li.model_dump(by_alias=True, exclude_unset=True) for li in payload.line_items]
    auction_request: Dict[str, Any] = {"lineItems": line_items}
    if payload.auction_id:
        auction_request["auctionId"] = payload.auction_id
    if payload.debug_skip_rate is not None:
        auction_request["debugSkipRate"] = payload.debug_skip_rate

    result = await floors.start_auction(auction_request)

    auction = floors.get_auction(result["auctionId"])
    return {
        "auctionId": result["auctionId"],
        "floorsApplied": auction is not None,
        "skipped": auction.skipped if auction else None,
        "fetchStatus": auction.fetch_status if auction else None,
        "location": auction.location if auction else None,
        "lineItems": [
            {**li, "bids": [_public_bid(b) for b in li.get("bids") or []]}
            for li in result.get("lineItems") or []
        ],
    }


@router.post("/auctions/{auction_id}/floor")
def query_floor(request: Request, auction_id: str, payload: FloorQueryRequest):
    participant = _get_participant(request, auction_id, payload.bid_id)
    params = {"currency": payload.currency, "mediaType": payload.media_type, "size": payload.size}
    return request.state.floors.get_floor(participant, params)


@router.post("/auctions/{auction_id}/bids", response_model=BidResponseResult)
def add_bid_response(request: Request, auction_id: str, payload: BidResponseRequest):
    bid = dict(payload.bid)
    bid.setdefault("auctionId", auction_id)
    if bid["auctionId"] != auction_id:
        raise HTTPException(status_code=400, detail="bid.auctionId does not match the auction")

    result = request.state.floors.add_bid_response(payload.ad_unit_code, bid)
    return {
        "status": "accepted" if result.accepted else "rejected",
        "reason": result.reason,
        "bid": bid,
    }


@router.post("/auctions/{auction_id}/ortb")
def annotate_ortb_imp(request: Request, auction_id: str, payload: OrtbImpRequest):
    participant = _get_participant(request, auction_id, payload.bid_id)
    imp = dict(payload.imp)
    imp.setdefault("id", payload.bid_id)
    return request.state.floors.annotate_ortb_imp(
        participant,
        imp,
        currency=payload.currency,
        media_type=payload.media_type,
        pbs=payload.pbs,
    )


@router.post("/auctions/{auction_id}/ortb/request")
def annotate_ortb_request(request: Request, auction_id: str, payload: OrtbRequestAnnotation):
    imps = []
    for entry in payload.imps:
        participant = _get_participant(request, auction_id, entry.bid_id)
        imp = dict(entry.imp)
        imp.setdefault("id", entry.bid_id)
        imps.append(OrtbImp(participant, imp, entry.currency, entry.media_type))
    return request.state.floors.annotate_ortb_request(imps, dict(payload.request), pbs=payload.pbs)


@router.post("/auctions/{auction_id}/end")
async def end_auction(request: Request, auction_id: str):
    floors = request.state.floors
    floors.on_auction_end(auction_id)
    return {"auctionId": auction_id, "retentionMs": floors.retention_ms}
