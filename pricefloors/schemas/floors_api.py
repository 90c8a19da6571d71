from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuctionBid(BaseModel):
    """One participant of a line item; unknown bidder params pass through."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    bidder: Optional[str] = None
    bid_id: Optional[str] = Field(None, alias="bidId")
    media_types: Optional[Dict[str, Any]] = Field(None, alias="mediaTypes")
    ortb2_imp: Optional[Dict[str, Any]] = Field(None, alias="ortb2Imp")


class LineItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    code: Optional[str] = None
    media_types: Optional[Dict[str, Any]] = Field(None, alias="mediaTypes")
    ortb2_imp: Optional[Dict[str, Any]] = Field(None, alias="ortb2Imp")
    floors: Optional[Dict[str, Any]] = None
    bids: List[AuctionBid] = Field(default_factory=list)


class StartAuctionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auction_id: Optional[str] = Field(None, alias="auctionId")
    line_items: List[LineItem] = Field(default_factory=list, alias="lineItems")
    # debug override of the skip rate, percent
    debug_skip_rate: Optional[float] = Field(None, alias="debugSkipRate", ge=0, le=100)


class FloorQueryRequest(BaseModel):
    bid_id: str = Field(..., alias="bidId")
    currency: Optional[str] = None
    media_type: Optional[str] = Field(None, alias="mediaType")
    size: Optional[Any] = None


class BidResponseRequest(BaseModel):
    ad_unit_code: Optional[str] = Field(None, alias="adUnitCode")
    bid: Dict[str, Any]


class BidResponseResult(BaseModel):
    status: str
    reason: Optional[str] = None
    bid: Dict[str, Any]


class OrtbImpRequest(BaseModel):
    bid_id: str = Field(..., alias="bidId")
    imp: Dict[str, Any] = Field(default_factory=dict)
    currency: Optional[str] = None
    media_type: Optional[str] = Field(None, alias="mediaType")
    pbs: bool = False


class OrtbRequestImp(BaseModel):
    bid_id: str = Field(..., alias="bidId")
    imp: Dict[str, Any] = Field(default_factory=dict)
    currency: Optional[str] = None
    media_type: Optional[str] = Field(None, alias="mediaType")


class OrtbRequestAnnotation(BaseModel):
    imps: List[OrtbRequestImp] = Field(..., min_length=1)
    request: Dict[str, Any] = Field(default_factory=dict)
    pbs: bool = False
