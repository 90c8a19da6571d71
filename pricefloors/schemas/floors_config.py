from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EndpointConfig(BaseModel):
    url: Optional[str] = None
    method: str = "GET"


class EnforcementConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enforce_js: bool = Field(True, alias="enforceJS")
    enforce_pbs: bool = Field(False, alias="enforcePBS")
    floor_deals: bool = Field(False, alias="floorDeals")
    bid_adjustment: bool = Field(True, alias="bidAdjustment")
    no_floor_signal_bidders: List[str] = Field(default_factory=list, alias="noFloorSignalBidders")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        # null means "use the default", same as an absent key
        if isinstance(values, dict):
            return {k: v for k, v in values.items() if v is not None}
        return values


class FloorsConfig(BaseModel):
    """
    Inbound floors configuration.

    - camelCase keys on the wire, snake_case attributes in code
    - `data` stays raw here; it is validated against the field registry
      by the floors service when the config is applied
    - `additionalSchemaFields` maps field name -> resolver callable
    """

    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    floor_min: Optional[float] = Field(None, alias="floorMin")
    auction_delay: int = Field(0, alias="auctionDelay", ge=0)
    floor_provider: Optional[str] = Field(None, alias="floorProvider")
    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    skip_rate: float = Field(0, alias="skipRate", ge=0, le=100)
    enforcement: EnforcementConfig = Field(default_factory=EnforcementConfig)
    additional_schema_fields: Dict[str, Any] = Field(default_factory=dict, alias="additionalSchemaFields")
    data: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        if isinstance(values, dict):
            return {k: v for k, v in values.items() if v is not None}
        return values

    def public_dict(self) -> Dict[str, Any]:
        """Wire form without the resolver callables."""
        out = self.model_dump(by_alias=True, exclude={"additional_schema_fields", "data"})
        out["additionalSchemaFields"] = sorted(self.additional_schema_fields.keys())
        return out
