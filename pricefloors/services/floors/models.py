# pricefloors/services/floors/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pricefloors.schemas.floors_config import EnforcementConfig, FloorsConfig

WILDCARD = "*"
DEFAULT_DELIMITER = "|"
DEFAULT_CURRENCY = "USD"

FETCH_SUCCESS = "success"
FETCH_ERROR = "error"
FETCH_TIMEOUT = "timeout"


class _SyntheticField:
    """Hidden field used by default-only catalogs; always resolves to '*'."""

    _instance: Optional["_SyntheticField"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SYN_FIELD"

    def __deepcopy__(self, memo):
        return self

    def __copy__(self):
        return self


SYN_FIELD = _SyntheticField()

FieldName = Union[str, _SyntheticField]


# =========================================================
# Match result
# =========================================================

@dataclass
class MatchResult:
    matching_floor: Optional[float] = None
    floor_min: float = 0.0
    floor_rule_value: Optional[float] = None
    # most specific candidate key; carries every resolved exact value
    matching_data: Optional[str] = None
    # None when nothing matched or the synthesized default matched
    matching_rule: Optional[str] = None


# =========================================================
# Rule catalogs
# =========================================================

@dataclass
class RuleCatalog:
    fields: List[FieldName]
    values: Dict[str, float]
    delimiter: str = DEFAULT_DELIMITER
    currency: Optional[str] = None
    floor_min: Optional[float] = None
    default: Optional[float] = None
    default_rule: Optional[str] = None
    skip_rate: Optional[float] = None
    floor_provider: Optional[str] = None
    model_version: Optional[str] = None
    model_weight: Optional[float] = None
    model_timestamp: Optional[int] = None
    no_floor_signal_bidders: List[str] = field(default_factory=list)
    location: Optional[str] = None
    schema_version: int = 1
    matching_inputs: Dict[str, MatchResult] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """
        Wire form, accepted back by the validator.
        The synthesized default rule is emitted as `default`, not as a value,
        so re-validation rebuilds it the same way.
        """
        out: Dict[str, Any] = {
            "floorsSchemaVersion": self.schema_version,
            "schema": {
                "fields": [f for f in self.fields if f is not SYN_FIELD],
                "delimiter": self.delimiter,
            },
            "values": {k: v for k, v in self.values.items() if k != self.default_rule},
        }
        optional = {
            "default": self.default,
            "currency": self.currency,
            "floorMin": self.floor_min,
            "skipRate": self.skip_rate,
            "floorProvider": self.floor_provider,
            "modelVersion": self.model_version,
            "modelWeight": self.model_weight,
            "modelTimestamp": self.model_timestamp,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        if self.no_floor_signal_bidders:
            out["noFloorSignalBidders"] = list(self.no_floor_signal_bidders)
        return out


@dataclass
class ModelGroup:
    catalog: RuleCatalog
    weight: float


@dataclass
class MultiModelCatalog:
    """Schema v2: weighted alternatives, one sampled per auction."""

    model_groups: List[ModelGroup]
    model_weight_sum: float
    currency: Optional[str] = None
    floor_min: Optional[float] = None
    skip_rate: Optional[float] = None
    floor_provider: Optional[str] = None
    model_timestamp: Optional[int] = None
    no_floor_signal_bidders: List[str] = field(default_factory=list)
    location: Optional[str] = None
    schema_version: int = 2

    def promote(self, group: ModelGroup) -> RuleCatalog:
        """Merge top-level settings under the sampled group's own settings."""
        c = group.catalog
        return RuleCatalog(
            fields=list(c.fields),
            values=dict(c.values),
            delimiter=c.delimiter,
            currency=c.currency or self.currency,
            floor_min=c.floor_min if c.floor_min is not None else self.floor_min,
            default=c.default,
            default_rule=c.default_rule,
            skip_rate=c.skip_rate if c.skip_rate is not None else self.skip_rate,
            floor_provider=c.floor_provider or self.floor_provider,
            model_version=c.model_version,
            model_weight=group.weight,
            model_timestamp=c.model_timestamp if c.model_timestamp is not None else self.model_timestamp,
            no_floor_signal_bidders=list(c.no_floor_signal_bidders or self.no_floor_signal_bidders),
            location=self.location,
            schema_version=1,
        )

    def to_dict(self) -> Dict[str, Any]:
        groups = []
        for g in self.model_groups:
            d = g.catalog.to_dict()
            d.pop("floorsSchemaVersion", None)
            d["modelWeight"] = g.weight
            groups.append(d)
        out: Dict[str, Any] = {"floorsSchemaVersion": 2, "modelGroups": groups}
        optional = {
            "currency": self.currency,
            "floorMin": self.floor_min,
            "skipRate": self.skip_rate,
            "floorProvider": self.floor_provider,
            "modelTimestamp": self.model_timestamp,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        if self.no_floor_signal_bidders:
            out["noFloorSignalBidders"] = list(self.no_floor_signal_bidders)
        return out


Catalog = Union[RuleCatalog, MultiModelCatalog]


# =========================================================
# Service / auction state
# =========================================================

@dataclass
class ActiveFloorsConfig:
    """Configuration currently in force, plus whatever a fetch replaced."""

    config: FloorsConfig
    data: Optional[Catalog] = None
    skip_rate: float = 0.0
    floor_provider: Optional[str] = None

    @property
    def enforcement(self) -> EnforcementConfig:
        return self.config.enforcement


@dataclass
class AuctionFloorData:
    auction_id: str
    catalog: Optional[RuleCatalog]
    enforcement: EnforcementConfig
    skipped: bool
    skip_rate: Optional[float] = None
    floor_min: Optional[float] = None
    floor_provider: Optional[str] = None
    fetch_status: Optional[str] = None
    # bidId -> participant request, used as matching context for responses
    participants: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def location(self) -> str:
        if self.catalog is None or not self.catalog.location:
            return "noData"
        return self.catalog.location


@dataclass
class EnforcementResult:
    accepted: bool
    reason: Optional[str] = None
