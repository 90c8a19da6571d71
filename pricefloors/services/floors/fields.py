# pricefloors/services/floors/fields.py
"""
Schema field resolvers.

Each resolver takes (bid_request, bid_response) dicts and returns the concrete
value of that field for the context, or None when it cannot be determined
(None is matched as the wildcard).
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from pricefloors.core.errors import FieldRegistrationError
from pricefloors.core.utils import deep_get
from pricefloors.services.floors.models import SYN_FIELD, WILDCARD, FieldName

logger = logging.getLogger(__name__)

FieldResolver = Callable[[Dict[str, Any], Dict[str, Any]], Optional[str]]


def parse_size(size: Any) -> Optional[str]:
    """[300, 250] / [[300, 250]] / "300x250" -> "300x250"."""
    if isinstance(size, str):
        return size if size and size != WILDCARD else None
    if isinstance(size, (list, tuple)):
        if len(size) == 1 and isinstance(size[0], (list, tuple)):
            size = size[0]
        if len(size) == 2 and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in size):
            return f"{int(size[0])}x{int(size[1])}"
    return None


@lru_cache(maxsize=1024)
def hostname_of(url: str) -> Optional[str]:
    return urlparse(url).hostname


def _page_url(bid_request: Dict[str, Any], bid_response: Dict[str, Any]) -> Optional[str]:
    for source in (bid_request, bid_response):
        url = deep_get(source, "refererInfo.topmostLocation") or deep_get(source, "site.page")
        if url:
            return url
    return None


def _resolve_size(bid_request, bid_response):
    return parse_size(bid_response.get("size"))


def _resolve_media_type(bid_request, bid_response):
    return bid_response.get("mediaType") or "banner"


def _resolve_domain(bid_request, bid_response):
    url = _page_url(bid_request, bid_response)
    return hostname_of(url) if url else None


def _resolve_ad_unit_code(bid_request, bid_response):
    return (bid_request or {}).get("adUnitCode") or bid_response.get("adUnitCode")


def _resolve_gpt_slot(bid_request, bid_response):
    source = bid_request or bid_response
    adserver = deep_get(source, "ortb2Imp.ext.data.adserver") or {}
    if adserver.get("name") == "gam" and adserver.get("adslot"):
        return adserver["adslot"]
    return deep_get(source, "ortb2Imp.ext.gpid") or deep_get(source, "ortb2Imp.ext.data.pbadslot")


BUILTIN_RESOLVERS: Dict[FieldName, FieldResolver] = {
    SYN_FIELD: lambda bid_request, bid_response: WILDCARD,
    "gptSlot": _resolve_gpt_slot,
    "adUnitCode": _resolve_ad_unit_code,
    "size": _resolve_size,
    "domain": _resolve_domain,
    "mediaType": _resolve_media_type,
}


class FieldRegistry:
    """
    Allowed schema fields and their resolvers.

    - built-ins are reserved and cannot be replaced
    - custom fields are added with register(); a name may only be taken once
    """

    def __init__(self) -> None:
        self._resolvers: Dict[FieldName, FieldResolver] = dict(BUILTIN_RESOLVERS)
        self._custom: List[str] = []

    @property
    def allowed_fields(self) -> List[FieldName]:
        return list(self._resolvers.keys())

    @property
    def custom_fields(self) -> List[str]:
        return list(self._custom)

    def is_allowed(self, name: Any) -> bool:
        try:
            return name in self._resolvers
        except TypeError:
            return False

    def register(self, name: str, resolver: FieldResolver) -> None:
        if not isinstance(name, str) or not name.strip():
            raise FieldRegistrationError(f"invalid field name: {name!r}")
        if not callable(resolver):
            raise FieldRegistrationError(f"resolver for field '{name}' is not callable")
        if name in BUILTIN_RESOLVERS:
            raise FieldRegistrationError(f"field '{name}' is reserved")
        existing = self._resolvers.get(name)
        if existing is resolver:
            return
        if existing is not None:
            raise FieldRegistrationError(f"field '{name}' is already registered")
        self._resolvers[name] = resolver
        self._custom.append(name)

    def register_many(self, overrides: Dict[str, Any]) -> List[str]:
        registered: List[str] = []
        for name, resolver in (overrides or {}).items():
            try:
                self.register(name, resolver)
            except FieldRegistrationError as e:
                logger.warning("additionalSchemaFields: %s", e)
                continue
            registered.append(name)
        return registered

    def reset(self) -> None:
        for name in self._custom:
            self._resolvers.pop(name, None)
        self._custom = []

    def resolve(self, name: FieldName, bid_request: Dict[str, Any], bid_response: Dict[str, Any]) -> Optional[str]:
        resolver = self._resolvers.get(name)
        if resolver is None:
            return None
        value = resolver(bid_request or {}, bid_response or {})
        if value is None or value == "":
            return None
        return str(value)
