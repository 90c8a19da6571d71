"""Shared pytest fixtures for the floors service."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# keep the repo root importable without an install
_root = Path(__file__).resolve().parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from pricefloors.services.floors.fields import FieldRegistry  # noqa: E402


@pytest.fixture
def registry() -> FieldRegistry:
    return FieldRegistry()


@pytest.fixture
def media_size_data() -> dict:
    return {
        "currency": "USD",
        "schema": {"fields": ["mediaType", "size"], "delimiter": "|"},
        "values": {"banner|300x250": 1.5, "banner|*": 1.0, "*|*": 0.5},
    }
