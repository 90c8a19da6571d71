import yaml
from pathlib import Path

from pricefloors.core.errors import ConfigError
from pricefloors.schemas.floors_config import FloorsConfig


def load_floors_config_from_file(path: str) -> FloorsConfig:

    p = Path(path)

    if not p.exists():
        raise ConfigError(f"Floors config file not found: {path}")

    with open(p, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    # the file may hold the config at top level or under a `floors:` key
    if isinstance(raw, dict) and isinstance(raw.get("floors"), dict):
        raw = raw["floors"]

    return FloorsConfig(**raw)
