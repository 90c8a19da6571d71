from __future__ import annotations

import logging
import sys

from pricefloors.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# chatty at INFO: one line per fetch / per connection
_QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str = None) -> None:
    """
    stdout logging for the floors service.
    - level from LOG_LEVEL unless given
    - idempotent: a second call (reload, tests) only adjusts the level
    """
    level_no = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level_no)

    if not any(getattr(h, "_pricefloors", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
        handler._pricefloors = True
        root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level_no, logging.WARNING))
