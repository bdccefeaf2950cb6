from __future__ import annotations

import logging

from .middleware.correlation import CorrelationIdFilter
from .settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s"


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # every record needs request_id for the format above
    corr_filter = CorrelationIdFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(corr_filter)
