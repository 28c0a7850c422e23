"""Logging setup for the ledger service."""

import logging
import sys

from src.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging; an already configured root keeps its handlers."""
    logging.basicConfig(format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger().setLevel(level or settings.log_level)

    # SQL echo is controlled by the engine, keep sqlalchemy logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
