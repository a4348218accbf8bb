"""Common utility functions for the project."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def init_logging(level: str) -> None:
    """
    Configure root logging for applications embedding agentrun.

    Args:
        level: Logging level name (debug, info, warning, error, critical).
            Unknown names fall back to INFO.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # Request lines from the HTTP backend are noisy at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
