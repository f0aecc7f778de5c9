"""Logging helpers shared by the ingestion path and the API."""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def truncate_payload(payload, max_length: int = 200) -> str:
    """Truncate a payload's string form for log context."""
    payload_str = str(payload)
    if len(payload_str) > max_length:
        return payload_str[:max_length] + "..."
    return payload_str


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the ``usagemet`` logger.

    Safe to call repeatedly; the handler is only added once.
    """
    logger = logging.getLogger("usagemet")
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
