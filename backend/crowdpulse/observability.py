"""Logfire cloud observability initialization and instrumentation."""

import logging

import logfire

from crowdpulse import __version__
from crowdpulse.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings) -> bool:
    """
    Initialize Logfire for the scheduler process.

    Must be called ONCE at application startup, before the scheduler starts.

    Instruments:
    - HTTPX clients (prediction model calls)
    - Python logging (bridges to Logfire)

    Args:
        settings: Application settings containing Logfire token

    Returns:
        True if Logfire was configured, False if it is disabled or failed.
    """
    if not settings.logfire_token:
        logger.warning("Logfire token not set - observability disabled")
        return False

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="crowdpulse",
            service_version=__version__,
            environment=settings.environment,
        )

        logfire.instrument_httpx()

        root_logger = logging.getLogger()
        root_logger.addHandler(logfire.LogfireLoggingHandler())

        logger.info("✓ Logfire cloud tracking initialized")
        return True

    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")
        return False
