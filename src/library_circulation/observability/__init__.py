"""Logfire observability for the library circulation system."""

import logging
import sys

import logfire

from .config import ObservabilityConfig, get_environment_config

logger = logging.getLogger(__name__)


def initialize_observability(config: ObservabilityConfig | None = None) -> ObservabilityConfig:
    """
    Configure Logfire. Nothing is exported unless a token is present.

    Console output goes to stderr; stdout carries the stdio transport.
    """
    config = config or get_environment_config()

    if not config.enabled:
        logger.debug("Observability disabled via configuration")
        return config

    logfire.configure(
        token=config.token or None,
        service_name=config.service_name,
        environment=config.environment,
        send_to_logfire=config.will_send,
        console=logfire.ConsoleOptions(output=sys.stderr) if config.console_output else False,
    )
    logger.info(
        "Observability initialized (environment=%s, export=%s)",
        config.environment,
        config.will_send,
    )
    return config


__all__ = [
    "ObservabilityConfig",
    "initialize_observability",
]
