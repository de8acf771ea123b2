"""Logging configuration module for the payment services."""

import sys
from typing import Optional

from loguru import logger as loguru_logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[service]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[service]} | {name}:{function}:{line} - {message}"

_configured = False


def setup_service_logger(
    service_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_logs: bool = False,
):
    """Configure the process-wide loguru sinks for a service.

    Existing handlers are replaced, so calling this again (e.g. from the app
    lifespan after settings are loaded) reconfigures level and sinks.

    Args:
        service_name: Name of the service (e.g., 'payment-service')
        log_level: Logging level (default: INFO)
        log_file: Optional path to a rotating log file
        json_logs: Emit serialized JSON records instead of the coloured format

    Returns:
        logger: Loguru logger bound to the service name
    """
    global _configured

    loguru_logger.remove()
    loguru_logger.configure(extra={"service": service_name, "component": "-"})

    if json_logs:
        loguru_logger.add(sys.stderr, level=log_level, serialize=True, enqueue=True)
    else:
        loguru_logger.add(
            sys.stderr,
            level=log_level,
            format=CONSOLE_FORMAT,
            colorize=True,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    if log_file:
        loguru_logger.add(
            log_file,
            level=log_level,
            format=FILE_FORMAT,
            rotation="10 MB",
            retention="1 week",
            compression="gz",
        )

    _configured = True
    return loguru_logger.bind(service=service_name)


def get_component_logger(service_name: str, component: str):
    """Get a logger bound to one component of a service.

    Sets up default sinks on first use so modules can log at import time.

    Args:
        service_name: Name of the service
        component: Component within the service (e.g., 'gateway', 'webhook')

    Returns:
        logger: Logger carrying service and component context
    """
    if not _configured:
        setup_service_logger(service_name)
    return loguru_logger.bind(service=service_name, component=component)
