"""
Service Logger Setup

Configures named loggers for microservices from LoggingConfig. Structured
output renders every stdlib record as one JSON line through structlog's
ProcessorFormatter.

Usage:
    from core.logger import setup_service_logger

    logger = setup_service_logger("unicorn.contracts")
    logger.info("Contract created", extra={"property_id": property_id})
"""

import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import ProcessorFormatter

from core.config import LoggingConfig, get_settings


def _add_service(service_name: str):
    def processor(logger: Optional[logging.Logger], method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return processor


def structured_formatter(service_name: str) -> ProcessorFormatter:
    """JSON formatter: timestamp, level, service, logger, message and `extra=` fields"""
    pre_chain: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        _add_service(service_name),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
    ]
    return ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(default=str),
        ],
    )


def setup_service_logger(
    service_name: str,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Create (or reconfigure) the logger of a service.

    Args:
        service_name: Logger name, also reported as `service` in structured output
        config: Logging configuration (defaults to global settings)

    Returns:
        Configured logger
    """
    config = config or get_settings().logging
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    # Handlers live on the root logger so module loggers (logging.getLogger(__name__))
    # share the service format
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_service_handler", False):
            root.removeHandler(handler)

    if config.enable_structured:
        formatter: logging.Formatter = structured_formatter(service_name)
    else:
        formatter = logging.Formatter(config.log_format)

    handlers = []
    if config.enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._service_handler = True
        root.addHandler(handler)

    logger = logging.getLogger(service_name)
    logger.setLevel(level)
    return logger
