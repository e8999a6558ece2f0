#!/usr/bin/env python3
"""
Core Module for the unicorn microservices

Shared infrastructure components used by the services in this repository.

COMPONENTS:
    - config/: Environment-driven configuration (infra, contracts, logging)
    - logger.py: Service logger setup (plain or JSON-line output)
    - postgres_client.py: asyncpg pool wrapper used by repositories
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger
    from core.nats_client import get_event_bus

    settings = get_settings()
    logger = setup_service_logger("contract_service")

VERSION: 1.0.0
"""

__all__ = [
    "config",
    "logger",
    "nats_client",
    "postgres_client",
]

__version__ = "1.0.0"
