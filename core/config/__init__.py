#!/usr/bin/env python3
"""Modular configuration system for unicorn contracts

Configuration hierarchy:
- infra_config: Infrastructure endpoints (PostgreSQL, NATS)
- contracts_config: Contract pipeline settings (stage, batching, retries)
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .contracts_config import (
    ContractsConfig,
    EventNamespace,
    Stage,
    event_bus_name,
    is_prod,
)
from .unicorn_config import UnicornConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = UnicornConfig.from_env()

def get_settings() -> UnicornConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> UnicornConfig:
    """Reload settings from environment"""
    global settings
    settings = UnicornConfig.from_env()
    return settings

__all__ = [
    # Main config
    'UnicornConfig',
    'get_settings',
    'reload_settings',
    'settings',
    # Sub-configs
    'LoggingConfig',
    'InfraConfig',
    'ContractsConfig',
    # Naming helpers
    'EventNamespace',
    'Stage',
    'event_bus_name',
    'is_prod',
]
