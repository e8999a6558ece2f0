#!/usr/bin/env python3
"""Unicorn contracts main configuration

Combines all sub-configs of the contracts bounded context.
"""
import os
from dataclasses import dataclass, field

from .contracts_config import ContractsConfig
from .infra_config import InfraConfig
from .logging_config import LoggingConfig


def _bool(val: str) -> bool:
    return val.lower() == "true"


@dataclass
class UnicornConfig:
    """Complete configuration of the contracts service"""

    environment: str = "development"
    debug: bool = False

    # Sub-configurations
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    contracts: ContractsConfig = field(default_factory=ContractsConfig)

    @classmethod
    def from_env(cls) -> 'UnicornConfig':
        """Load complete configuration from environment"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            environment=env,
            debug=_bool(os.getenv("DEBUG", "true" if env == "development" else "false")),
            logging=LoggingConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            contracts=ContractsConfig.from_env(),
        )
