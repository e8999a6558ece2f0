"""
Property Service Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.
"""
from typing import Optional

from core.config import ContractsConfig

from .contract_exists_checker import ContractExistsChecker


def create_contract_exists_checker(config: Optional[ContractsConfig] = None) -> ContractExistsChecker:
    """
    Create ContractExistsChecker reading the Postgres contract store.

    Use this in production, NOT in tests.
    """
    # Import real repository here (not at module level)
    from .contract_status_repository import ContractStatusRepository

    return ContractExistsChecker(repository=ContractStatusRepository(config=config), config=config)
