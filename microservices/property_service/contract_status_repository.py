"""
Contract Status Repository

Read-only access to the contracts table for the existence check. Transient
connection faults are retried with backoff before they reach the caller.
"""

import logging
from typing import Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import ContractsConfig, InfraConfig, get_settings
from core.postgres_client import TRANSIENT_DB_ERRORS, PostgresClient
from .models import ContractStatus

logger = logging.getLogger(__name__)


class ContractStatusRepository:
    """Reads the contract ID and status of a property"""

    def __init__(
        self,
        db: Optional[PostgresClient] = None,
        config: Optional[ContractsConfig] = None,
        infra_config: Optional[InfraConfig] = None,
    ):
        settings = get_settings()
        config = config or settings.contracts
        infra_config = infra_config or settings.infrastructure

        self.db = db or PostgresClient("property_service", config=infra_config)
        self.table = f'"{infra_config.postgres_schema}".{config.contracts_table}'
        self.max_attempts = max(1, config.store_max_attempts)

    async def get_contract_status(self, property_id: str) -> Optional[ContractStatus]:
        query = f'''
            SELECT property_id, contract_id, contract_status
            FROM {self.table}
            WHERE property_id = $1
        '''
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            retry=retry_if_exception_type(TRANSIENT_DB_ERRORS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying contract status read for {property_id} "
                        f"(attempt {attempt.retry_state.attempt_number})"
                    )
                row = await self.db.query_row(query, [property_id])
        if row is None:
            return None
        return ContractStatus(
            property_id=row["property_id"],
            contract_id=row["contract_id"] or "",
            contract_status=row.get("contract_status"),
        )

    async def health_check(self) -> bool:
        return await self.db.health_check()

    async def close(self) -> None:
        await self.db.close()
