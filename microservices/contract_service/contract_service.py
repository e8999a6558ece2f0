"""
Contract Service Business Logic

Command processor of the contract lifecycle. Commands are turned into
condition-guarded writes on the contract store; the store's change log (not
this class) is the source of ContractStatusChanged events.
"""

import logging
import uuid
from typing import Optional

from .models import CommandKind, Contract, ContractCommand, ContractStatus, utc_now
from .protocols import (
    ConditionFailedError,
    ContractRepositoryProtocol,
    DuplicateContractError,
    InvalidTransitionError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)


class ContractService:
    """
    Contract lifecycle business logic

    CREATE  -> new record in DRAFT, accepted only if none exists
    UPDATE  -> DRAFT to APPROVED, accepted only if the stored status is DRAFT
    """

    def __init__(self, repository: ContractRepositoryProtocol):
        """
        Initialize Contract Service

        Args:
            repository: Contract store (ContractRepository or an in-memory double)
        """
        self.repository = repository
        logger.info("ContractService initialized")

    async def handle(self, command: ContractCommand) -> Contract:
        """
        Process one command.

        Returns:
            The contract as written

        Raises:
            DuplicateContractError: CREATE for a property that already has a contract
            InvalidTransitionError: UPDATE without a DRAFT contract
            UnsupportedOperationError: unknown command kind
            StoreUnavailableError: store unreachable after bounded retries
        """
        if command.kind == CommandKind.CREATE.value:
            return await self.create_contract(command.property_id, command.contract_id)
        if command.kind == CommandKind.UPDATE.value:
            return await self.update_contract(command.property_id)

        logger.warning(f"Unsupported command {command.kind!r} for property {command.property_id}")
        raise UnsupportedOperationError(command.kind)

    async def create_contract(self, property_id: str, contract_id: Optional[str] = None) -> Contract:
        """Create a DRAFT contract for a property"""
        now = utc_now()
        contract = Contract(
            property_id=property_id,
            contract_id=contract_id or str(uuid.uuid4()),
            contract_status=ContractStatus.DRAFT,
            contract_created=now,
            contract_last_modified_on=now,
        )

        try:
            created = await self.repository.create_contract_if_absent(contract)
        except ConditionFailedError as e:
            logger.info(f"Contract for property {property_id} already exists, create rejected")
            raise DuplicateContractError(property_id, current=e.current) from e

        logger.info(f"Created contract {created.contract_id} for property {property_id} (DRAFT)")
        return created

    async def update_contract(self, property_id: str) -> Contract:
        """Approve the DRAFT contract of a property"""
        try:
            updated = await self.repository.update_status_if_current(
                property_id,
                expected_status=ContractStatus.DRAFT,
                new_status=ContractStatus.APPROVED,
                modified_on=utc_now(),
            )
        except ConditionFailedError as e:
            error = InvalidTransitionError(property_id, ContractStatus.APPROVED, current=e.current)
            logger.info(f"Update rejected for property {property_id}: {error.reason}")
            raise error from e

        logger.info(f"Contract {updated.contract_id} for property {property_id} approved")
        return updated

    async def get_contract(self, property_id: str) -> Optional[Contract]:
        return await self.repository.get_contract(property_id)

    async def health_check(self) -> bool:
        return await self.repository.health_check()
