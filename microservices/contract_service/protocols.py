"""
Contract Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from datetime import datetime

# Import only models (no I/O dependencies)
from .models import ChangeRecord, Contract, ContractStatus


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class ContractServiceError(Exception):
    """Base exception for contract service errors"""
    error_code = "CONTRACT_SERVICE_ERROR"


# --- Business rejections (expected outcomes, never retried) -----------------

class DuplicateContractError(ContractServiceError):
    """A contract already exists for the property"""
    error_code = "DUPLICATE_CONTRACT"

    def __init__(self, property_id: str, current: Optional[Contract] = None):
        self.property_id = property_id
        self.current = current
        super().__init__(f"Contract already exists for property {property_id}")


class InvalidTransitionError(ContractServiceError):
    """The stored contract does not allow the requested status change"""
    error_code = "INVALID_TRANSITION"

    CONTRACT_NOT_FOUND = "CONTRACT_NOT_FOUND"
    INVALID_CURRENT_STATUS = "INVALID_CURRENT_STATUS"

    def __init__(
        self,
        property_id: str,
        target_status: ContractStatus,
        current: Optional[Contract] = None,
    ):
        self.property_id = property_id
        self.target_status = target_status
        self.current = current
        if current is None:
            self.reason = self.CONTRACT_NOT_FOUND
            message = f"No contract exists for property {property_id}"
        else:
            self.reason = self.INVALID_CURRENT_STATUS
            message = (
                f"Contract for property {property_id} cannot move from "
                f"{current.contract_status.value} to {target_status.value}"
            )
        super().__init__(message)

    @property
    def current_status(self) -> Optional[ContractStatus]:
        return self.current.contract_status if self.current else None


class UnsupportedOperationError(ContractServiceError):
    """Command kind is not supported"""
    error_code = "UNSUPPORTED_OPERATION"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Request not supported: {kind!r}")


# --- Data faults ---------------------------------------------------------

class CommandParseError(ContractServiceError):
    """Ingress payload could not be parsed into a command"""
    error_code = "COMMAND_PARSE_ERROR"


class MalformedChangeRecordError(ContractServiceError):
    """Change-log entry lacks the fields needed to build an event"""
    error_code = "MALFORMED_CHANGE_RECORD"


# --- Infrastructure faults -------------------------------------------------

class ConditionFailedError(ContractServiceError):
    """Store precondition did not hold; carries the stored record (or None)"""
    error_code = "CONDITION_FAILED"

    def __init__(self, property_id: str, current: Optional[Contract] = None):
        self.property_id = property_id
        self.current = current
        super().__init__(f"Conditional write rejected for property {property_id}")


class StoreUnavailableError(ContractServiceError):
    """Contract store unreachable after bounded retries"""
    error_code = "STORE_UNAVAILABLE"


class PublishFailedError(ContractServiceError):
    """Event could not be delivered to the bus after bounded retries"""
    error_code = "PUBLISH_FAILED"

    def __init__(self, message: str, event_id: Optional[str] = None):
        self.event_id = event_id
        super().__init__(message)


# ============================================================================
# Repository Protocol
# ============================================================================

@runtime_checkable
class ContractRepositoryProtocol(Protocol):
    """
    Interface for the Contract Store.

    Both write methods evaluate their precondition atomically with the write
    and append the matching change-log entry in the same transaction.
    """

    async def initialize(self) -> None:
        """Create tables if needed"""
        ...

    async def get_contract(self, property_id: str) -> Optional[Contract]:
        """Get contract by property ID"""
        ...

    async def create_contract_if_absent(self, contract: Contract) -> Contract:
        """Insert the record unless one exists; raises ConditionFailedError"""
        ...

    async def update_status_if_current(
        self,
        property_id: str,
        expected_status: ContractStatus,
        new_status: ContractStatus,
        modified_on: datetime,
    ) -> Contract:
        """Set the status if the stored status equals expected; raises ConditionFailedError"""
        ...

    async def delete_contract(self, property_id: str) -> bool:
        """Administrative delete"""
        ...

    async def read_changes(self, consumer: str, limit: int) -> List[ChangeRecord]:
        """Read change-log entries after the consumer's cursor"""
        ...

    async def commit_changes(self, consumer: str, sequence: int) -> None:
        """Advance the consumer's cursor"""
        ...

    async def health_check(self) -> bool:
        """Check store connectivity"""
        ...


# ============================================================================
# Event Bus Protocol
# ============================================================================

@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for Event Bus - no I/O imports"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event envelope"""
        ...

    async def publish(self, subject: str, data: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> bool:
        """Publish a raw payload"""
        ...


@runtime_checkable
class DeadLetterSinkProtocol(Protocol):
    """Terminal destination for units of work that exhausted their retries"""

    async def send(self, payload: Dict[str, Any], error: str, source: str) -> None:
        """Store a failed unit of work for inspection"""
        ...
