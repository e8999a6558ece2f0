"""
Property Service Protocols (Interfaces)

NO import-time I/O dependencies - safe to import anywhere.
"""
from typing import Optional, Protocol, runtime_checkable

from .models import ContractStatus


class PropertyServiceError(Exception):
    """Base exception for property service errors"""
    error_code = "PROPERTY_SERVICE_ERROR"


class ContractStatusNotFoundError(PropertyServiceError):
    """No contract (or no contract ID) recorded for the property"""
    error_code = "CONTRACT_STATUS_NOT_FOUND"

    def __init__(self, property_id: str):
        self.property_id = property_id
        super().__init__(f"No contract found for property {property_id}")


class InvalidCheckRequestError(PropertyServiceError):
    """Existence check input without a usable property_id"""
    error_code = "INVALID_REQUEST"


@runtime_checkable
class ContractStatusReaderProtocol(Protocol):
    """Read-only view of the contract store"""

    async def get_contract_status(self, property_id: str) -> Optional[ContractStatus]:
        """Contract ID and status of a property, None when no record exists"""
        ...
