"""
Contract Service Data Models

Pydantic models for the contract record, the commands that mutate it and the
change-log entries derived from committed writes.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ContractStatus(str, Enum):
    """Contract status enumeration"""
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"
    CLOSED = "CLOSED"
    EXPIRED = "EXPIRED"


class CommandKind(str, Enum):
    """Kinds of commands accepted by the command processor"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"


class ChangeEventName(str, Enum):
    """Change-log entry types"""
    INSERT = "INSERT"
    MODIFY = "MODIFY"


# Ingress HTTP method -> command kind
HTTP_METHOD_COMMANDS = {
    "POST": CommandKind.CREATE,
    "PUT": CommandKind.UPDATE,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Core Contract Model

class Contract(BaseModel):
    """One contract record per property"""
    property_id: str
    contract_id: str
    contract_status: ContractStatus
    contract_created: Optional[datetime] = None
    contract_last_modified_on: datetime


# Command Models

class ContractCommand(BaseModel):
    """
    Normalized create/update command.

    `kind` stays a plain string so that unknown kinds reach the processor
    and are rejected there as unsupported operations.
    """
    kind: str = Field(..., description="CREATE or UPDATE")
    property_id: str = Field(..., min_length=1, description="Property the contract belongs to")
    contract_id: Optional[str] = Field(None, description="Contract ID, generated on create when omitted")

    @field_validator("property_id")
    @classmethod
    def validate_property_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("property_id must not be blank")
        return v

    @classmethod
    def for_http_method(cls, method: str, body: Dict[str, Any]) -> "ContractCommand":
        """Build a command from an ingress request; unknown methods keep their name as kind"""
        method = (method or "").upper()
        kind = HTTP_METHOD_COMMANDS.get(method)
        return cls.model_validate({**body, "kind": kind.value if kind else method})


class CreateContractRequest(BaseModel):
    """Create contract request (POST /contracts)"""
    property_id: str = Field(..., min_length=1, description="Property to create a draft contract for")
    contract_id: Optional[str] = Field(None, description="Optional caller-assigned contract ID")


class UpdateContractRequest(BaseModel):
    """Update contract request (PUT /contracts), approves the draft"""
    property_id: str = Field(..., min_length=1, description="Property whose contract is approved")


# Change Log Models

class ChangeRecord(BaseModel):
    """One committed write as observed on the change log"""
    sequence: int
    event_name: str
    property_id: str
    old_image: Optional[Dict[str, Any]] = None
    new_image: Optional[Dict[str, Any]] = None
    recorded_at: Optional[datetime] = None


# Response Models

class ContractResponse(BaseModel):
    """Command result"""
    success: bool
    contract: Optional[Contract] = None
    message: str
    error_code: Optional[str] = None


class EventPublishedResponse(BaseModel):
    """Acknowledgement of an event accepted by the bus"""
    success: bool = True
    event_id: str
    message: str


class ErrorResponse(BaseModel):
    """Error payload for rejected commands"""
    success: bool = False
    message: str
    error_code: str
    property_id: Optional[str] = None
    current_status: Optional[ContractStatus] = None


class ContractServiceStatus(BaseModel):
    """Service health status"""
    service: str = "contract_service"
    status: str = "operational"
    version: str = "1.0.0"
    database_connected: bool
    event_bus_connected: bool = False
    timestamp: datetime
