"""
Contract Service Event Models

Pydantic models for events published on the unicorn buses
"""

import uuid
from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel

from ..models import ContractStatus

# Namespace of the deterministic event IDs
EVENT_ID_NAMESPACE = uuid.UUID("6f1c2a4e-5b0d-4e8a-9d3c-2f7b8e1a0c55")


class ContractStatusChangedEvent(BaseModel):
    """Detail of ContractStatusChanged (source unicorn.contracts)"""
    property_id: str
    contract_id: str
    contract_status: ContractStatus
    contract_last_modified_on: datetime


class PublicationApprovalRequestedEvent(BaseModel):
    """Detail of PublicationApprovalRequested (source unicorn.web)"""
    property_id: str
    contract_id: str
    contract_status: ContractStatus
    contract_last_modified_on: datetime


def derive_event_id(detail_type: str, detail: Dict[str, Any]) -> str:
    """
    Stable event ID for a serialised event detail.

    Redeliveries of the same change produce the same ID, which downstream
    consumers use as the deduplication key.
    """
    name = "|".join(
        [
            detail_type,
            str(detail.get("property_id")),
            str(detail.get("contract_status")),
            str(detail.get("contract_last_modified_on")),
        ]
    )
    return str(uuid.uuid5(EVENT_ID_NAMESPACE, name))
