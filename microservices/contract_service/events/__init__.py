"""
Contract Service Events Module

Exports all event-related functionality for contract service
"""

from .models import (
    ContractStatusChangedEvent,
    PublicationApprovalRequestedEvent,
    derive_event_id,
)

from .publishers import EventPublisher

from .change_capture import (
    BatchResult,
    ChangeCaptureProcessor,
    ChangeLogPoller,
    is_monitored,
    map_change_record,
)

from .dead_letter import NATSDeadLetterSink

from .handlers import ContractIngestHandler, parse_ingest_message, register_event_handlers

__all__ = [
    # Event Models
    "ContractStatusChangedEvent",
    "PublicationApprovalRequestedEvent",
    "derive_event_id",
    # Publishers
    "EventPublisher",
    # Change capture
    "BatchResult",
    "ChangeCaptureProcessor",
    "ChangeLogPoller",
    "is_monitored",
    "map_change_record",
    "NATSDeadLetterSink",
    # Handlers
    "ContractIngestHandler",
    "parse_ingest_message",
    "register_event_handlers",
]
