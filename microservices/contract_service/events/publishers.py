"""
Contract Service Event Publishers

Publishes events on the unicorn buses with bounded retries, exponential
backoff and a cap on in-flight publishes.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from core.config import ContractsConfig, EventNamespace, get_settings
from core.nats_client import Event, EventType
from ..models import ContractStatus
from ..protocols import EventBusProtocol, PublishFailedError
from .models import (
    ContractStatusChangedEvent,
    PublicationApprovalRequestedEvent,
    derive_event_id,
)

logger = logging.getLogger(__name__)


class BusRejectedError(Exception):
    """The bus did not acknowledge a publish"""


class EventPublisher:
    """
    Event publisher for the contracts context.

    publish() either returns once the bus acknowledged the event or raises
    PublishFailedError after `publish_max_attempts` attempts.
    """

    def __init__(self, event_bus: Optional[EventBusProtocol], config: Optional[ContractsConfig] = None):
        self.event_bus = event_bus
        self.config = config or get_settings().contracts
        self._in_flight = asyncio.Semaphore(self.config.publish_max_in_flight)

    async def publish(self, event: Event) -> str:
        """
        Publish an event envelope.

        Returns:
            The event ID

        Raises:
            PublishFailedError: bus missing, or every attempt failed
        """
        if not self.event_bus:
            raise PublishFailedError(f"Event bus not available for {event.type}", event_id=event.id)

        async with self._in_flight:
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.config.publish_max_attempts),
                    wait=wait_exponential(
                        multiplier=self.config.publish_backoff_min,
                        min=self.config.publish_backoff_min,
                        max=self.config.publish_backoff_max,
                    ),
                    reraise=True,
                ):
                    with attempt:
                        if attempt.retry_state.attempt_number > 1:
                            logger.warning(
                                f"Retrying {event.type} {event.id} "
                                f"(attempt {attempt.retry_state.attempt_number})"
                            )
                        delivered = await self.event_bus.publish_event(event)
                        if not delivered:
                            raise BusRejectedError(f"Bus rejected {event.type} {event.id}")
            except Exception as e:
                logger.error(
                    f"Failed to publish {event.type} {event.id} after "
                    f"{self.config.publish_max_attempts} attempts: {e}"
                )
                raise PublishFailedError(str(e), event_id=event.id) from e

        logger.info(f"Published {event.type} event {event.id} to {event.subject}")
        return event.id

    async def publish_contract_status_changed(self, detail: ContractStatusChangedEvent) -> str:
        """Publish ContractStatusChanged (source unicorn.contracts)"""
        data = detail.model_dump(mode="json")
        event = Event(
            event_type=EventType.CONTRACT_STATUS_CHANGED,
            source=EventNamespace.CONTRACTS,
            data=data,
            event_id=derive_event_id(EventType.CONTRACT_STATUS_CHANGED.value, data),
        )
        return await self.publish(event)

    async def publish_publication_approval_requested(
        self,
        property_id: str,
        contract_id: str,
        contract_status: ContractStatus,
        contract_last_modified_on: datetime,
    ) -> str:
        """Publish PublicationApprovalRequested (source unicorn.web)"""
        data = PublicationApprovalRequestedEvent(
            property_id=property_id,
            contract_id=contract_id,
            contract_status=contract_status,
            contract_last_modified_on=contract_last_modified_on,
        ).model_dump(mode="json")
        event = Event(
            event_type=EventType.PUBLICATION_APPROVAL_REQUESTED,
            source=EventNamespace.WEB,
            data=data,
            event_id=derive_event_id(EventType.PUBLICATION_APPROVAL_REQUESTED.value, data),
        )
        return await self.publish(event)
