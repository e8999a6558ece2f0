"""
Dead-letter sink backed by the NATS DLQ stream
"""

import logging
from typing import Any, Dict

from ..models import utc_now
from ..protocols import EventBusProtocol, PublishFailedError

logger = logging.getLogger(__name__)


class NATSDeadLetterSink:
    """Publishes failed units of work to a dead-letter subject"""

    def __init__(self, event_bus: EventBusProtocol, subject: str):
        self.event_bus = event_bus
        self.subject = subject

    async def send(self, payload: Dict[str, Any], error: str, source: str) -> None:
        message = {
            "source": source,
            "error": error,
            "failed_at": utc_now().isoformat(),
            "payload": payload,
        }
        if not await self.event_bus.publish(self.subject, message):
            raise PublishFailedError(f"Dead-letter publish to {self.subject} failed")
        logger.warning(f"Dead-lettered {source} message to {self.subject}: {error}")
