"""
NATS JetStream Client for the unicorn microservices
Provides event-driven communication between the unicorn bounded contexts.

This module wraps nats-py: one connection per service, JetStream streams for
the shared event bus, the contracts ingest queue and the dead-letter queue,
and a pull-consumer loop for subscribers.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import nats
from nats.aio.client import Client as NATS
from nats.aio.msg import Msg
from nats.errors import TimeoutError as NATSTimeoutError
from nats.js import JetStreamContext
from nats.js.api import ConsumerConfig
from nats.js.errors import NotFoundError

from core.config import EventNamespace, InfraConfig, get_settings


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Detail types carried on the unicorn buses"""

    # Contracts
    CONTRACT_STATUS_CHANGED = "ContractStatusChanged"

    # Web
    PUBLICATION_APPROVAL_REQUESTED = "PublicationApprovalRequested"


class Event:
    """Bus event envelope: source + detail-type + detail payload"""

    def __init__(
        self,
        event_type: EventType,
        source: EventNamespace,
        data: Dict[str, Any],
        event_id: Optional[str] = None,
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = event_id or str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject or f"{self.source}.{self.type}"
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "detail-type": self.type,
            "subject": self.subject,
            "time": self.timestamp,
            "detail": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("detail-type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("time")
        event.data = data.get("detail", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


MessageHandler = Callable[[Msg], Awaitable[None]]


class NATSEventBus:
    """
    NATS JetStream event bus.

    publish_event()/publish() return False instead of raising so callers
    decide their own retry policy.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used as the NATS client name)
            config: Infrastructure configuration (defaults to global settings)
        """
        self.service_name = service_name
        self.config = config or get_settings().infrastructure

        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._subscriptions: Dict[str, bool] = {}  # durable -> active
        self._subscription_tasks: List[asyncio.Task] = []
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.config.nats_servers}")

    async def connect(self):
        """Connect to NATS and open the JetStream context"""
        try:
            self._nc = await nats.connect(
                servers=self.config.nats_servers,
                name=self.service_name,
                connect_timeout=self.config.nats_connect_timeout,
            )
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def ensure_stream(self, name: str, subjects: List[str]) -> bool:
        """Create a JetStream stream unless it already exists"""
        if not self._is_connected or not self._js:
            return False

        try:
            await self._js.stream_info(name)
            logger.debug(f"Stream '{name}' ready")
        except NotFoundError:
            await self._js.add_stream(name=name, subjects=subjects)
            logger.info(f"Created stream '{name}' for {subjects}")
        return True

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event envelope to JetStream on its subject.

        Returns:
            True once the stream acknowledged the message
        """
        return await self.publish(event.subject, event.to_dict(), headers={"Event-Id": event.id})

    async def publish(
        self,
        subject: str,
        data: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> bool:
        """Publish a raw JSON payload to a JetStream subject"""
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            payload = json.dumps(data, cls=DecimalEncoder).encode()
            ack = await self._js.publish(subject, payload, headers=headers)
            logger.info(f"Published to {subject} [stream={ack.stream}, seq={ack.seq}]")
            return True
        except Exception as e:
            logger.error(f"Error publishing to {subject}: {e}")
            return False

    async def subscribe(
        self,
        subject: str,
        handler: MessageHandler,
        durable: str,
        stream: Optional[str] = None,
        batch_size: int = 1,
        max_concurrency: int = 1,
        max_deliver: Optional[int] = None,
        ack_wait: Optional[float] = None,
    ) -> Optional[str]:
        """
        Subscribe a handler with a durable JetStream pull consumer.

        The message is acked when the handler returns and nak'ed (redelivered)
        when it raises.

        Args:
            subject: Subject filter
            handler: Async callback receiving the raw NATS message
            durable: Durable consumer name
            stream: Stream bound to the subject
            batch_size: Messages fetched per pull
            max_concurrency: Messages handled concurrently
            max_deliver: Maximum deliveries per message before JetStream gives up
            ack_wait: Seconds before an unacknowledged message is redelivered
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return None

        consumer_config = ConsumerConfig(
            durable_name=durable,
            max_deliver=max_deliver,
            ack_wait=ack_wait,
        )
        psub = await self._js.pull_subscribe(subject, durable=durable, stream=stream, config=consumer_config)

        self._subscriptions[durable] = True
        task = asyncio.create_task(
            self._consumer_loop(psub, subject, handler, durable, batch_size, max_concurrency)
        )
        self._subscription_tasks.append(task)

        logger.info(f"Subscribed to {subject} (durable={durable})")
        return durable

    async def _consumer_loop(
        self,
        psub,
        subject: str,
        handler: MessageHandler,
        durable: str,
        batch_size: int,
        max_concurrency: int,
    ):
        """Pull loop: fetch, dispatch with bounded concurrency, ack/nak"""
        semaphore = asyncio.Semaphore(max_concurrency)

        async def _dispatch(msg: Msg):
            async with semaphore:
                try:
                    await handler(msg)
                    await msg.ack()
                except Exception as e:
                    logger.warning(f"Handler failed on {msg.subject}, message will be redelivered: {e}")
                    await msg.nak()

        try:
            while self._subscriptions.get(durable, False):
                try:
                    messages = await psub.fetch(batch=batch_size, timeout=1)
                except NATSTimeoutError:
                    continue
                except Exception as pull_e:
                    logger.warning(f"Pull error (will retry): {pull_e}")
                    await asyncio.sleep(5)
                    continue

                logger.debug(f"Pulled {len(messages)} messages from {durable}")
                await asyncio.gather(*(_dispatch(msg) for msg in messages))
        finally:
            self._subscriptions[durable] = False
            logger.info(f"JetStream consumer stopped: {durable} ({subject})")

    async def close(self):
        """Stop consumers and drain the connection"""
        for durable in list(self._subscriptions.keys()):
            self._subscriptions[durable] = False

        for task in self._subscription_tasks:
            if not task.done():
                task.cancel()
        self._subscription_tasks.clear()

        if self._nc:
            await self._nc.drain()
            self._nc = None
            self._js = None

        self._is_connected = False
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> NATSEventBus:
    """
    Get or create the connected event bus of this process.

    Args:
        service_name: Name of the service
        config: Optional infrastructure config override

    Returns:
        Connected NATSEventBus
    """
    global _event_bus

    if _event_bus is None or not _event_bus.is_connected:
        _event_bus = NATSEventBus(service_name=service_name, config=config)
        await _event_bus.connect()

    return _event_bus
