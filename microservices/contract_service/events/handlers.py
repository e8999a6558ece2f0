"""
Contract Service Event Handlers

Consumer of the contracts ingest queue. Each message carries a contract body
and an `HttpMethod` attribute (POST = create, PUT = update):

    {"body": {"property_id": "...", "contract_id": "..."},
     "attributes": {"HttpMethod": "POST"}}

Outcome per message:
- accepted or rejected by the business rules -> acked
- unparseable or unsupported                 -> dead-lettered, acked
- any other fault                            -> nak'ed for redelivery until the
                                                receive limit, then dead-lettered
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from core.config import ContractsConfig, get_settings
from ..contract_service import ContractService
from ..models import ContractCommand
from ..protocols import (
    CommandParseError,
    DeadLetterSinkProtocol,
    DuplicateContractError,
    InvalidTransitionError,
    StoreUnavailableError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)

HTTP_METHOD_ATTRIBUTE = "HttpMethod"
DEAD_LETTER_SOURCE = "ingest"


def parse_ingest_message(data: bytes, headers: Optional[Dict[str, str]] = None) -> ContractCommand:
    """
    Parse a raw ingest message into a command.

    The HTTP method is read from the message attributes, falling back to a
    message header of the same name. The body may be an object or a JSON string.

    Raises:
        CommandParseError: payload is not a valid command
    """
    try:
        message = json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise CommandParseError(f"Ingest message is not valid JSON: {e}") from e
    if not isinstance(message, dict):
        raise CommandParseError("Ingest message must be a JSON object")

    attributes = message.get("attributes") or {}
    method = attributes.get(HTTP_METHOD_ATTRIBUTE) or (headers or {}).get(HTTP_METHOD_ATTRIBUTE)
    if not method:
        raise CommandParseError(f"Ingest message has no {HTTP_METHOD_ATTRIBUTE} attribute")

    body = message.get("body")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError as e:
            raise CommandParseError(f"Ingest message body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise CommandParseError("Ingest message body must be a JSON object")

    try:
        return ContractCommand.for_http_method(method, body)
    except ValidationError as e:
        raise CommandParseError(f"Invalid contract in ingest message: {e}") from e


class ContractIngestHandler:
    """Handles ingest queue messages for the NATS pull consumer"""

    def __init__(
        self,
        contract_service: ContractService,
        dead_letter_sink: DeadLetterSinkProtocol,
        config: Optional[ContractsConfig] = None,
        log_event: Optional[bool] = None,
    ):
        settings = get_settings()
        self.contract_service = contract_service
        self.dead_letter_sink = dead_letter_sink
        self.config = config or settings.contracts
        self.log_event = settings.logging.log_event if log_event is None else log_event

    async def __call__(self, msg) -> None:
        """NATS entry point: return to ack, raise to nak"""
        metadata = getattr(msg, "metadata", None)
        num_delivered = getattr(metadata, "num_delivered", None) or 1
        await self.handle(msg.data, headers=msg.headers, num_delivered=num_delivered)

    async def handle(
        self,
        data: bytes,
        headers: Optional[Dict[str, str]] = None,
        num_delivered: int = 1,
    ) -> None:
        """
        Process one ingest message.

        Raises:
            Exception: processing failed below the receive limit (message is redelivered)
            Exception from the dead-letter sink: message is redelivered
        """
        if self.log_event:
            logger.info(f"Ingest message: {data!r}")

        try:
            command = parse_ingest_message(data, headers)
            await asyncio.wait_for(
                self.contract_service.handle(command),
                timeout=self.config.invocation_timeout,
            )
        except (DuplicateContractError, InvalidTransitionError) as e:
            logger.info(f"Contract command rejected: {e}")
        except (CommandParseError, UnsupportedOperationError) as e:
            logger.error(f"Cannot process ingest message: {e}")
            await self._dead_letter(data, headers, e)
        except Exception as e:
            transient = isinstance(e, (StoreUnavailableError, asyncio.TimeoutError))
            if num_delivered >= self.config.ingest_max_receive_count:
                logger.error(
                    f"Ingest message failed after {num_delivered} deliveries: {e!r}",
                    exc_info=not transient,
                )
                await self._dead_letter(data, headers, e)
                return
            logger.warning(f"Ingest message failed (delivery {num_delivered}), will be redelivered: {e!r}")
            raise

    async def _dead_letter(self, data: bytes, headers: Optional[Dict[str, str]], error: Exception) -> None:
        payload: Dict[str, Any] = {
            "data": data.decode("utf-8", errors="replace"),
            "headers": dict(headers or {}),
        }
        try:
            await self.dead_letter_sink.send(payload, error=str(error) or repr(error), source=DEAD_LETTER_SOURCE)
        except Exception as e:
            logger.error(f"Failed to dead-letter ingest message {payload['data']!r}: {e}")
            raise


async def register_event_handlers(event_bus, handler: ContractIngestHandler, config: ContractsConfig) -> Optional[str]:
    """Subscribe the ingest handler to the contracts ingest queue"""
    if not event_bus:
        logger.warning("Event bus not available, ingest consumer not started")
        return None

    return await event_bus.subscribe(
        subject=config.ingest_subject,
        handler=handler,
        durable="contract-ingest",
        stream=config.ingest_stream,
        batch_size=config.ingest_max_concurrency,
        max_concurrency=config.ingest_max_concurrency,
        max_deliver=config.ingest_max_receive_count,
        ack_wait=config.invocation_timeout,
    )
