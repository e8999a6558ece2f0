"""
Contract Change Capture

Turns committed contract writes (change-log entries) into
ContractStatusChanged events:

    change log -> filter -> map -> EventPublisher -> bus
                                 \\-> dead-letter sink

Delivery is at-least-once. The poller commits its cursor only after a batch
has been fully published or dead-lettered, so any fault or timeout leads to
the batch being read again. Repeated timeouts on one entry count against its
retry bound like publish failures do.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from core.config import ContractsConfig, get_settings
from ..models import ChangeEventName, ChangeRecord, ContractStatus
from ..protocols import (
    ContractRepositoryProtocol,
    DeadLetterSinkProtocol,
    MalformedChangeRecordError,
    PublishFailedError,
    StoreUnavailableError,
)
from .models import ContractStatusChangedEvent
from .publishers import EventPublisher

logger = logging.getLogger(__name__)

MONITORED_EVENT_NAMES = frozenset({ChangeEventName.INSERT.value, ChangeEventName.MODIFY.value})
MONITORED_STATUSES = frozenset({ContractStatus.DRAFT.value, ContractStatus.APPROVED.value})

DEAD_LETTER_SOURCE = "changelog"


def is_monitored(record: ChangeRecord) -> bool:
    """Only inserts/modifications that leave the contract DRAFT or APPROVED are published"""
    if record.event_name not in MONITORED_EVENT_NAMES:
        return False
    status = (record.new_image or {}).get("contract_status")
    return status in MONITORED_STATUSES


def map_change_record(record: ChangeRecord) -> ContractStatusChangedEvent:
    """Project the new image of a change onto the ContractStatusChanged detail"""
    if not record.new_image:
        raise MalformedChangeRecordError(f"Change {record.sequence} has no new image")
    try:
        return ContractStatusChangedEvent.model_validate(record.new_image)
    except ValidationError as e:
        raise MalformedChangeRecordError(
            f"Change {record.sequence} for property {record.property_id} cannot be mapped: {e}"
        ) from e


@dataclass
class BatchResult:
    """Outcome of one change-capture batch"""
    published: int = 0
    filtered: int = 0
    dead_lettered: int = 0
    last_sequence: Optional[int] = None

    @property
    def processed(self) -> int:
        return self.published + self.filtered + self.dead_lettered


PendingEntry = Tuple[ChangeRecord, ContractStatusChangedEvent]


class ChangeCaptureProcessor:
    """
    Filter, map and deliver a batch of change-log entries.

    A failed publish is retried from the failing entry onwards. With
    bisect-on-failure the remainder is split in halves, which isolates a
    poison entry. An entry that fails more than `max_retry_attempts` times
    is dead-lettered and the rest of the batch carries on.

    Failure counts are kept per change sequence across batches, so an entry
    whose batch is abandoned (timeout, redelivery) still reaches the bound.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        dead_letter_sink: DeadLetterSinkProtocol,
        config: Optional[ContractsConfig] = None,
        log_event: Optional[bool] = None,
    ):
        settings = get_settings()
        self.publisher = publisher
        self.dead_letter_sink = dead_letter_sink
        self.config = config or settings.contracts
        self.max_retry_attempts = self.config.change_capture_max_retry_attempts
        self.bisect_on_failure = self.config.change_capture_bisect_on_failure
        self.log_event = settings.logging.log_event if log_event is None else log_event
        self.failures: Dict[int, int] = {}
        self._completed: Set[int] = set()

    async def process_batch(self, records: List[ChangeRecord]) -> BatchResult:
        """
        Deliver one batch of change-log entries.

        Raises:
            Exception from the dead-letter sink; the batch is then redelivered
        """
        result = BatchResult()
        pending: List[PendingEntry] = []
        self._completed = set()

        for record in records:
            if self.log_event:
                logger.info(f"Change record: {record.model_dump_json()}")

            if not is_monitored(record):
                result.filtered += 1
                self._complete(record)
                continue

            try:
                pending.append((record, map_change_record(record)))
            except MalformedChangeRecordError as e:
                logger.warning(str(e))
                await self._dead_letter(record, e)
                result.dead_lettered += 1

        await self._deliver(pending, result)

        if records:
            result.last_sequence = records[-1].sequence

        logger.debug(
            f"Change batch done: published={result.published} "
            f"filtered={result.filtered} dead_lettered={result.dead_lettered}"
        )
        return result

    def first_unfinished(self, records: List[ChangeRecord]) -> Optional[ChangeRecord]:
        """Earliest entry of the last batch that was neither delivered, filtered nor dead-lettered"""
        for record in records:
            if record.sequence not in self._completed:
                return record
        return None

    async def record_failure(self, record: ChangeRecord, error: Exception) -> bool:
        """
        Count one failed attempt for an entry.

        Returns:
            True when the entry exceeded the retry bound and was dead-lettered
        """
        attempts = self.failures.get(record.sequence, 0) + 1
        self.failures[record.sequence] = attempts
        if attempts <= self.max_retry_attempts:
            return False

        logger.error(
            f"Change {record.sequence} for property {record.property_id} "
            f"failed {attempts} times, sending to dead-letter queue"
        )
        await self._dead_letter(record, error)
        return True

    async def _deliver(self, entries: List[PendingEntry], result: BatchResult) -> None:
        index = 0
        while index < len(entries):
            record, detail = entries[index]
            try:
                await self.publisher.publish_contract_status_changed(detail)
                result.published += 1
                self._complete(record)
                index += 1
                continue
            except PublishFailedError as e:
                if await self.record_failure(record, e):
                    result.dead_lettered += 1
                    index += 1
                    continue

                remaining = entries[index:]
                logger.warning(
                    f"Publish failed for change {record.sequence} "
                    f"(failure {self.failures[record.sequence]}), retrying {len(remaining)} entries"
                )
                if self.bisect_on_failure and len(remaining) > 1:
                    middle = len(remaining) // 2
                    await self._deliver(remaining[:middle], result)
                    await self._deliver(remaining[middle:], result)
                    return

    def _complete(self, record: ChangeRecord) -> None:
        self._completed.add(record.sequence)
        self.failures.pop(record.sequence, None)

    async def _dead_letter(self, record: ChangeRecord, error: Exception) -> None:
        await self.dead_letter_sink.send(
            record.model_dump(mode="json"),
            error=str(error) or repr(error),
            source=DEAD_LETTER_SOURCE,
        )
        self._complete(record)


class ChangeLogPoller:
    """
    Background loop reading the change log after this consumer's cursor.

    read -> process (bounded by the invocation timeout) -> commit cursor
    """

    def __init__(
        self,
        repository: ContractRepositoryProtocol,
        processor: ChangeCaptureProcessor,
        config: Optional[ContractsConfig] = None,
    ):
        self.repository = repository
        self.processor = processor
        self.config = config or get_settings().contracts
        self.consumer = self.config.change_capture_consumer
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> BatchResult:
        """
        Process one batch; the cursor moves only when the batch completed.

        A timed-out batch counts as one failed attempt of its first unfinished
        entry. Once that entry is dead-lettered the cursor moves up to it.
        """
        records = await self.repository.read_changes(self.consumer, self.config.change_capture_batch_size)
        if not records:
            return BatchResult()

        try:
            result = await asyncio.wait_for(
                self.processor.process_batch(records),
                timeout=self.config.invocation_timeout,
            )
        except asyncio.TimeoutError as e:
            stuck = self.processor.first_unfinished(records)
            if stuck is not None and await self.processor.record_failure(stuck, e):
                await self.repository.commit_changes(self.consumer, stuck.sequence)
            raise

        await self.repository.commit_changes(self.consumer, result.last_sequence)
        return result

    async def run(self) -> None:
        self._running = True
        logger.info(f"Change log poller started (consumer={self.consumer})")

        while self._running:
            try:
                result = await self.poll_once()
            except asyncio.TimeoutError:
                logger.warning(
                    f"Change batch exceeded {self.config.invocation_timeout}s, will be redelivered"
                )
                result = None
            except (StoreUnavailableError, PublishFailedError) as e:
                logger.warning(f"Change batch failed, will be redelivered: {e}")
                result = None
            except Exception as e:
                logger.error(f"Unexpected error in change log poller: {e}", exc_info=True)
                result = None

            if not result or not result.processed:
                await asyncio.sleep(self.config.change_capture_poll_interval)

        logger.info("Change log poller stopped")

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
