"""
Change Capture Component Tests

Filter, mapping, retry/bisect isolation and dead-lettering of change-log
entries, plus the cursor handling of the poller.

Usage:
    pytest tests/component/tdd/contract_service/test_change_capture.py -v
"""
import asyncio
from dataclasses import replace

import pytest

from microservices.contract_service.events import (
    ChangeCaptureProcessor,
    ChangeLogPoller,
    EventPublisher,
)
from microservices.contract_service.models import ChangeEventName
from microservices.contract_service.protocols import PublishFailedError

from .mocks import MockContractRepository, MockDeadLetterSink

pytestmark = [pytest.mark.component, pytest.mark.asyncio]

CONTRACT_STATUS_CHANGED = "ContractStatusChanged"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mock_repo():
    return MockContractRepository()


@pytest.fixture
def dead_letters():
    return MockDeadLetterSink()


@pytest.fixture
def make_processor(mock_event_bus, dead_letters, contracts_config):
    def _make(**overrides):
        config = replace(contracts_config, **overrides)
        return ChangeCaptureProcessor(
            publisher=EventPublisher(mock_event_bus, config=config),
            dead_letter_sink=dead_letters,
            config=config,
            log_event=False,
        )
    return _make


@pytest.fixture
def processor(make_processor):
    return make_processor()


def image(property_id: str, status: str = "DRAFT", contract_id: str = "c1") -> dict:
    return {
        "property_id": property_id,
        "contract_id": contract_id,
        "contract_status": status,
        "contract_created": "2024-01-01T00:00:00Z",
        "contract_last_modified_on": "2024-01-01T00:00:00Z",
    }


def published_properties(event_bus) -> list:
    return [e["data"]["property_id"] for e in event_bus.get_published(CONTRACT_STATUS_CHANGED)]


# =============================================================================
# Filter and mapping
# =============================================================================

class TestChangeFilter:

    async def test_insert_and_modify_of_monitored_statuses_are_published(
        self, processor, mock_repo, mock_event_bus
    ):
        mock_repo.append_change("INSERT", "p1", image("p1", "DRAFT"))
        mock_repo.append_change("MODIFY", "p1", image("p1", "APPROVED"), old_image=image("p1", "DRAFT"))

        result = await processor.process_batch(mock_repo.changelog)

        assert result.published == 2
        assert result.filtered == 0
        statuses = [e["data"]["contract_status"] for e in mock_event_bus.get_published(CONTRACT_STATUS_CHANGED)]
        assert statuses == ["DRAFT", "APPROVED"]

    async def test_non_monitored_entries_are_dropped(self, processor, mock_repo, mock_event_bus):
        mock_repo.append_change("REMOVE", "p1", None, old_image=image("p1"))
        mock_repo.append_change("MODIFY", "p2", image("p2", "CANCELLED"))
        mock_repo.append_change("INSERT", "p3", image("p3", "CLOSED"))

        result = await processor.process_batch(mock_repo.changelog)

        assert result.filtered == 3
        assert result.published == 0
        assert result.last_sequence == 3
        mock_event_bus.assert_no_events_published()

    async def test_event_carries_projection_of_new_image(self, processor, mock_repo, mock_event_bus):
        mock_repo.append_change("MODIFY", "p1", image("p1", "APPROVED", contract_id="c9"))

        await processor.process_batch(mock_repo.changelog)

        event = mock_event_bus.assert_event_published(CONTRACT_STATUS_CHANGED)
        assert event["source"] == "unicorn.contracts"
        assert event["subject"] == "unicorn.contracts.ContractStatusChanged"
        assert set(event["data"]) == {
            "property_id", "contract_id", "contract_status", "contract_last_modified_on",
        }
        assert event["data"]["contract_id"] == "c9"

    async def test_malformed_entry_is_dead_lettered_without_publishing(
        self, processor, mock_repo, mock_event_bus, dead_letters
    ):
        broken = image("p1")
        del broken["contract_id"]
        mock_repo.append_change("INSERT", "p1", broken)
        mock_repo.append_change("INSERT", "p2", image("p2"))

        result = await processor.process_batch(mock_repo.changelog)

        assert result.dead_lettered == 1
        assert result.published == 1
        assert "p1" not in mock_event_bus.publish_attempts
        assert dead_letters.messages[0]["source"] == "changelog"
        assert dead_letters.messages[0]["payload"]["sequence"] == 1


# =============================================================================
# Retry, bisect and dead-letter
# =============================================================================

class TestPartialBatchIsolation:

    async def test_poison_entry_is_isolated_by_bisect(
        self, processor, mock_repo, mock_event_bus, dead_letters
    ):
        for property_id in ["a", "poison", "b", "c"]:
            mock_repo.append_change("INSERT", property_id, image(property_id))
        mock_event_bus.fail_property("poison")

        result = await processor.process_batch(mock_repo.changelog)

        assert published_properties(mock_event_bus) == ["a", "b", "c"]
        assert result.published == 3
        assert result.dead_lettered == 1
        # first attempt plus max_retry_attempts retries
        assert mock_event_bus.publish_attempts["poison"] == 4
        assert dead_letters.messages[0]["payload"]["property_id"] == "poison"

    async def test_poison_entry_is_isolated_without_bisect(
        self, make_processor, mock_repo, mock_event_bus, dead_letters
    ):
        processor = make_processor(change_capture_bisect_on_failure=False)
        for property_id in ["a", "poison", "b"]:
            mock_repo.append_change("INSERT", property_id, image(property_id))
        mock_event_bus.fail_property("poison")

        result = await processor.process_batch(mock_repo.changelog)

        assert published_properties(mock_event_bus) == ["a", "b"]
        assert result.dead_lettered == 1
        assert mock_event_bus.publish_attempts["poison"] == 4

    async def test_transient_failure_is_retried_not_dead_lettered(
        self, processor, mock_repo, mock_event_bus, dead_letters
    ):
        for property_id in ["a", "b"]:
            mock_repo.append_change("INSERT", property_id, image(property_id))
        mock_event_bus.fail_property("a", times=2)

        result = await processor.process_batch(mock_repo.changelog)

        assert published_properties(mock_event_bus) == ["a", "b"]
        assert result.dead_lettered == 0
        assert dead_letters.messages == []

    async def test_retry_bound_is_configurable(self, make_processor, mock_repo, mock_event_bus):
        processor = make_processor(change_capture_max_retry_attempts=0)
        mock_repo.append_change("INSERT", "poison", image("poison"))
        mock_event_bus.fail_property("poison")

        result = await processor.process_batch(mock_repo.changelog)

        assert result.dead_lettered == 1
        assert mock_event_bus.publish_attempts["poison"] == 1

    async def test_dead_letter_failure_propagates(
        self, processor, mock_repo, mock_event_bus, dead_letters
    ):
        mock_repo.append_change("INSERT", "poison", image("poison"))
        mock_event_bus.fail_property("poison")
        dead_letters.set_error(PublishFailedError("dlq down"))

        with pytest.raises(PublishFailedError):
            await processor.process_batch(mock_repo.changelog)

    async def test_redelivery_produces_identical_event_ids(self, processor, mock_repo, mock_event_bus):
        mock_repo.append_change("MODIFY", "p1", image("p1", "APPROVED"))

        await processor.process_batch(mock_repo.changelog)
        await processor.process_batch(mock_repo.changelog)

        events = mock_event_bus.get_published(CONTRACT_STATUS_CHANGED)
        assert len(events) == 2
        assert events[0]["id"] == events[1]["id"]
        assert events[0]["data"] == events[1]["data"]


# =============================================================================
# Poller
# =============================================================================

class TestChangeLogPoller:

    async def test_poll_commits_cursor_after_batch(
        self, processor, mock_repo, mock_event_bus, contracts_config
    ):
        mock_repo.append_change("INSERT", "p1", image("p1"))
        mock_repo.append_change("MODIFY", "p1", image("p1", "APPROVED"))
        poller = ChangeLogPoller(mock_repo, processor, config=contracts_config)

        result = await poller.poll_once()

        assert result.published == 2
        assert mock_repo.cursors[contracts_config.change_capture_consumer] == 2

        again = await poller.poll_once()
        assert again.processed == 0
        assert len(mock_event_bus.get_published(CONTRACT_STATUS_CHANGED)) == 2

    async def test_batch_size_limits_each_read(self, make_processor, mock_repo, contracts_config):
        config = replace(contracts_config, change_capture_batch_size=1)
        poller = ChangeLogPoller(mock_repo, make_processor(), config=config)
        mock_repo.append_change("INSERT", "p1", image("p1"))
        mock_repo.append_change("INSERT", "p2", image("p2"))

        await poller.poll_once()

        assert mock_repo.cursors[config.change_capture_consumer] == 1

    async def test_failed_batch_leaves_cursor_untouched(
        self, processor, mock_repo, mock_event_bus, dead_letters, contracts_config
    ):
        mock_repo.append_change("INSERT", "poison", image("poison"))
        mock_event_bus.fail_property("poison")
        dead_letters.set_error(PublishFailedError("dlq down"))
        poller = ChangeLogPoller(mock_repo, processor, config=contracts_config)

        with pytest.raises(PublishFailedError):
            await poller.poll_once()

        assert contracts_config.change_capture_consumer not in mock_repo.cursors

    async def test_timeout_leaves_cursor_untouched(
        self, make_processor, mock_repo, mock_event_bus, dead_letters, contracts_config
    ):
        config = replace(contracts_config, invocation_timeout=0.05)
        mock_repo.append_change("INSERT", "p1", image("p1"))
        mock_event_bus.stall_property("p1")
        poller = ChangeLogPoller(mock_repo, make_processor(), config=config)

        with pytest.raises(asyncio.TimeoutError):
            await poller.poll_once()

        assert mock_repo.get_calls("commit_changes") == []
        assert dead_letters.messages == []

    async def test_entry_timing_out_every_batch_is_dead_lettered(
        self, make_processor, mock_repo, mock_event_bus, dead_letters, contracts_config
    ):
        config = replace(contracts_config, invocation_timeout=0.05, change_capture_batch_size=1)
        processor = make_processor()
        poller = ChangeLogPoller(mock_repo, processor, config=config)
        mock_repo.append_change("INSERT", "poison", image("poison"))
        mock_repo.append_change("INSERT", "p2", image("p2"))
        mock_event_bus.stall_property("poison")

        # first attempt plus max_retry_attempts retries, each one timing out
        for _ in range(config.change_capture_max_retry_attempts + 1):
            with pytest.raises(asyncio.TimeoutError):
                await poller.poll_once()

        assert mock_event_bus.publish_attempts["poison"] == 4
        assert [m["payload"]["property_id"] for m in dead_letters.messages] == ["poison"]
        assert mock_repo.cursors[config.change_capture_consumer] == 1

        result = await poller.poll_once()

        assert result.published == 1
        assert published_properties(mock_event_bus) == ["p2"]
        assert mock_repo.cursors[config.change_capture_consumer] == 2

    async def test_successful_publish_resets_failure_count(
        self, processor, mock_repo, mock_event_bus
    ):
        mock_repo.append_change("INSERT", "a", image("a"))
        mock_event_bus.fail_property("a", times=2)

        await processor.process_batch(mock_repo.changelog)

        assert processor.failures == {}

    async def test_run_loop_publishes_until_stopped(
        self, processor, mock_repo, mock_event_bus, contracts_config
    ):
        mock_repo.append_change(ChangeEventName.INSERT.value, "p1", image("p1"))
        poller = ChangeLogPoller(mock_repo, processor, config=contracts_config)

        poller.start()
        for _ in range(100):
            if mock_event_bus.get_published(CONTRACT_STATUS_CHANGED):
                break
            await asyncio.sleep(0.01)
        await poller.stop()

        assert published_properties(mock_event_bus) == ["p1"]
