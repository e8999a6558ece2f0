"""
Contract Status Propagation Component Tests

End to end over in-memory doubles:
command -> store + change log -> change capture -> bus, plus the existence
check reading the same store.

Usage:
    pytest tests/component/tdd/contract_service/test_contract_pipeline.py -v
"""
from typing import Optional

import pytest

from microservices.contract_service.contract_service import ContractService
from microservices.contract_service.events import (
    ChangeCaptureProcessor,
    ChangeLogPoller,
    EventPublisher,
)
from microservices.contract_service.models import CommandKind, ContractCommand, ContractStatus
from microservices.contract_service.protocols import DuplicateContractError, InvalidTransitionError
from microservices.property_service.contract_exists_checker import ContractExistsChecker
from microservices.property_service.models import ContractStatus as ContractStatusView
from microservices.property_service.protocols import ContractStatusNotFoundError

from .mocks import MockContractRepository, MockDeadLetterSink

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


class StoreStatusReader:
    """Existence-check view over the in-memory contract store"""

    def __init__(self, repository: MockContractRepository):
        self.repository = repository

    async def get_contract_status(self, property_id: str) -> Optional[ContractStatusView]:
        contract = await self.repository.get_contract(property_id)
        if contract is None:
            return None
        return ContractStatusView(
            property_id=contract.property_id,
            contract_id=contract.contract_id,
            contract_status=contract.contract_status.value,
        )


@pytest.fixture
def mock_repo():
    return MockContractRepository()


@pytest.fixture
def contract_service(mock_repo):
    return ContractService(repository=mock_repo)


@pytest.fixture
def poller(mock_repo, mock_event_bus, contracts_config):
    processor = ChangeCaptureProcessor(
        publisher=EventPublisher(mock_event_bus, config=contracts_config),
        dead_letter_sink=MockDeadLetterSink(),
        config=contracts_config,
        log_event=False,
    )
    return ChangeLogPoller(mock_repo, processor, config=contracts_config)


@pytest.fixture
def checker(mock_repo, contracts_config):
    return ContractExistsChecker(StoreStatusReader(mock_repo), config=contracts_config, log_event=False)


async def drain(poller: ChangeLogPoller):
    while (await poller.poll_once()).processed:
        pass


class TestContractStatusPropagation:

    async def test_create_then_update_publishes_one_approved_event(
        self, contract_service, mock_repo, mock_event_bus, poller
    ):
        await contract_service.handle(ContractCommand(kind=CommandKind.CREATE.value, property_id="p1", contract_id="c1"))
        stored = await mock_repo.get_contract("p1")
        assert (stored.contract_id, stored.contract_status) == ("c1", ContractStatus.DRAFT)

        await contract_service.handle(ContractCommand(kind=CommandKind.UPDATE.value, property_id="p1"))
        stored = await mock_repo.get_contract("p1")
        assert (stored.contract_id, stored.contract_status) == ("c1", ContractStatus.APPROVED)

        await drain(poller)

        events = mock_event_bus.get_published("ContractStatusChanged")
        approved = [e for e in events if e["data"]["contract_status"] == "APPROVED"]
        assert len(approved) == 1
        assert approved[0]["data"]["property_id"] == "p1"
        assert approved[0]["data"]["contract_id"] == "c1"
        # log order per property is preserved on the bus
        assert [e["data"]["contract_status"] for e in events] == ["DRAFT", "APPROVED"]

    async def test_update_without_create_publishes_nothing(
        self, contract_service, mock_repo, mock_event_bus, poller
    ):
        with pytest.raises(InvalidTransitionError):
            await contract_service.handle(ContractCommand(kind=CommandKind.UPDATE.value, property_id="p2"))

        await drain(poller)

        assert await mock_repo.get_contract("p2") is None
        mock_event_bus.assert_no_events_published()

    async def test_rejected_duplicate_adds_no_event(
        self, contract_service, mock_event_bus, poller, generate
    ):
        property_id = generate.property_id()
        await contract_service.handle(ContractCommand(kind=CommandKind.CREATE.value, property_id=property_id))
        with pytest.raises(DuplicateContractError):
            await contract_service.handle(ContractCommand(kind=CommandKind.CREATE.value, property_id=property_id))

        await drain(poller)

        events = mock_event_bus.get_published("ContractStatusChanged")
        assert len(events) == 1
        assert events[0]["data"]["property_id"] == property_id


class TestExistenceCheckAgainstStore:

    async def test_not_found_before_create_and_draft_after(self, contract_service, checker):
        with pytest.raises(ContractStatusNotFoundError):
            await checker.check_exists("p1")

        await contract_service.handle(ContractCommand(kind=CommandKind.CREATE.value, property_id="p1", contract_id="c1"))

        current = await checker.check_exists("p1")
        assert current.contract_id == "c1"
        assert current.contract_status == "DRAFT"
