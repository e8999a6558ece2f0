"""
Contract Service - Mock Dependencies

Mock implementations for component testing.
Returns Contract model objects as expected by the service.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from microservices.contract_service.models import (
    ChangeEventName,
    ChangeRecord,
    Contract,
    ContractStatus,
)
from microservices.contract_service.protocols import ConditionFailedError


class MockContractRepository:
    """In-memory contract store for component testing

    Implements ContractRepositoryProtocol: conditional writes and a change log
    appended with every accepted write.
    """

    def __init__(self):
        self._data: Dict[str, Contract] = {}
        self.changelog: List[ChangeRecord] = []
        self.cursors: Dict[str, int] = {}
        self._sequence = 0
        self._error: Optional[Exception] = None
        self._call_log: List[Dict[str, Any]] = []

    def set_contract(
        self,
        property_id: str,
        contract_id: str = "con_test_123",
        status: ContractStatus = ContractStatus.DRAFT,
        modified_on: Optional[datetime] = None,
    ) -> Contract:
        """Seed a contract without writing a change record"""
        now = modified_on or datetime(2024, 1, 1, tzinfo=timezone.utc)
        contract = Contract(
            property_id=property_id,
            contract_id=contract_id,
            contract_status=status,
            contract_created=now,
            contract_last_modified_on=now,
        )
        self._data[property_id] = contract
        return contract

    def append_change(
        self,
        event_name: str,
        property_id: str,
        new_image: Optional[Dict[str, Any]],
        old_image: Optional[Dict[str, Any]] = None,
    ) -> ChangeRecord:
        """Append a raw change-log entry"""
        self._sequence += 1
        record = ChangeRecord(
            sequence=self._sequence,
            event_name=event_name,
            property_id=property_id,
            old_image=old_image,
            new_image=new_image,
            recorded_at=datetime.now(timezone.utc),
        )
        self.changelog.append(record)
        return record

    def set_error(self, error: Exception):
        """Raise on every call"""
        self._error = error

    def clear_error(self):
        self._error = None

    def get_calls(self, method: Optional[str] = None) -> List[Dict[str, Any]]:
        if method:
            return [c for c in self._call_log if c["method"] == method]
        return self._call_log

    def _log(self, method: str, **kwargs):
        self._call_log.append({"method": method, **kwargs})
        if self._error:
            raise self._error

    # Protocol methods

    async def initialize(self) -> None:
        self._log("initialize")

    async def close(self) -> None:
        self._log("close")

    async def get_contract(self, property_id: str) -> Optional[Contract]:
        self._log("get_contract", property_id=property_id)
        return self._data.get(property_id)

    async def create_contract_if_absent(self, contract: Contract) -> Contract:
        self._log("create_contract_if_absent", property_id=contract.property_id)
        current = self._data.get(contract.property_id)
        if current is not None:
            raise ConditionFailedError(contract.property_id, current=current)

        self._data[contract.property_id] = contract
        self.append_change(
            ChangeEventName.INSERT.value,
            contract.property_id,
            new_image=contract.model_dump(mode="json"),
        )
        return contract

    async def update_status_if_current(
        self,
        property_id: str,
        expected_status: ContractStatus,
        new_status: ContractStatus,
        modified_on: datetime,
    ) -> Contract:
        self._log(
            "update_status_if_current",
            property_id=property_id,
            expected_status=expected_status,
            new_status=new_status,
        )
        current = self._data.get(property_id)
        if current is None or current.contract_status != expected_status:
            raise ConditionFailedError(property_id, current=current)

        updated = current.model_copy(
            update={"contract_status": new_status, "contract_last_modified_on": modified_on}
        )
        self._data[property_id] = updated
        self.append_change(
            ChangeEventName.MODIFY.value,
            property_id,
            new_image=updated.model_dump(mode="json"),
            old_image=current.model_dump(mode="json"),
        )
        return updated

    async def delete_contract(self, property_id: str) -> bool:
        self._log("delete_contract", property_id=property_id)
        return self._data.pop(property_id, None) is not None

    async def read_changes(self, consumer: str, limit: int) -> List[ChangeRecord]:
        self._log("read_changes", consumer=consumer, limit=limit)
        cursor = self.cursors.get(consumer, 0)
        return [r for r in self.changelog if r.sequence > cursor][:limit]

    async def commit_changes(self, consumer: str, sequence: int) -> None:
        self._log("commit_changes", consumer=consumer, sequence=sequence)
        self.cursors[consumer] = max(self.cursors.get(consumer, 0), sequence)

    async def health_check(self) -> bool:
        return self._error is None


class MockDeadLetterSink:
    """Collects dead-lettered units of work"""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []
        self._error: Optional[Exception] = None

    async def send(self, payload: Dict[str, Any], error: str, source: str) -> None:
        if self._error:
            raise self._error
        self.messages.append({"payload": payload, "error": error, "source": source})

    def set_error(self, error: Exception):
        self._error = error

    def get_messages(self, source: Optional[str] = None) -> List[Dict[str, Any]]:
        if source:
            return [m for m in self.messages if m["source"] == source]
        return self.messages
