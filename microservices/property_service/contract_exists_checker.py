"""
Contract Exists Checker

Polled by the publication approval workflow to find out whether a property
has a contract yet. A single check never waits or retries; the workflow owns
the polling schedule.

handle() answers in the workflow task format:
    200  contract found, body is the ContractStatus
    400  request has no usable property_id
    404  no contract (or an empty contract ID) for the property
    500  the store could not be read
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from core.config import ContractsConfig, get_settings
from .models import CheckResult, ContractStatus, ContractStatusCheckInput
from .protocols import (
    ContractStatusNotFoundError,
    ContractStatusReaderProtocol,
    InvalidCheckRequestError,
)

logger = logging.getLogger(__name__)


class ContractExistsChecker:
    """Existence check over the contract store"""

    def __init__(
        self,
        repository: ContractStatusReaderProtocol,
        config: Optional[ContractsConfig] = None,
        log_event: Optional[bool] = None,
    ):
        settings = get_settings()
        self.repository = repository
        self.config = config or settings.contracts
        self.log_event = settings.logging.log_event if log_event is None else log_event

    async def check_exists(self, property_id: str) -> ContractStatus:
        """
        Look up the contract of a property.

        Raises:
            ContractStatusNotFoundError: no record, or the record has no contract ID
        """
        current = await self.repository.get_contract_status(property_id)
        if current is None or not current.contract_id:
            logger.info(f"Contract not in system yet for {property_id}")
            raise ContractStatusNotFoundError(property_id)

        logger.debug(f"Current status for {property_id} is {current.contract_status}")
        return current

    @staticmethod
    def parse_input(event: Any) -> ContractStatusCheckInput:
        """Accept {"Input": {...}} from the workflow or the bare input object"""
        if not isinstance(event, dict):
            raise InvalidCheckRequestError("Check request must be a JSON object")
        detail = event.get("Input", event)
        if not isinstance(detail, dict):
            raise InvalidCheckRequestError("Check request Input must be a JSON object")
        try:
            return ContractStatusCheckInput.model_validate(detail)
        except ValidationError as e:
            raise InvalidCheckRequestError(f"Invalid check request: {e}") from e

    async def handle(self, event: Any) -> Dict[str, Any]:
        """Run one check and return {statusCode, body}"""
        if self.log_event:
            logger.info(f"Contract status check triggered: {json.dumps(event, default=str)}")

        try:
            request = self.parse_input(event)
        except InvalidCheckRequestError as e:
            logger.warning(str(e))
            return self._result(400, {"error": str(e), "error_code": e.error_code})

        try:
            current = await asyncio.wait_for(
                self.check_exists(request.property_id),
                timeout=self.config.invocation_timeout,
            )
        except ContractStatusNotFoundError as e:
            return self._result(404, {
                "error": str(e),
                "error_code": e.error_code,
                "property_id": request.property_id,
            })
        except Exception as e:
            logger.error(f"Error during contract status check for {request.property_id}: {e!r}")
            return self._result(500, {"error": str(e) or repr(e), "error_code": "CHECK_FAILED"})

        return self._result(200, current.model_dump())

    @staticmethod
    def _result(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
        return CheckResult(statusCode=status_code, body=json.dumps(body)).model_dump()
