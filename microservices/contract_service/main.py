"""
Contract Microservice

Responsibilities:
- Contract commands over HTTP (POST /contracts creates, PUT /contracts approves)
- Contract commands from the ingest queue
- Change-log poller publishing ContractStatusChanged events
- PublicationApprovalRequested events raised by the web context
"""

import asyncio

from fastapi import FastAPI, HTTPException, Depends, status, Path, Body
import uvicorn
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from pydantic import ValidationError

from core.config import EventNamespace, get_settings
from core.logger import setup_service_logger
from core.nats_client import EventType, get_event_bus
from .contract_service import ContractService
from .events import EventPublisher, PublicationApprovalRequestedEvent, register_event_handlers
from .factory import (
    create_change_log_poller,
    create_contract_repository,
    create_contract_service,
    create_event_publisher,
    create_ingest_handler,
)
from .models import (
    Contract,
    ContractCommand,
    ContractResponse,
    ContractServiceStatus,
    ErrorResponse,
    EventPublishedResponse,
)
from .protocols import (
    CommandParseError,
    ContractServiceError,
    DuplicateContractError,
    InvalidTransitionError,
    PublishFailedError,
    StoreUnavailableError,
    UnsupportedOperationError,
)

# Initialize configuration
settings = get_settings()
config = settings.contracts

# Setup loggers (use actual service name)
logger = setup_service_logger("contract_service")


class ContractMicroservice:
    """Contract microservice core class"""

    def __init__(self):
        self.repository = None
        self.contract_service: Optional[ContractService] = None
        self.event_bus = None
        self.publisher: Optional[EventPublisher] = None
        self.poller = None
        self._reconnect_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Initialize the microservice"""
        try:
            self.repository = create_contract_repository(config)
            await self.repository.initialize()
            self.contract_service = create_contract_service(config, repository=self.repository)
            logger.info("Contract microservice initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize contract microservice: {e}")
            raise

        if not await self.start_event_pipeline():
            self._reconnect_task = asyncio.create_task(self._reconnect_event_bus())

    async def start_event_pipeline(self) -> bool:
        """Connect the bus, then start the ingest consumer and the change-log poller"""
        try:
            self.event_bus = await get_event_bus(config.service_name)
            await self._ensure_streams()

            if config.ingest_enabled:
                handler = create_ingest_handler(self.contract_service, self.event_bus, config)
                await register_event_handlers(self.event_bus, handler, config)
        except Exception as e:
            logger.warning(
                f"Failed to initialize event bus: {e}. "
                f"Retrying every {config.bus_reconnect_interval}s, events are not published meanwhile."
            )
            self.event_bus = None
            return False

        self.publisher = create_event_publisher(self.event_bus, config)
        if config.change_capture_enabled:
            self.poller = create_change_log_poller(self.repository, self.event_bus, config)
            self.poller.start()

        logger.info("Event bus initialized successfully")
        return True

    async def _reconnect_event_bus(self):
        while True:
            await asyncio.sleep(config.bus_reconnect_interval)
            if await self.start_event_pipeline():
                return

    async def _ensure_streams(self):
        await self.event_bus.ensure_stream(config.event_bus_name, [
            f"{EventNamespace.CONTRACTS.value}.{EventType.CONTRACT_STATUS_CHANGED.value}",
            f"{EventNamespace.WEB.value}.{EventType.PUBLICATION_APPROVAL_REQUESTED.value}",
        ])
        await self.event_bus.ensure_stream(config.ingest_stream, [config.ingest_subject])
        await self.event_bus.ensure_stream(
            config.dead_letter_stream,
            [config.ingest_dead_letter_subject, config.changelog_dead_letter_subject],
        )

    @property
    def event_bus_connected(self) -> bool:
        return bool(self.event_bus and self.event_bus.is_connected)

    async def shutdown(self):
        """Shutdown the microservice"""
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        if self.poller:
            await self.poller.stop()
        if self.event_bus:
            await self.event_bus.close()
            logger.info("Event bus closed")
        if self.repository:
            await self.repository.close()
        logger.info("Contract microservice shutdown completed")


# Global microservice instance
contract_microservice = ContractMicroservice()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    await contract_microservice.initialize()
    yield
    await contract_microservice.shutdown()


# Create FastAPI application
app = FastAPI(
    title="Unicorn Contracts Service",
    description="Contract lifecycle and contract status events",
    version="1.0.0",
    lifespan=lifespan
)


# Dependency injection
def get_contract_service() -> ContractService:
    """Get contract service instance"""
    if not contract_microservice.contract_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Contract service not initialized"
        )
    return contract_microservice.contract_service


def get_event_publisher() -> EventPublisher:
    """Get publisher for events raised over HTTP"""
    if not contract_microservice.publisher:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event bus not connected"
        )
    return contract_microservice.publisher


def _error(status_code: int, error: ContractServiceError, property_id: Optional[str] = None,
           current_status=None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            message=str(error),
            error_code=getattr(error, "reason", None) or error.error_code,
            property_id=property_id,
            current_status=current_status,
        ).model_dump(mode="json"),
    )


async def _execute(method: str, body: Dict[str, Any], contract_service: ContractService) -> ContractResponse:
    """Run a command and map its outcome onto HTTP"""
    try:
        command = ContractCommand.for_http_method(method, body)
    except ValidationError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, CommandParseError(f"Invalid contract request: {e}"))

    try:
        contract = await contract_service.handle(command)
    except DuplicateContractError as e:
        raise _error(status.HTTP_409_CONFLICT, e, e.property_id,
                     e.current.contract_status if e.current else None)
    except InvalidTransitionError as e:
        code = (status.HTTP_404_NOT_FOUND if e.reason == InvalidTransitionError.CONTRACT_NOT_FOUND
                else status.HTTP_409_CONFLICT)
        raise _error(code, e, e.property_id, e.current_status)
    except UnsupportedOperationError as e:
        raise _error(status.HTTP_405_METHOD_NOT_ALLOWED, e, command.property_id)
    except StoreUnavailableError as e:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, e, command.property_id)

    return ContractResponse(
        success=True,
        contract=contract,
        message=f"Contract {contract.contract_status.value} for property {contract.property_id}",
    )


# Health check endpoints
@app.get("/health")
async def health_check():
    """Service health check, degraded while the event bus is down"""
    bus_connected = contract_microservice.event_bus_connected
    return {
        "status": "healthy" if bus_connected else "degraded",
        "service": "contract_service",
        "event_bus_connected": bus_connected,
        "port": config.service_port,
        "stage": config.stage.value,
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/health/detailed", response_model=ContractServiceStatus)
async def detailed_health_check(
    contract_service: ContractService = Depends(get_contract_service)
):
    """Detailed health check with database connectivity"""
    database_connected = await contract_service.health_check()
    bus_connected = contract_microservice.event_bus_connected
    return ContractServiceStatus(
        status="operational" if database_connected and bus_connected else "degraded",
        database_connected=database_connected,
        event_bus_connected=bus_connected,
        timestamp=datetime.now(timezone.utc),
    )


# Contract command endpoints

@app.post("/contracts", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
async def create_contract(
    body: Dict[str, Any] = Body(...),
    contract_service: ContractService = Depends(get_contract_service)
):
    """Create a DRAFT contract for a property"""
    return await _execute("POST", body, contract_service)


@app.put("/contracts", response_model=ContractResponse)
async def update_contract(
    body: Dict[str, Any] = Body(...),
    contract_service: ContractService = Depends(get_contract_service)
):
    """Approve the DRAFT contract of a property"""
    return await _execute("PUT", body, contract_service)


@app.get("/api/v1/contracts/{property_id}", response_model=Contract)
async def get_contract(
    property_id: str = Path(..., description="Property ID"),
    contract_service: ContractService = Depends(get_contract_service)
):
    """Get the contract of a property"""
    try:
        contract = await contract_service.get_contract(property_id)
    except StoreUnavailableError as e:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, e, property_id)
    if not contract:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")
    return contract


# Events raised by the web context

@app.post(
    "/api/v1/events/publication-approval-requested",
    response_model=EventPublishedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_publication_approval(
    request: PublicationApprovalRequestedEvent,
    publisher: EventPublisher = Depends(get_event_publisher)
):
    """Publish PublicationApprovalRequested on the contracts bus"""
    try:
        event_id = await publisher.publish_publication_approval_requested(
            property_id=request.property_id,
            contract_id=request.contract_id,
            contract_status=request.contract_status,
            contract_last_modified_on=request.contract_last_modified_on,
        )
    except PublishFailedError as e:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, e, request.property_id)

    return EventPublishedResponse(
        event_id=event_id,
        message=f"Publication approval requested for property {request.property_id}",
    )


if __name__ == "__main__":
    uvicorn.run(
        "microservices.contract_service.main:app",
        host=config.service_host,
        port=config.service_port,
        reload=settings.debug,
        log_level=settings.logging.log_level.lower()
    )
