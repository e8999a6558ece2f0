"""
Contract Service Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.

Usage:
    from .factory import create_contract_service
    service = create_contract_service(config)
"""
from typing import Optional

from core.config import ContractsConfig, get_settings

from .contract_service import ContractService
from .protocols import ContractRepositoryProtocol


def create_contract_repository(config: Optional[ContractsConfig] = None) -> ContractRepositoryProtocol:
    """Create the Postgres-backed contract store"""
    # Import real repository here (not at module level)
    from .contract_repository import ContractRepository

    return ContractRepository(config=config)


def create_contract_service(
    config: Optional[ContractsConfig] = None,
    repository: Optional[ContractRepositoryProtocol] = None,
) -> ContractService:
    """
    Create ContractService with real dependencies.

    Use this in production, NOT in tests.

    Args:
        config: Contracts configuration
        repository: Existing store to share with the change-log poller

    Returns:
        Configured ContractService instance
    """
    return ContractService(repository=repository or create_contract_repository(config))


def create_change_log_poller(
    repository: ContractRepositoryProtocol,
    event_bus,
    config: Optional[ContractsConfig] = None,
):
    """Create the change-log poller publishing ContractStatusChanged events"""
    from .events import ChangeCaptureProcessor, ChangeLogPoller, EventPublisher, NATSDeadLetterSink

    config = config or get_settings().contracts
    processor = ChangeCaptureProcessor(
        publisher=EventPublisher(event_bus, config=config),
        dead_letter_sink=NATSDeadLetterSink(event_bus, config.changelog_dead_letter_subject),
        config=config,
    )
    return ChangeLogPoller(repository=repository, processor=processor, config=config)


def create_event_publisher(event_bus, config: Optional[ContractsConfig] = None):
    """Create the publisher for events raised over HTTP"""
    from .events import EventPublisher

    return EventPublisher(event_bus, config=config or get_settings().contracts)


def create_ingest_handler(
    contract_service: ContractService,
    event_bus,
    config: Optional[ContractsConfig] = None,
):
    """Create the ingest queue consumer"""
    from .events import ContractIngestHandler, NATSDeadLetterSink

    config = config or get_settings().contracts
    return ContractIngestHandler(
        contract_service=contract_service,
        dead_letter_sink=NATSDeadLetterSink(event_bus, config.ingest_dead_letter_subject),
        config=config,
    )
