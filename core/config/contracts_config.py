#!/usr/bin/env python3
"""Contracts service configuration

Stage-aware settings of the contract status propagation pipeline: table
names, bus/stream naming, change capture batching and retry policy, event
publisher backoff, and ingest consumer limits.
"""
import os
from dataclasses import dataclass
from enum import Enum

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


class Stage(str, Enum):
    """Deployment stages"""
    LOCAL = "local"
    DEV = "dev"
    PROD = "prod"

    @classmethod
    def parse(cls, value: str) -> 'Stage':
        try:
            return cls(value.lower())
        except ValueError:
            return cls.LOCAL


class EventNamespace(str, Enum):
    """Event sources of the unicorn bounded contexts"""
    CONTRACTS = "unicorn.contracts"
    PROPERTIES = "unicorn.properties"
    WEB = "unicorn.web"


def is_prod(stage: Stage) -> bool:
    return stage == Stage.PROD


def event_bus_name(stage: Stage, namespace: EventNamespace) -> str:
    """Name of the event bus owned by a namespace in a stage"""
    if namespace == EventNamespace.CONTRACTS:
        return f"UnicornContractsBus-{stage.value}"
    if namespace == EventNamespace.PROPERTIES:
        return f"UnicornPropertiesBus-{stage.value}"
    if namespace == EventNamespace.WEB:
        return f"UnicornWebBus-{stage.value}"
    raise ValueError(f"Unknown namespace: {namespace}")


@dataclass
class ContractsConfig:
    """Contracts pipeline configuration"""

    service_name: str = EventNamespace.CONTRACTS.value
    service_host: str = "0.0.0.0"
    service_port: int = 8080
    stage: Stage = Stage.LOCAL

    # ===========================================
    # Contract store
    # ===========================================
    contracts_table: str = "contracts"
    changelog_table: str = "contracts_changelog"
    changelog_cursor_table: str = "contracts_changelog_cursor"
    store_max_attempts: int = 3

    # ===========================================
    # Change capture (change log -> bus)
    # ===========================================
    change_capture_enabled: bool = True
    change_capture_consumer: str = "contract-status-changed-pipe"
    change_capture_batch_size: int = 1
    change_capture_max_retry_attempts: int = 3
    change_capture_bisect_on_failure: bool = True
    change_capture_poll_interval: float = 1.0

    # ===========================================
    # Event publisher
    # ===========================================
    publish_max_attempts: int = 3
    publish_backoff_min: float = 0.2
    publish_backoff_max: float = 2.0
    publish_max_in_flight: int = 10
    bus_reconnect_interval: float = 5.0

    # ===========================================
    # Ingest queue consumer
    # ===========================================
    ingest_enabled: bool = True
    ingest_max_concurrency: int = 5
    ingest_max_receive_count: int = 1

    # Wall-clock budget of a single invocation (seconds)
    invocation_timeout: float = 20.0

    @property
    def event_bus_name(self) -> str:
        return event_bus_name(self.stage, EventNamespace.CONTRACTS)

    @property
    def ingest_stream(self) -> str:
        return f"UnicornContractsIngestQueue-{self.stage.value}"

    @property
    def ingest_subject(self) -> str:
        return f"{EventNamespace.CONTRACTS.value}.ingest"

    @property
    def dead_letter_stream(self) -> str:
        return f"UnicornContractsDLQ-{self.stage.value}"

    @property
    def ingest_dead_letter_subject(self) -> str:
        return f"{EventNamespace.CONTRACTS.value}.dlq.ingest"

    @property
    def changelog_dead_letter_subject(self) -> str:
        return f"{EventNamespace.CONTRACTS.value}.dlq.changelog"

    @classmethod
    def from_env(cls) -> 'ContractsConfig':
        """Load contracts configuration from environment variables"""
        return cls(
            service_name=os.getenv("SERVICE_NAMESPACE", EventNamespace.CONTRACTS.value),
            service_host=os.getenv("HOST", "0.0.0.0"),
            service_port=_int(os.getenv("PORT", "8080"), 8080),
            stage=Stage.parse(os.getenv("STAGE", "local")),

            # Store
            contracts_table=os.getenv("CONTRACTS_TABLE", "contracts"),
            changelog_table=os.getenv("CONTRACTS_CHANGELOG_TABLE", "contracts_changelog"),
            changelog_cursor_table=os.getenv("CONTRACTS_CHANGELOG_CURSOR_TABLE", "contracts_changelog_cursor"),
            store_max_attempts=_int(os.getenv("STORE_MAX_ATTEMPTS", "3"), 3),

            # Change capture
            change_capture_enabled=_bool(os.getenv("CHANGE_CAPTURE_ENABLED", "true")),
            change_capture_consumer=os.getenv("CHANGE_CAPTURE_CONSUMER", "contract-status-changed-pipe"),
            change_capture_batch_size=max(1, _int(os.getenv("CHANGE_CAPTURE_BATCH_SIZE", "1"), 1)),
            change_capture_max_retry_attempts=_int(os.getenv("CHANGE_CAPTURE_MAX_RETRY_ATTEMPTS", "3"), 3),
            change_capture_bisect_on_failure=_bool(os.getenv("CHANGE_CAPTURE_BISECT_ON_FAILURE", "true")),
            change_capture_poll_interval=_float(os.getenv("CHANGE_CAPTURE_POLL_INTERVAL", "1"), 1.0),

            # Publisher
            publish_max_attempts=max(1, _int(os.getenv("PUBLISH_MAX_ATTEMPTS", "3"), 3)),
            publish_backoff_min=_float(os.getenv("PUBLISH_BACKOFF_MIN", "0.2"), 0.2),
            publish_backoff_max=_float(os.getenv("PUBLISH_BACKOFF_MAX", "2"), 2.0),
            publish_max_in_flight=max(1, _int(os.getenv("PUBLISH_MAX_IN_FLIGHT", "10"), 10)),
            bus_reconnect_interval=_float(os.getenv("BUS_RECONNECT_INTERVAL", "5"), 5.0),

            # Ingest
            ingest_enabled=_bool(os.getenv("INGEST_ENABLED", "true")),
            ingest_max_concurrency=max(1, _int(os.getenv("INGEST_MAX_CONCURRENCY", "5"), 5)),
            ingest_max_receive_count=max(1, _int(os.getenv("INGEST_MAX_RECEIVE_COUNT", "1"), 1)),

            invocation_timeout=_float(os.getenv("INVOCATION_TIMEOUT", "20"), 20.0),
        )
