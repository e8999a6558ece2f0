"""
Contract Repository

Data access layer for the contract store using PostgresClient (asyncpg).

The store keeps one row per property and an append-only change log. Every
accepted write runs in one transaction that (1) evaluates the precondition in
the write statement itself and (2) appends the change-log entry with the
before and after images.
"""

import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import ContractsConfig, InfraConfig, get_settings
from core.postgres_client import TRANSIENT_DB_ERRORS, PostgresClient
from .models import ChangeEventName, ChangeRecord, Contract, ContractStatus
from .protocols import ConditionFailedError, StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Arbitrary key of the advisory lock serialising change-log appends
CHANGELOG_APPEND_LOCK = 0x636F6E7472616374


class ContractRepository:
    """
    Repository for contract data operations

    Handles all database operations for contracts and the change log.
    """

    def __init__(
        self,
        db: Optional[PostgresClient] = None,
        config: Optional[ContractsConfig] = None,
        infra_config: Optional[InfraConfig] = None,
    ):
        """Initialize Contract Repository with PostgresClient"""
        settings = get_settings()
        self.config = config or settings.contracts
        infra_config = infra_config or settings.infrastructure

        self.db = db or PostgresClient(self.config.service_name, config=infra_config)
        self.schema = infra_config.postgres_schema
        self.contracts_table = f'"{self.schema}".{self.config.contracts_table}'
        self.changelog_table = f'"{self.schema}".{self.config.changelog_table}'
        self.cursor_table = f'"{self.schema}".{self.config.changelog_cursor_table}'
        self.max_attempts = self.config.store_max_attempts

        logger.info("ContractRepository initialized with PostgresClient")

    async def _run(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run a store call, retrying transient faults with backoff"""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
                retry=retry_if_exception_type(TRANSIENT_DB_ERRORS),
                reraise=True,
            ):
                with attempt:
                    return await func()
        except TRANSIENT_DB_ERRORS as e:
            logger.error(f"Contract store unavailable during {operation}: {e}")
            raise StoreUnavailableError(f"{operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create schema and tables if they do not exist"""
        statements = [
            f'CREATE SCHEMA IF NOT EXISTS "{self.schema}"',
            f'''
            CREATE TABLE IF NOT EXISTS {self.contracts_table} (
                property_id TEXT PRIMARY KEY,
                contract_id TEXT NOT NULL,
                contract_status TEXT NOT NULL,
                contract_created TIMESTAMPTZ,
                contract_last_modified_on TIMESTAMPTZ NOT NULL
            )
            ''',
            f'''
            CREATE TABLE IF NOT EXISTS {self.changelog_table} (
                sequence BIGSERIAL PRIMARY KEY,
                event_name TEXT NOT NULL,
                property_id TEXT NOT NULL,
                old_image JSONB,
                new_image JSONB,
                recorded_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            ''',
            f'''
            CREATE TABLE IF NOT EXISTS {self.cursor_table} (
                consumer TEXT PRIMARY KEY,
                last_sequence BIGINT NOT NULL DEFAULT 0,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            ''',
        ]

        async def _create():
            async with self.db.transaction() as conn:
                for statement in statements:
                    await conn.execute(statement)

        await self._run("initialize", _create)
        logger.info(f"Contract store ready in schema {self.schema}")

    # ------------------------------------------------------------------
    # Contract reads and conditional writes
    # ------------------------------------------------------------------

    async def get_contract(self, property_id: str) -> Optional[Contract]:
        """Get contract by property ID"""
        query = f'SELECT * FROM {self.contracts_table} WHERE property_id = $1'

        row = await self._run("get_contract", lambda: self.db.query_row(query, [property_id]))
        return self._row_to_contract(row) if row else None

    async def create_contract_if_absent(self, contract: Contract) -> Contract:
        """
        Insert a contract unless the property already has one.

        Raises:
            ConditionFailedError: a record exists (attached as `current`)
        """
        insert = f'''
            INSERT INTO {self.contracts_table}
                (property_id, contract_id, contract_status, contract_created, contract_last_modified_on)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (property_id) DO NOTHING
            RETURNING *
        '''
        select = f'SELECT * FROM {self.contracts_table} WHERE property_id = $1'

        async def _insert() -> Contract:
            async with self.db.transaction() as conn:
                row = await conn.fetchrow(
                    insert,
                    contract.property_id,
                    contract.contract_id,
                    contract.contract_status.value,
                    contract.contract_created,
                    contract.contract_last_modified_on,
                )
                if row is None:
                    existing = await conn.fetchrow(select, contract.property_id)
                    raise ConditionFailedError(
                        contract.property_id,
                        current=self._row_to_contract(existing) if existing else None,
                    )

                created = self._row_to_contract(row)
                await self._append_change(conn, ChangeEventName.INSERT, None, created)
                return created

        return await self._run("create_contract", _insert)

    async def update_status_if_current(
        self,
        property_id: str,
        expected_status: ContractStatus,
        new_status: ContractStatus,
        modified_on: datetime,
    ) -> Contract:
        """
        Move the contract to `new_status` if it is currently `expected_status`.

        The precondition is part of the UPDATE's WHERE clause. The preceding
        row-locking read only captures the before-image for the change log.

        Raises:
            ConditionFailedError: no record, or status differs (record attached as `current`)
        """
        select = f'SELECT * FROM {self.contracts_table} WHERE property_id = $1 FOR UPDATE'
        update = f'''
            UPDATE {self.contracts_table}
            SET contract_status = $3, contract_last_modified_on = $4
            WHERE property_id = $1 AND contract_status = $2
            RETURNING *
        '''

        async def _update() -> Contract:
            async with self.db.transaction() as conn:
                before_row = await conn.fetchrow(select, property_id)
                before = self._row_to_contract(before_row) if before_row else None

                row = await conn.fetchrow(
                    update, property_id, expected_status.value, new_status.value, modified_on
                )
                if row is None:
                    raise ConditionFailedError(property_id, current=before)

                updated = self._row_to_contract(row)
                await self._append_change(conn, ChangeEventName.MODIFY, before, updated)
                return updated

        return await self._run("update_contract", _update)

    async def delete_contract(self, property_id: str) -> bool:
        """Delete a contract (administrative clean-up, not part of the lifecycle)"""
        query = f'DELETE FROM {self.contracts_table} WHERE property_id = $1'

        status = await self._run("delete_contract", lambda: self.db.execute(query, [property_id]))
        deleted = status.endswith(" 1")
        if deleted:
            logger.info(f"Deleted contract for property {property_id}")
        return deleted

    async def _append_change(
        self,
        conn,
        event_name: ChangeEventName,
        before: Optional[Contract],
        after: Contract,
    ) -> None:
        # Serialise appends so sequence order equals commit order
        await conn.execute("SELECT pg_advisory_xact_lock($1)", CHANGELOG_APPEND_LOCK)
        await conn.execute(
            f'''
            INSERT INTO {self.changelog_table} (event_name, property_id, old_image, new_image)
            VALUES ($1, $2, $3::jsonb, $4::jsonb)
            ''',
            event_name.value,
            after.property_id,
            json.dumps(before.model_dump(mode="json")) if before else None,
            json.dumps(after.model_dump(mode="json")),
        )

    # ------------------------------------------------------------------
    # Change log
    # ------------------------------------------------------------------

    async def read_changes(self, consumer: str, limit: int) -> List[ChangeRecord]:
        """Read change-log entries after the consumer's committed cursor"""
        query = f'''
            SELECT * FROM {self.changelog_table}
            WHERE sequence > COALESCE(
                (SELECT last_sequence FROM {self.cursor_table} WHERE consumer = $1), 0
            )
            ORDER BY sequence
            LIMIT $2
        '''

        rows = await self._run("read_changes", lambda: self.db.query(query, [consumer, limit]))
        return [self._row_to_change(row) for row in rows]

    async def commit_changes(self, consumer: str, sequence: int) -> None:
        """Advance the consumer's cursor (never moves backwards)"""
        query = f'''
            INSERT INTO {self.cursor_table} (consumer, last_sequence, updated_at)
            VALUES ($1, $2, now())
            ON CONFLICT (consumer) DO UPDATE
            SET last_sequence = GREATEST({self.cursor_table}.last_sequence, EXCLUDED.last_sequence),
                updated_at = now()
        '''

        await self._run("commit_changes", lambda: self.db.execute(query, [consumer, sequence]))

    async def health_check(self) -> bool:
        return await self.db.health_check()

    async def close(self) -> None:
        await self.db.close()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_contract(self, row: Dict[str, Any]) -> Contract:
        row = dict(row)
        return Contract(
            property_id=row["property_id"],
            contract_id=row["contract_id"],
            contract_status=ContractStatus(row["contract_status"]),
            contract_created=row.get("contract_created"),
            contract_last_modified_on=row["contract_last_modified_on"],
        )

    def _row_to_change(self, row: Dict[str, Any]) -> ChangeRecord:
        row = dict(row)
        return ChangeRecord(
            sequence=row["sequence"],
            event_name=row["event_name"],
            property_id=row["property_id"],
            old_image=self._load_image(row.get("old_image")),
            new_image=self._load_image(row.get("new_image")),
            recorded_at=row.get("recorded_at"),
        )

    @staticmethod
    def _load_image(value: Any) -> Optional[Dict[str, Any]]:
        # asyncpg hands jsonb back as text unless a codec is registered
        if value is None:
            return None
        if isinstance(value, str):
            return json.loads(value)
        return dict(value)
