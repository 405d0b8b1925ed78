"""Idempotency ledger: one row per fulfillment attempt.

The ledger is the only cross-process synchronization point for fulfillment.
``try_begin`` relies on the database's own conditional writes:

1. ``INSERT … ON CONFLICT DO NOTHING`` creates the ``started`` row (fast path).
2. A single conditional ``UPDATE`` re-acquires a row in ``error`` (or a stale
   ``started`` row when takeover is enabled).
3. Otherwise the current status is reported back to the caller.

Rows are never deleted; they double as the audit trail.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    and_,
    or_,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool


class RunStatus(Enum):
    STARTED = "started"
    OK = "ok"
    ERROR = "error"


metadata = MetaData()

fulfillment_runs = Table(
    "fulfillment_runs",
    metadata,
    Column("chain_id", BigInteger, primary_key=True, autoincrement=False),
    Column("seller_address", String(64), primary_key=True),
    Column("payment_reference", String(255), primary_key=True),
    Column("order_id", String(255), nullable=False),
    Column("status", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("last_error", Text),
    Column("detail", Text),
)

_KEY_COLUMNS = ["chain_id", "seller_address", "payment_reference"]
_MAX_ERROR_CHARS = 2000


def _required(value: str | None, name: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{name} is required")
    return value.strip()


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(frozen=True)
class RunKey:
    """Normalized identity of one logical fulfillment attempt."""

    chain_id: int
    seller_address: str
    payment_reference: str

    @classmethod
    def of(cls, chain_id: int, seller: str, payment_reference: str) -> "RunKey":
        return cls(
            chain_id=int(chain_id),
            seller_address=_required(seller, "seller").lower(),
            payment_reference=_required(payment_reference, "payment_reference"),
        )

    def clause(self):
        return and_(
            fulfillment_runs.c.chain_id == self.chain_id,
            fulfillment_runs.c.seller_address == self.seller_address,
            fulfillment_runs.c.payment_reference == self.payment_reference,
        )


@dataclass(frozen=True)
class FulfillmentRun:
    chain_id: int
    seller_address: str
    payment_reference: str
    order_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    last_error: str | None = None
    detail: dict | None = None


class FulfillmentRunStore(ABC):
    """Persistent key→status store behind the Run Gate."""

    @abstractmethod
    async def try_begin(
        self,
        chain_id: int,
        seller: str,
        payment_reference: str,
        order_id: str,
        *,
        allow_started_takeover: bool,
        stale_minutes: int,
    ) -> tuple[bool, str | None]:
        """Atomically create or re-acquire a ``started`` row.

        Returns:
            (acquired, status), where ``status`` is the row's status after the call.
        """
        ...

    @abstractmethod
    async def mark_ok(self, chain_id: int, seller: str, payment_reference: str) -> bool:
        """Move an owned ``started`` row to ``ok``. No-op on any other status."""
        ...

    @abstractmethod
    async def mark_error(self, chain_id: int, seller: str, payment_reference: str, error: str) -> bool:
        """Move a ``started`` (or ``error``) row to ``error``. No-op once ``ok``."""
        ...

    @abstractmethod
    async def get_status(self, chain_id: int, seller: str, payment_reference: str) -> str | None: ...

    @abstractmethod
    async def get_run(self, chain_id: int, seller: str, payment_reference: str) -> FulfillmentRun | None: ...

    @abstractmethod
    async def set_detail(self, chain_id: int, seller: str, payment_reference: str, detail: dict) -> None:
        """Attach adapter-specific information (e.g. an ERP order name) to a run."""
        ...


class SqlAlchemyFulfillmentRunStore(FulfillmentRunStore):
    """Ledger backed by SQLite (aiosqlite) or PostgreSQL (asyncpg)."""

    def __init__(self, engine: AsyncEngine, clock: Callable[[], datetime] | None = None) -> None:
        if engine.dialect.name not in ("sqlite", "postgresql"):
            raise ValueError(f"Unsupported ledger dialect: {engine.dialect.name}")
        self.engine = engine
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_url(cls, url: str, clock: Callable[[], datetime] | None = None) -> "SqlAlchemyFulfillmentRunStore":
        return cls(create_ledger_engine(url), clock=clock)

    async def ensure_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    def _insert_ignore(self, values: dict):
        dialect = postgresql if self.engine.dialect.name == "postgresql" else sqlite
        return dialect.insert(fulfillment_runs).values(**values).on_conflict_do_nothing(index_elements=_KEY_COLUMNS)

    async def try_begin(
        self,
        chain_id: int,
        seller: str,
        payment_reference: str,
        order_id: str,
        *,
        allow_started_takeover: bool,
        stale_minutes: int,
    ) -> tuple[bool, str | None]:
        key = RunKey.of(chain_id, seller, payment_reference)
        order_norm = _required(order_id, "order_id")
        now = self._clock()

        async with self.engine.begin() as conn:
            inserted = await conn.execute(
                self._insert_ignore(
                    {
                        "chain_id": key.chain_id,
                        "seller_address": key.seller_address,
                        "payment_reference": key.payment_reference,
                        "order_id": order_norm,
                        "status": RunStatus.STARTED.value,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            )
            if inserted.rowcount == 1:
                return True, RunStatus.STARTED.value

        takeover = fulfillment_runs.c.status == RunStatus.ERROR.value
        if allow_started_takeover:
            cutoff = now - timedelta(minutes=stale_minutes)
            takeover = or_(
                takeover,
                and_(
                    fulfillment_runs.c.status == RunStatus.STARTED.value,
                    fulfillment_runs.c.updated_at < cutoff,
                ),
            )

        async with self.engine.begin() as conn:
            taken = await conn.execute(
                update(fulfillment_runs)
                .where(key.clause(), takeover)
                .values(
                    status=RunStatus.STARTED.value,
                    updated_at=now,
                    completed_at=None,
                    last_error=None,
                    order_id=order_norm,
                )
            )
            if taken.rowcount == 1:
                return True, RunStatus.STARTED.value

        return False, await self._status(key)

    async def mark_ok(self, chain_id: int, seller: str, payment_reference: str) -> bool:
        key = RunKey.of(chain_id, seller, payment_reference)
        now = self._clock()
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(fulfillment_runs)
                .where(key.clause(), fulfillment_runs.c.status == RunStatus.STARTED.value)
                .values(status=RunStatus.OK.value, updated_at=now, completed_at=now, last_error=None)
            )
        return result.rowcount == 1

    async def mark_error(self, chain_id: int, seller: str, payment_reference: str, error: str) -> bool:
        key = RunKey.of(chain_id, seller, payment_reference)
        now = self._clock()
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(fulfillment_runs)
                .where(
                    key.clause(),
                    fulfillment_runs.c.status.in_([RunStatus.STARTED.value, RunStatus.ERROR.value]),
                )
                .values(
                    status=RunStatus.ERROR.value,
                    updated_at=now,
                    completed_at=now,
                    last_error=(error or "")[:_MAX_ERROR_CHARS],
                )
            )
        return result.rowcount == 1

    async def get_status(self, chain_id: int, seller: str, payment_reference: str) -> str | None:
        return await self._status(RunKey.of(chain_id, seller, payment_reference))

    async def _status(self, key: RunKey) -> str | None:
        async with self.engine.connect() as conn:
            result = await conn.execute(select(fulfillment_runs.c.status).where(key.clause()).limit(1))
            return result.scalar_one_or_none()

    async def get_run(self, chain_id: int, seller: str, payment_reference: str) -> FulfillmentRun | None:
        key = RunKey.of(chain_id, seller, payment_reference)
        async with self.engine.connect() as conn:
            result = await conn.execute(select(fulfillment_runs).where(key.clause()).limit(1))
            row = result.mappings().first()

        if row is None:
            return None
        return FulfillmentRun(
            chain_id=row["chain_id"],
            seller_address=row["seller_address"],
            payment_reference=row["payment_reference"],
            order_id=row["order_id"],
            status=row["status"],
            created_at=_as_utc(row["created_at"]),
            updated_at=_as_utc(row["updated_at"]),
            completed_at=_as_utc(row["completed_at"]),
            last_error=row["last_error"],
            detail=json.loads(row["detail"]) if row["detail"] else None,
        )

    async def set_detail(self, chain_id: int, seller: str, payment_reference: str, detail: dict) -> None:
        key = RunKey.of(chain_id, seller, payment_reference)
        async with self.engine.begin() as conn:
            await conn.execute(
                update(fulfillment_runs)
                .where(key.clause())
                .values(detail=json.dumps(detail, sort_keys=True), updated_at=self._clock())
            )


def create_ledger_engine(url: str) -> AsyncEngine:
    """Create the async engine for a ledger URL."""
    if url.startswith("sqlite"):
        # One connection per checkout; concurrent writers wait on the file lock.
        return create_async_engine(url, poolclass=NullPool, connect_args={"timeout": 30})
    return create_async_engine(url, pool_pre_ping=True)
