"""
Purchase Ledger
===============
Durable record of every paid purchase, keyed by the payment intent id.

Three jobs:
- Dedup key for webhook redelivery (create-if-absent before minting a token)
- In-flight fulfillment claim so concurrent redeliveries mint and mail once
- Server-side download counter (atomic increment with a ceiling), checked in
  addition to the count embedded in the token

pip install asyncpg structlog
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

import asyncpg
import structlog

from pipeline.errors import LimitExceeded, NotFound
from schemas import PurchaseRecord

logger = structlog.get_logger(component="purchase_ledger")

DEFAULT_CLAIM_TIMEOUT = timedelta(minutes=5)


# =============================================================================
# INTERFACE
# =============================================================================

class IPurchaseLedger(ABC):
    """Purchase storage with atomic download accounting"""

    async def initialize(self) -> None:
        """Open connections / run migrations. No-op for in-process ledgers."""

    async def close(self) -> None:
        """Release connections. No-op for in-process ledgers."""

    @abstractmethod
    async def get(self, purchase_id: str) -> Optional[PurchaseRecord]:
        pass

    @abstractmethod
    async def create_if_absent(self, record: PurchaseRecord) -> tuple[PurchaseRecord, bool]:
        """Insert unless present. Returns the stored record and whether it was created."""
        pass

    @abstractmethod
    async def claim_fulfillment(
        self,
        purchase_id: str,
        timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> bool:
        """
        Take the in-flight fulfillment claim. False when the link was already
        emailed or another delivery holds a claim younger than ``timeout``.
        """
        pass

    @abstractmethod
    async def release_claim(self, purchase_id: str) -> None:
        pass

    @abstractmethod
    async def mark_fulfilled(
        self,
        purchase_id: str,
        token_issued_at: datetime,
        email_sent: bool,
    ) -> PurchaseRecord:
        """Record the outcome and release the claim."""
        pass

    @abstractmethod
    async def increment_downloads(self, purchase_id: str, ceiling: int) -> PurchaseRecord:
        """Add one download unless already at ``ceiling`` (raises LimitExceeded)."""
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryPurchaseLedger(IPurchaseLedger):
    """Single-process ledger; swap for PostgresPurchaseLedger in production"""

    def __init__(self):
        self._records: dict[str, PurchaseRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, purchase_id: str) -> Optional[PurchaseRecord]:
        async with self._lock:
            return self._records.get(purchase_id)

    async def create_if_absent(self, record: PurchaseRecord) -> tuple[PurchaseRecord, bool]:
        async with self._lock:
            existing = self._records.get(record.purchase_id)
            if existing is not None:
                return existing, False
            self._records[record.purchase_id] = record
            return record, True

    async def claim_fulfillment(
        self,
        purchase_id: str,
        timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> bool:
        now = datetime.now(timezone.utc)
        async with self._lock:
            record = self._records.get(purchase_id)
            if record is None:
                raise NotFound(f"Purchase not found: {purchase_id}")
            if record.email_sent:
                return False
            claimed_at = record.fulfillment_claimed_at
            if claimed_at is not None and now - claimed_at < timeout:
                return False
            self._records[purchase_id] = record.model_copy(update={"fulfillment_claimed_at": now})
            return True

    async def release_claim(self, purchase_id: str) -> None:
        async with self._lock:
            record = self._records.get(purchase_id)
            if record is not None:
                self._records[purchase_id] = record.model_copy(
                    update={"fulfillment_claimed_at": None}
                )

    async def mark_fulfilled(
        self,
        purchase_id: str,
        token_issued_at: datetime,
        email_sent: bool,
    ) -> PurchaseRecord:
        async with self._lock:
            record = self._records.get(purchase_id)
            if record is None:
                raise NotFound(f"Purchase not found: {purchase_id}")
            updated = record.model_copy(update={
                "token_issued_at": token_issued_at,
                "email_sent": email_sent,
                "fulfillment_claimed_at": None,
            })
            self._records[purchase_id] = updated
            return updated

    async def increment_downloads(self, purchase_id: str, ceiling: int) -> PurchaseRecord:
        async with self._lock:
            record = self._records.get(purchase_id)
            if record is None:
                raise NotFound(f"Purchase not found: {purchase_id}")
            if record.download_count >= ceiling:
                logger.info(
                    "download_ceiling_reached",
                    purchase_id=purchase_id,
                    count=record.download_count,
                    ceiling=ceiling,
                )
                raise LimitExceeded()
            updated = record.model_copy(update={"download_count": record.download_count + 1})
            self._records[purchase_id] = updated
            return updated


# =============================================================================
# POSTGRES IMPLEMENTATION
# =============================================================================

class PostgresPurchaseLedger(IPurchaseLedger):
    """asyncpg-backed ledger. Atomicity comes from single-statement updates."""

    MIGRATIONS = [
        """
        CREATE TABLE IF NOT EXISTS purchases (
            purchase_id VARCHAR(255) PRIMARY KEY,
            model_id VARCHAR(100) NOT NULL,
            customer_email VARCHAR(320) NOT NULL,
            amount INTEGER NOT NULL DEFAULT 0,
            fulfillment_type VARCHAR(30) NOT NULL DEFAULT 'digital_download',
            partner_id VARCHAR(100),
            token_issued_at TIMESTAMPTZ,
            email_sent BOOLEAN NOT NULL DEFAULT FALSE,
            fulfillment_claimed_at TIMESTAMPTZ,
            download_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """,
        "ALTER TABLE purchases ADD COLUMN IF NOT EXISTS fulfillment_claimed_at TIMESTAMPTZ",
        "CREATE INDEX IF NOT EXISTS idx_purchases_email ON purchases(customer_email)",
    ]

    COLUMNS = (
        "purchase_id, model_id, customer_email, amount, fulfillment_type, partner_id, "
        "token_issued_at, email_sent, fulfillment_claimed_at, download_count, created_at"
    )

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
            )
        except Exception as e:
            logger.error("ledger_pool_failed", error=str(e))
            raise

        async with self._pool.acquire() as conn:
            for migration in self.MIGRATIONS:
                await conn.execute(migration)
        logger.info("ledger_initialized", backend="postgres")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("ledger_closed", backend="postgres")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgresPurchaseLedger used before initialize()")
        return self._pool

    @staticmethod
    def _to_record(row: asyncpg.Record) -> PurchaseRecord:
        return PurchaseRecord(**dict(row))

    async def get(self, purchase_id: str) -> Optional[PurchaseRecord]:
        row = await self._require_pool().fetchrow(
            f"SELECT {self.COLUMNS} FROM purchases WHERE purchase_id = $1",
            purchase_id,
        )
        return self._to_record(row) if row else None

    async def create_if_absent(self, record: PurchaseRecord) -> tuple[PurchaseRecord, bool]:
        row = await self._require_pool().fetchrow(
            f"""
            INSERT INTO purchases ({self.COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            ON CONFLICT (purchase_id) DO NOTHING
            RETURNING {self.COLUMNS}
            """,
            record.purchase_id,
            record.model_id,
            record.customer_email,
            record.amount,
            record.fulfillment_type.value,
            record.partner_id,
            record.token_issued_at,
            record.email_sent,
            record.fulfillment_claimed_at,
            record.download_count,
            record.created_at,
        )
        if row is not None:
            return self._to_record(row), True

        existing = await self.get(record.purchase_id)
        if existing is None:
            raise RuntimeError(f"Purchase vanished during insert: {record.purchase_id}")
        return existing, False

    async def claim_fulfillment(
        self,
        purchase_id: str,
        timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> bool:
        now = datetime.now(timezone.utc)
        row = await self._require_pool().fetchrow(
            """
            UPDATE purchases
            SET fulfillment_claimed_at = $2
            WHERE purchase_id = $1
              AND email_sent = FALSE
              AND (fulfillment_claimed_at IS NULL OR fulfillment_claimed_at < $3)
            RETURNING purchase_id
            """,
            purchase_id,
            now,
            now - timeout,
        )
        if row is not None:
            return True
        if await self.get(purchase_id) is None:
            raise NotFound(f"Purchase not found: {purchase_id}")
        return False

    async def release_claim(self, purchase_id: str) -> None:
        await self._require_pool().execute(
            "UPDATE purchases SET fulfillment_claimed_at = NULL WHERE purchase_id = $1",
            purchase_id,
        )

    async def mark_fulfilled(
        self,
        purchase_id: str,
        token_issued_at: datetime,
        email_sent: bool,
    ) -> PurchaseRecord:
        row = await self._require_pool().fetchrow(
            f"""
            UPDATE purchases
            SET token_issued_at = $2, email_sent = $3, fulfillment_claimed_at = NULL
            WHERE purchase_id = $1
            RETURNING {self.COLUMNS}
            """,
            purchase_id,
            token_issued_at,
            email_sent,
        )
        if row is None:
            raise NotFound(f"Purchase not found: {purchase_id}")
        return self._to_record(row)

    async def increment_downloads(self, purchase_id: str, ceiling: int) -> PurchaseRecord:
        row = await self._require_pool().fetchrow(
            f"""
            UPDATE purchases
            SET download_count = download_count + 1
            WHERE purchase_id = $1 AND download_count < $2
            RETURNING {self.COLUMNS}
            """,
            purchase_id,
            ceiling,
        )
        if row is not None:
            return self._to_record(row)

        existing = await self.get(purchase_id)
        if existing is None:
            raise NotFound(f"Purchase not found: {purchase_id}")
        logger.info(
            "download_ceiling_reached",
            purchase_id=purchase_id,
            count=existing.download_count,
            ceiling=ceiling,
        )
        raise LimitExceeded()
