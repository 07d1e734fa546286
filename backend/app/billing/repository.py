"""Persistence layer for purchase records."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..entitlements.models import PaymentStatus, ProductRef, ProductType, PurchaseRecord

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS purchase_records (
    record_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    product_type TEXT NOT NULL,
    product_id TEXT NOT NULL,
    purchased_subjects TEXT[] NOT NULL DEFAULT '{}',
    amount INTEGER NOT NULL CHECK (amount >= 0),
    currency CHAR(3) NOT NULL,
    payment_status TEXT NOT NULL CHECK (payment_status IN ('pending', 'paid', 'failed')),
    gateway_order_id TEXT,
    gateway_payment_id TEXT,
    enrollment_date TIMESTAMPTZ NOT NULL,
    expiry_date TIMESTAMPTZ,
    paid_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS purchase_records_user_product_idx
    ON purchase_records (user_id, product_type, product_id);
CREATE INDEX IF NOT EXISTS purchase_records_gateway_order_idx
    ON purchase_records (gateway_order_id);
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_purchase_record(row: dict) -> PurchaseRecord:
    return PurchaseRecord(
        record_id=row["record_id"],
        user_id=row["user_id"],
        product=ProductRef(
            product_type=ProductType(row["product_type"]),
            product_id=row["product_id"],
        ),
        purchased_subjects=frozenset(row.get("purchased_subjects") or ()),
        amount=int(row["amount"]),
        currency=row["currency"],
        payment_status=PaymentStatus(row["payment_status"]),
        gateway_order_id=row.get("gateway_order_id"),
        gateway_payment_id=row.get("gateway_payment_id"),
        enrollment_date=row["enrollment_date"],
        expiry_date=row.get("expiry_date"),
        paid_at=row.get("paid_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresPurchaseRecordRepository:
    """Concrete repository persisting purchase records in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

    def create_purchase_record(self, record: PurchaseRecord) -> PurchaseRecord:
        """Append a new purchase record."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO purchase_records (
                    record_id,
                    user_id,
                    product_type,
                    product_id,
                    purchased_subjects,
                    amount,
                    currency,
                    payment_status,
                    gateway_order_id,
                    gateway_payment_id,
                    enrollment_date,
                    expiry_date,
                    paid_at
                )
                VALUES (%(record_id)s, %(user_id)s, %(product_type)s, %(product_id)s,
                        %(purchased_subjects)s, %(amount)s, %(currency)s, %(payment_status)s,
                        %(gateway_order_id)s, %(gateway_payment_id)s, %(enrollment_date)s,
                        %(expiry_date)s, %(paid_at)s)
                RETURNING *
                """,
                {
                    "record_id": record.record_id,
                    "user_id": record.user_id,
                    "product_type": record.product.product_type.value,
                    "product_id": record.product.product_id,
                    "purchased_subjects": sorted(record.purchased_subjects),
                    "amount": record.amount,
                    "currency": record.currency,
                    "payment_status": record.payment_status.value,
                    "gateway_order_id": record.gateway_order_id,
                    "gateway_payment_id": record.gateway_payment_id,
                    "enrollment_date": record.enrollment_date,
                    "expiry_date": record.expiry_date,
                    "paid_at": record.paid_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist purchase record")
            return _row_to_purchase_record(row)

    def get_purchase_record(self, record_id: str) -> Optional[PurchaseRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM purchase_records
                WHERE record_id = %s
                LIMIT 1
                """,
                (record_id,),
            )
            row = cursor.fetchone()
            return _row_to_purchase_record(row) if row else None

    def list_purchase_records(
        self,
        user_id: str,
        *,
        product: Optional[ProductRef] = None,
    ) -> List[PurchaseRecord]:
        with self._cursor() as cursor:
            if product is None:
                cursor.execute(
                    """
                    SELECT *
                    FROM purchase_records
                    WHERE user_id = %s
                    ORDER BY created_at ASC, record_id ASC
                    """,
                    (user_id,),
                )
            else:
                cursor.execute(
                    """
                    SELECT *
                    FROM purchase_records
                    WHERE user_id = %s AND product_type = %s AND product_id = %s
                    ORDER BY created_at ASC, record_id ASC
                    """,
                    (user_id, product.product_type.value, product.product_id),
                )
            rows = cursor.fetchall() or []
            return [_row_to_purchase_record(row) for row in rows]

    def attach_gateway_order(self, record_id: str, gateway_order_id: str) -> Optional[PurchaseRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE purchase_records
                SET gateway_order_id = %s, updated_at = NOW()
                WHERE record_id = %s AND payment_status = %s
                RETURNING *
                """,
                (gateway_order_id, record_id, PaymentStatus.PENDING.value),
            )
            row = cursor.fetchone()
            return _row_to_purchase_record(row) if row else None

    def transition_status(
        self,
        record_id: str,
        *,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        gateway_payment_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        expiry_date: Optional[datetime] = None,
    ) -> Optional[PurchaseRecord]:
        # The status guard in WHERE makes concurrent finalizers race safely.
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE purchase_records
                SET payment_status = %(to_status)s,
                    gateway_payment_id = COALESCE(%(gateway_payment_id)s, gateway_payment_id),
                    paid_at = COALESCE(%(paid_at)s, paid_at),
                    expiry_date = COALESCE(%(expiry_date)s, expiry_date),
                    updated_at = NOW()
                WHERE record_id = %(record_id)s AND payment_status = %(from_status)s
                RETURNING *
                """,
                {
                    "record_id": record_id,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                    "gateway_payment_id": gateway_payment_id,
                    "paid_at": paid_at,
                    "expiry_date": expiry_date,
                },
            )
            row = cursor.fetchone()
            return _row_to_purchase_record(row) if row else None


__all__ = ["PostgresPurchaseRecordRepository", "SCHEMA_SQL"]
