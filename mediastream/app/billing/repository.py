"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import Customer, Price, PriceType, Product, Subscription, SubscriptionStatus
from ...app_context import get_conn


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


def _row_to_product(row: dict) -> Product:
    return Product(
        id=row["id"],
        active=bool(row["active"]),
        name=row["name"],
        description=row.get("description"),
        image=row.get("image"),
        metadata=row.get("metadata") or {},
    )


def _row_to_price(row: dict) -> Price:
    return Price(
        id=row["id"],
        product_id=row.get("product_id") or "",
        active=bool(row["active"]),
        currency=row["currency"],
        description=row.get("description"),
        type=PriceType(row["type"]),
        unit_amount=row.get("unit_amount"),
        interval=row.get("interval"),
        interval_count=row.get("interval_count"),
        trial_period_days=row.get("trial_period_days"),
        metadata=row.get("metadata") or {},
    )


def _row_to_customer(row: dict) -> Customer:
    return Customer(user_id=str(row["id"]), provider_customer_id=row.get("stripe_customer_id"))


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=row["id"],
        user_id=str(row["user_id"]),
        price_id=row["price_id"],
        status=SubscriptionStatus(row["status"]),
        quantity=int(row["quantity"]),
        cancel_at_period_end=bool(row["cancel_at_period_end"]),
        cancel_at=row.get("cancel_at"),
        canceled_at=row.get("canceled_at"),
        current_period_start=row.get("current_period_start"),
        current_period_end=row.get("current_period_end"),
        created=row.get("created"),
        ended_at=row.get("ended_at"),
        trial_start=row.get("trial_start"),
        trial_end=row.get("trial_end"),
        metadata=row.get("metadata") or {},
    )


class PostgresBillingRepository:
    """Concrete repository persisting billing models in PostgreSQL.

    Every write is a single ``INSERT ... ON CONFLICT`` statement keyed by the
    provider identifier, so concurrent duplicate deliveries converge on the
    last applied row.
    """

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

    def upsert_product(self, product: Product) -> Product:
        """Insert or fully replace a product row."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO products (id, active, name, description, image, metadata)
                VALUES (%(id)s, %(active)s, %(name)s, %(description)s, %(image)s, %(metadata)s)
                ON CONFLICT (id) DO UPDATE SET
                    active = EXCLUDED.active,
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    image = EXCLUDED.image,
                    metadata = EXCLUDED.metadata
                RETURNING *
                """,
                {
                    "id": product.id,
                    "active": product.active,
                    "name": product.name,
                    "description": product.description,
                    "image": product.image,
                    "metadata": psycopg2.extras.Json(product.metadata),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist product")
            return _row_to_product(row)

    def upsert_price(self, price: Price) -> Price:
        """Insert or fully replace a price row."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO prices (
                    id,
                    product_id,
                    active,
                    currency,
                    description,
                    type,
                    unit_amount,
                    interval,
                    interval_count,
                    trial_period_days,
                    metadata
                )
                VALUES (%(id)s, %(product_id)s, %(active)s, %(currency)s, %(description)s,
                        %(type)s, %(unit_amount)s, %(interval)s, %(interval_count)s,
                        %(trial_period_days)s, %(metadata)s)
                ON CONFLICT (id) DO UPDATE SET
                    product_id = EXCLUDED.product_id,
                    active = EXCLUDED.active,
                    currency = EXCLUDED.currency,
                    description = EXCLUDED.description,
                    type = EXCLUDED.type,
                    unit_amount = EXCLUDED.unit_amount,
                    interval = EXCLUDED.interval,
                    interval_count = EXCLUDED.interval_count,
                    trial_period_days = EXCLUDED.trial_period_days,
                    metadata = EXCLUDED.metadata
                RETURNING *
                """,
                {
                    "id": price.id,
                    "product_id": price.product_id,
                    "active": price.active,
                    "currency": price.currency,
                    "description": price.description,
                    "type": price.type.value,
                    "unit_amount": price.unit_amount,
                    "interval": price.interval.value if price.interval else None,
                    "interval_count": price.interval_count,
                    "trial_period_days": price.trial_period_days,
                    "metadata": psycopg2.extras.Json(price.metadata),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist price")
            return _row_to_price(row)

    def get_customer(self, user_id: str) -> Optional[Customer]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, stripe_customer_id
                FROM customers
                WHERE id = %s
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_customer(row) if row else None

    def get_customer_by_provider_id(self, provider_customer_id: str) -> Optional[Customer]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT id, stripe_customer_id
                FROM customers
                WHERE stripe_customer_id = %s
                LIMIT 1
                """,
                (provider_customer_id,),
            )
            row = cursor.fetchone()
            return _row_to_customer(row) if row else None

    def claim_customer(self, user_id: str, provider_customer_id: str) -> str:
        """Link ``user_id`` to a provider customer unless another link already exists.

        Returns the provider customer id stored for the user after the write,
        which is the existing one when a concurrent resolver got there first.
        """

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO customers (id, stripe_customer_id)
                VALUES (%s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    stripe_customer_id = EXCLUDED.stripe_customer_id
                WHERE customers.stripe_customer_id IS NULL
                   OR customers.stripe_customer_id = ''
                RETURNING stripe_customer_id
                """,
                (user_id, provider_customer_id),
            )
            row = cursor.fetchone()
            if row:
                return row["stripe_customer_id"]

            cursor.execute(
                """
                SELECT stripe_customer_id
                FROM customers
                WHERE id = %s
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            if not row or not row["stripe_customer_id"]:
                raise RuntimeError("Failed to persist customer mapping")
            return row["stripe_customer_id"]

    def upsert_subscription(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO subscriptions (
                    id,
                    user_id,
                    price_id,
                    status,
                    quantity,
                    cancel_at_period_end,
                    cancel_at,
                    canceled_at,
                    current_period_start,
                    current_period_end,
                    created,
                    ended_at,
                    trial_start,
                    trial_end,
                    metadata
                )
                VALUES (%(id)s, %(user_id)s, %(price_id)s, %(status)s, %(quantity)s,
                        %(cancel_at_period_end)s, %(cancel_at)s, %(canceled_at)s,
                        %(current_period_start)s, %(current_period_end)s, %(created)s,
                        %(ended_at)s, %(trial_start)s, %(trial_end)s, %(metadata)s)
                ON CONFLICT (id) DO UPDATE SET
                    user_id = EXCLUDED.user_id,
                    price_id = EXCLUDED.price_id,
                    status = EXCLUDED.status,
                    quantity = EXCLUDED.quantity,
                    cancel_at_period_end = EXCLUDED.cancel_at_period_end,
                    cancel_at = EXCLUDED.cancel_at,
                    canceled_at = EXCLUDED.canceled_at,
                    current_period_start = EXCLUDED.current_period_start,
                    current_period_end = EXCLUDED.current_period_end,
                    created = EXCLUDED.created,
                    ended_at = EXCLUDED.ended_at,
                    trial_start = EXCLUDED.trial_start,
                    trial_end = EXCLUDED.trial_end,
                    metadata = EXCLUDED.metadata
                RETURNING *
                """,
                {
                    "id": subscription.id,
                    "user_id": subscription.user_id,
                    "price_id": subscription.price_id,
                    "status": subscription.status.value,
                    "quantity": subscription.quantity,
                    "cancel_at_period_end": subscription.cancel_at_period_end,
                    "cancel_at": subscription.cancel_at,
                    "canceled_at": subscription.canceled_at,
                    "current_period_start": subscription.current_period_start,
                    "current_period_end": subscription.current_period_end,
                    "created": subscription.created,
                    "ended_at": subscription.ended_at,
                    "trial_start": subscription.trial_start,
                    "trial_end": subscription.trial_end,
                    "metadata": psycopg2.extras.Json(subscription.metadata),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscriptions
                WHERE id = %s
                LIMIT 1
                """,
                (subscription_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def update_user_billing(
        self,
        user_id: str,
        *,
        billing_address: Dict[str, Any],
        payment_method: Dict[str, Any],
    ) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET billing_address = %s,
                    payment_method = %s
                WHERE id = %s
                """,
                (
                    psycopg2.extras.Json(billing_address),
                    psycopg2.extras.Json(payment_method),
                    user_id,
                ),
            )


__all__ = ["PostgresBillingRepository", "managed_connection"]
