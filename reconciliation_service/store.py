"""
store.py — Order Store (SQLAlchemy)

The relational store is the single source of truth for order status. Status changes
go through `OrderStore.transition()`, one conditional UPDATE per call:

    UPDATE orders SET status = :target ... WHERE id = :id AND status IN (:allowed)

The affected row count decides whether the transition was applied, so two
unsynchronised callers (gateway webhook and client fallback) can race on the same
order without any in-process lock: at most one of them wins.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import JSON, BigInteger, DateTime, String, create_engine, update
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .domain import Customer, LineItem, NotificationKind, Order, OrderStatus
from .errors import OrderNotFoundError

log = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class OrderRow(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    items: Mapped[list] = mapped_column(JSON, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    customer: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payment_provider: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    placed_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    success_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


NOTIFIED_COLUMNS = {
    NotificationKind.ORDER_CREATED: "placed_notified_at",
    NotificationKind.PAYMENT_SUCCESS: "success_notified_at",
    NotificationKind.PAYMENT_FAILED: "failure_notified_at",
}


def _item_to_json(item: LineItem) -> dict:
    return {
        "productId": item.product_id,
        "name": item.name,
        "price": item.price,
        "quantity": item.quantity,
        "variant": item.variant,
        "path": item.path,
    }


def _item_from_json(data: dict) -> LineItem:
    return LineItem(
        product_id=data["productId"],
        name=data["name"],
        price=int(data["price"]),
        quantity=int(data["quantity"]),
        variant=data.get("variant"),
        path=data.get("path"),
    )


def _customer_to_json(customer: Customer) -> dict:
    return asdict(customer)


def _customer_from_json(data: dict) -> Customer:
    known = Customer.__dataclass_fields__
    return Customer(**{key: value for key, value in data.items() if key in known})


def _row_to_order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        items=tuple(_item_from_json(item) for item in row.items),
        amount=row.amount,
        currency=row.currency,
        customer=_customer_from_json(row.customer),
        status=OrderStatus(row.status),
        payment_id=row.payment_id,
        payment_provider=row.payment_provider,
        payment_url=row.payment_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
        notified_at={
            kind: getattr(row, column)
            for kind, column in NOTIFIED_COLUMNS.items()
            if getattr(row, column) is not None
        },
    )


class OrderStore:
    """
    Persistence for orders. Every method runs in its own short transaction.
    """

    def __init__(self, engine):
        self.engine = engine
        self.session_factory = sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs) -> "OrderStore":
        """Creates the engine and the `orders` table if it does not exist yet."""
        engine = create_engine(database_url, **engine_kwargs)
        Base.metadata.create_all(engine)
        return cls(engine)

    def insert(self, order: Order) -> Order:
        """
        Persists a newly created order.
        Args:
            order (Order): Snapshot in status `created`.
        Returns:
            Order: The stored order as read back from the database.
        """
        if not order.items:
            raise ValueError("An order needs at least one item")

        row = OrderRow(
            id=order.id,
            items=[_item_to_json(item) for item in order.items],
            amount=order.amount,
            currency=order.currency,
            customer=_customer_to_json(order.customer),
            status=order.status.value,
            payment_id=order.payment_id,
            payment_provider=order.payment_provider,
            payment_url=order.payment_url,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
        with self.session_factory.begin() as session:
            session.add(row)
        log.info(f"[Order: {order.id}] Stored with status '{order.status.value}' and amount {order.amount}.")
        return self.get(order.id)

    def get(self, order_id: str) -> Order:
        """
        Reads an order.
        Raises:
            OrderNotFoundError: If no order with this id exists.
        """
        with self.session_factory() as session:
            row = session.get(OrderRow, order_id)
            if row is None:
                raise OrderNotFoundError(order_id)
            return _row_to_order(row)

    def transition(
            self,
            order_id: str,
            allowed_from: Iterable[OrderStatus],
            target: OrderStatus,
            payment_id: Optional[str] = None,
            payment_provider: Optional[str] = None,
            payment_url: Optional[str] = None
    ) -> bool:
        """
        Atomically moves an order to `target` if its current status is one of `allowed_from`.

        Returns:
            bool: True if this call changed the row, False if the status did not match
            (already transitioned by a concurrent caller, or not in a legal source status).
        """
        values = {"status": target.value, "updated_at": datetime.now(timezone.utc)}
        if payment_id is not None:
            values["payment_id"] = payment_id
        if payment_provider is not None:
            values["payment_provider"] = payment_provider
        if payment_url is not None:
            values["payment_url"] = payment_url

        statement = (
            update(OrderRow)
            .where(OrderRow.id == order_id)
            .where(OrderRow.status.in_([status.value for status in allowed_from]))
            .values(**values)
        )
        with self.session_factory.begin() as session:
            result = session.execute(statement)
            return result.rowcount == 1

    def mark_notified(self, order_id: str, kind: NotificationKind) -> None:
        """Records when a notification of `kind` was accepted by the messaging API."""
        column = NOTIFIED_COLUMNS[kind]
        with self.session_factory.begin() as session:
            session.execute(
                update(OrderRow).where(OrderRow.id == order_id).values({column: datetime.now(timezone.utc)})
            )
