"""
Billing document ORM models (``billing_store.orm``).

Responsibility
--------------
SQLAlchemy persistence models for invoices, payments and orders. Maps the
frozen documents of ``billing_kernel.domain.documents`` to tables and
back.

Architecture position
---------------------
**Store layer** -- persistence. Imports from ``billing_kernel.db.base`` and
the domain documents. MUST NOT be imported by ``billing_kernel`` except
lazily by ``create_tables()``.

Invariants enforced
-------------------
* Money is stored as integer cents (``*_cents`` BigInteger columns).
* ``invoices.version`` is the optimistic concurrency token; the SQL store
  only ever updates a row whose version matches the caller's expectation.
* Timestamps read back from databases without timezone support are
  interpreted as UTC.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, Date, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import ID_LENGTH, TrackedBase
from billing_kernel.domain.documents import (
    Invoice,
    InvoiceStatus,
    LineItem,
    Order,
    OrderStatus,
    Payment,
    PaymentApplication,
    PaymentMethod,
)
from billing_kernel.domain.values import Money


def _utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they were written as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# 1. InvoiceModel
# ---------------------------------------------------------------------------


class InvoiceModel(TrackedBase):
    """
    ORM model for invoices.

    Maps to the ``Invoice`` frozen dataclass. Line items live in a child
    table via the ``lines`` relationship.

    Guarantees:
        - invoice amounts are integer cents.
        - status stored as the enum's display value.
        - payment_ids keeps the order payments were applied in.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        Index("idx_invoices_customer_id", "customer_id"),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_due_date", "due_date"),
    )

    customer_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    subtotal_cents: Mapped[int] = mapped_column(nullable=False)
    tax_amount_cents: Mapped[int] = mapped_column(nullable=False)
    total_cents: Mapped[int] = mapped_column(nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(nullable=False)
    balance_due_cents: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLineModel.line_number",
    )

    @staticmethod
    def column_values(dto: Invoice) -> dict:
        """Scalar column values of ``dto`` (everything except lines)."""
        return {
            "customer_id": dto.customer_id,
            "invoice_number": dto.invoice_number,
            "invoice_date": dto.invoice_date,
            "due_date": dto.due_date,
            "subtotal_cents": dto.subtotal.cents,
            "tax_amount_cents": dto.tax_amount.cents,
            "total_cents": dto.total.cents,
            "amount_paid_cents": dto.amount_paid.cents,
            "balance_due_cents": dto.balance_due.cents,
            "status": dto.status.value,
            "payment_ids": list(dto.payments),
            "created_at": dto.created_at,
            "version": dto.version,
        }

    def to_dto(self) -> Invoice:
        """Convert ORM model to frozen dataclass."""
        return Invoice(
            id=self.id,
            customer_id=self.customer_id,
            invoice_number=self.invoice_number,
            invoice_date=self.invoice_date,
            due_date=self.due_date,
            subtotal=Money.from_cents(self.subtotal_cents),
            tax_amount=Money.from_cents(self.tax_amount_cents),
            total=Money.from_cents(self.total_cents),
            amount_paid=Money.from_cents(self.amount_paid_cents),
            balance_due=Money.from_cents(self.balance_due_cents),
            status=InvoiceStatus(self.status),
            line_items=tuple(line.to_dto() for line in self.lines),
            payments=tuple(self.payment_ids or ()),
            created_at=_utc(self.created_at),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Invoice) -> "InvoiceModel":
        """Create ORM model from frozen dataclass."""
        model = cls(id=dto.id, **cls.column_values(dto))
        model.lines = InvoiceLineModel.lines_for(dto)
        return model

    def __repr__(self) -> str:
        return (
            f"<InvoiceModel {self.invoice_number} status={self.status} "
            f"balance_cents={self.balance_due_cents} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. InvoiceLineModel
# ---------------------------------------------------------------------------


class InvoiceLineModel(TrackedBase):
    """
    ORM model for invoice line items.

    Guarantees:
        - id is ``"{invoice_id}:{line_number}"``.
        - invoice_id FK to invoices.id.
    """

    __tablename__ = "invoice_lines"

    __table_args__ = (
        Index("idx_invoice_lines_invoice_id", "invoice_id"),
    )

    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(nullable=False)
    total_cents: Mapped[int] = mapped_column(nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)

    invoice: Mapped["InvoiceModel"] = relationship(back_populates="lines")

    def to_dto(self) -> LineItem:
        """Convert ORM model to frozen dataclass."""
        return LineItem(
            description=self.description,
            quantity=Decimal(self.quantity),
            unit_price=Money.from_cents(self.unit_price_cents),
            total=Money.from_cents(self.total_cents),
            product_id=self.product_id,
        )

    @classmethod
    def from_dto(cls, dto: LineItem, invoice_id: str, line_number: int) -> "InvoiceLineModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=f"{invoice_id}:{line_number}",
            invoice_id=invoice_id,
            line_number=line_number,
            description=dto.description,
            quantity=dto.quantity,
            unit_price_cents=dto.unit_price.cents,
            total_cents=dto.total.cents,
            product_id=dto.product_id,
        )

    @classmethod
    def lines_for(cls, invoice: Invoice) -> list["InvoiceLineModel"]:
        return [
            cls.from_dto(item, invoice.id, n)
            for n, item in enumerate(invoice.line_items, start=1)
        ]


# ---------------------------------------------------------------------------
# 3. PaymentModel
# ---------------------------------------------------------------------------


class PaymentModel(TrackedBase):
    """
    ORM model for payments.

    Payments are written once and never updated; the allocation that
    produced them is stored alongside as ``applications``.
    """

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payments_customer_id", "customer_id"),
        Index("idx_payments_payment_date", "payment_date"),
    )

    customer_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    unapplied_cents: Mapped[int] = mapped_column(nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    applications: Mapped[list["PaymentApplicationModel"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentApplicationModel.position",
    )

    def to_dto(self) -> Payment:
        """Convert ORM model to frozen dataclass."""
        return Payment(
            id=self.id,
            customer_id=self.customer_id,
            payment_date=self.payment_date,
            amount=Money.from_cents(self.amount_cents),
            method=PaymentMethod(self.method),
            applications=tuple(app.to_dto() for app in self.applications),
            unapplied_amount=Money.from_cents(self.unapplied_cents),
            notes=self.notes,
            created_at=_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto: Payment) -> "PaymentModel":
        """Create ORM model from frozen dataclass."""
        model = cls(
            id=dto.id,
            customer_id=dto.customer_id,
            payment_date=dto.payment_date,
            amount_cents=dto.amount.cents,
            method=dto.method.value,
            unapplied_cents=dto.unapplied_amount.cents,
            notes=dto.notes,
            created_at=dto.created_at,
        )
        model.applications = [
            PaymentApplicationModel.from_dto(app, dto.id, position)
            for position, app in enumerate(dto.applications)
        ]
        return model

    def __repr__(self) -> str:
        return f"<PaymentModel {self.id} {self.method} amount_cents={self.amount_cents}>"


# ---------------------------------------------------------------------------
# 4. PaymentApplicationModel
# ---------------------------------------------------------------------------


class PaymentApplicationModel(TrackedBase):
    """One invoice's share of a payment, in allocation order."""

    __tablename__ = "payment_applications"

    __table_args__ = (
        Index("idx_payment_applications_payment_id", "payment_id"),
        Index("idx_payment_applications_invoice_id", "invoice_id"),
    )

    payment_id: Mapped[str] = mapped_column(ForeignKey("payments.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    invoice_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_applied_cents: Mapped[int] = mapped_column(nullable=False)

    payment: Mapped["PaymentModel"] = relationship(back_populates="applications")

    def to_dto(self) -> PaymentApplication:
        return PaymentApplication(
            invoice_id=self.invoice_id,
            invoice_number=self.invoice_number,
            amount_applied=Money.from_cents(self.amount_applied_cents),
        )

    @classmethod
    def from_dto(
        cls, dto: PaymentApplication, payment_id: str, position: int
    ) -> "PaymentApplicationModel":
        return cls(
            id=f"{payment_id}:{position}",
            payment_id=payment_id,
            position=position,
            invoice_id=dto.invoice_id,
            invoice_number=dto.invoice_number,
            amount_applied_cents=dto.amount_applied.cents,
        )


# ---------------------------------------------------------------------------
# 5. OrderModel
# ---------------------------------------------------------------------------


class OrderModel(TrackedBase):
    """ORM model for customer orders."""

    __tablename__ = "orders"

    __table_args__ = (
        Index("idx_orders_customer_id", "customer_id"),
    )

    customer_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    order_number: Mapped[str] = mapped_column(String(100), nullable=False)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_cents: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> Order:
        """Convert ORM model to frozen dataclass."""
        return Order(
            id=self.id,
            customer_id=self.customer_id,
            order_number=self.order_number,
            order_date=self.order_date,
            total=Money.from_cents(self.total_cents),
            status=OrderStatus(self.status),
            created_at=_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto: Order) -> "OrderModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            customer_id=dto.customer_id,
            order_number=dto.order_number,
            order_date=dto.order_date,
            total_cents=dto.total.cents,
            status=dto.status.value,
            created_at=dto.created_at,
        )

    def __repr__(self) -> str:
        return f"<OrderModel {self.order_number} status={self.status}>"
