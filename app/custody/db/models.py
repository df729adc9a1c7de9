import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator, CHAR


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


Money = Numeric(12, 2)


class Base(DeclarativeBase):
    pass


class Custodian(Base):
    __tablename__ = "custodians"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), ForeignKey("custodians.id"), index=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    parent = relationship("Custodian", remote_side=[id])


class Brand(Base):
    __tablename__ = "brands"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    variants = relationship("Variant", back_populates="brand")


class Variant(Base):
    __tablename__ = "variants"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    brand_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("brands.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    variant_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    selling_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    dealer_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    retail_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    brand = relationship("Brand", back_populates="variants")


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    ledger: Mapped[str] = mapped_column(String(20), nullable=False)
    custodian_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("custodians.id"), index=True, nullable=False)
    variant_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("variants.id"), index=True, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    selling_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    dealer_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    retail_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("custodian_id", "variant_id", name="uq_ledger_custodian_variant"),
        CheckConstraint("quantity >= 0", name="ck_ledger_quantity_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


class ClientOrder(Base):
    __tablename__ = "client_orders"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    agent_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("custodians.id"), index=True, nullable=False)
    client_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    stage: Mapped[str] = mapped_column(String(30), nullable=False, default="none")
    remitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    leader_approved_by: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    leader_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    admin_approved_by: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    admin_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    remittance_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True, nullable=True)
    remitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    items = relationship("ClientOrderItem", back_populates="order", order_by="ClientOrderItem.created_at")


class ClientOrderItem(Base):
    __tablename__ = "client_order_items"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("client_orders.id"), index=True, nullable=False)
    variant_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("variants.id"), index=True, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("ClientOrder", back_populates="items")


class InventoryRequest(Base):
    __tablename__ = "inventory_requests"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("custodians.id"), index=True, nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("custodians.id"), index=True, nullable=False)
    variant_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("variants.id"), index=True, nullable=False)
    requested_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    fulfilled_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    request_level: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    parent_request_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("inventory_requests.id"), index=True, nullable=True
    )
    batch_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True, nullable=True)
    requester_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    approver_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_by: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("requested_quantity > 0", name="ck_inventory_requests_quantity_positive"),
    )


class RemittanceRecord(Base):
    __tablename__ = "remittance_records"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    agent_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("custodians.id"), index=True, nullable=False)
    leader_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("custodians.id"), index=True, nullable=False)
    performed_by: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    remittance_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    items_remitted: Mapped[int] = mapped_column(Integer, nullable=False)
    total_units: Mapped[int] = mapped_column(Integer, nullable=False)
    orders_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(Money, nullable=False)
    order_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    items: Mapped[list] = mapped_column(JSON, nullable=False)
    signature_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    signature_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    movement_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    variant_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    from_custodian_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True, nullable=True)
    to_custodian_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True, nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    selling_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    dealer_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    retail_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    performed_by: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    custodian_id: Mapped[uuid.UUID] = mapped_column(GUID(), index=True, nullable=False)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("custodian_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    custodian_id: Mapped[uuid.UUID | None] = mapped_column(GUID(), index=True, nullable=True)
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    event_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    result: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


Index("ix_ledger_entries_variant_custodian", LedgerEntry.variant_id, LedgerEntry.custodian_id)
Index("ix_client_orders_agent_status", ClientOrder.agent_id, ClientOrder.status, ClientOrder.remitted)
Index("ix_inventory_requests_approver_status", InventoryRequest.approver_id, InventoryRequest.status)
Index("ix_remittance_records_agent_date", RemittanceRecord.agent_id, RemittanceRecord.remittance_date)
