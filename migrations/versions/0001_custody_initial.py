"""custody ledger initial schema

Revision ID: 0001_custody_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_custody_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def _money():
    return sa.Numeric(12, 2)


def _price_columns():
    return [
        sa.Column("unit_price", _money(), nullable=True),
        sa.Column("selling_price", _money(), nullable=True),
        sa.Column("dealer_price", _money(), nullable=True),
        sa.Column("retail_price", _money(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "custodians",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("tier", sa.String(length=20), nullable=False),
        sa.Column("parent_id", GUID(), sa.ForeignKey("custodians.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_custodians_tier", "custodians", ["tier"])
    op.create_index("ix_custodians_parent_id", "custodians", ["parent_id"])

    op.create_table(
        "brands",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "variants",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("brand_id", GUID(), sa.ForeignKey("brands.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=100), nullable=True),
        sa.Column("variant_type", sa.String(length=50), nullable=True),
        *_price_columns(),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_variants_brand_id", "variants", ["brand_id"])

    op.create_table(
        "ledger_entries",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("ledger", sa.String(length=20), nullable=False),
        sa.Column("custodian_id", GUID(), sa.ForeignKey("custodians.id"), nullable=False),
        sa.Column("variant_id", GUID(), sa.ForeignKey("variants.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        *_price_columns(),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("custodian_id", "variant_id", name="uq_ledger_custodian_variant"),
        sa.CheckConstraint("quantity >= 0", name="ck_ledger_quantity_non_negative"),
    )
    op.create_index("ix_ledger_entries_custodian_id", "ledger_entries", ["custodian_id"])
    op.create_index("ix_ledger_entries_variant_id", "ledger_entries", ["variant_id"])
    op.create_index("ix_ledger_entries_variant_custodian", "ledger_entries", ["variant_id", "custodian_id"])

    op.create_table(
        "client_orders",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("order_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("agent_id", GUID(), sa.ForeignKey("custodians.id"), nullable=False),
        sa.Column("client_ref", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("stage", sa.String(length=30), nullable=False),
        sa.Column("remitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("subtotal", _money(), nullable=False),
        sa.Column("discount", _money(), nullable=False),
        sa.Column("tax_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("tax_amount", _money(), nullable=False),
        sa.Column("total_amount", _money(), nullable=False),
        sa.Column("payment_method", sa.String(length=30), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("leader_approved_by", GUID(), nullable=True),
        sa.Column("leader_approved_at", sa.DateTime(), nullable=True),
        sa.Column("admin_approved_by", GUID(), nullable=True),
        sa.Column("admin_approved_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_by", GUID(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("remittance_id", GUID(), nullable=True),
        sa.Column("remitted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_client_orders_agent_id", "client_orders", ["agent_id"])
    op.create_index("ix_client_orders_remittance_id", "client_orders", ["remittance_id"])
    op.create_index("ix_client_orders_agent_status", "client_orders", ["agent_id", "status", "remitted"])

    op.create_table(
        "client_order_items",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("order_id", GUID(), sa.ForeignKey("client_orders.id"), nullable=False),
        sa.Column("variant_id", GUID(), sa.ForeignKey("variants.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", _money(), nullable=False),
        sa.Column("total_price", _money(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_client_order_items_order_id", "client_order_items", ["order_id"])
    op.create_index("ix_client_order_items_variant_id", "client_order_items", ["variant_id"])

    op.create_table(
        "inventory_requests",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("requester_id", GUID(), sa.ForeignKey("custodians.id"), nullable=False),
        sa.Column("approver_id", GUID(), sa.ForeignKey("custodians.id"), nullable=False),
        sa.Column("variant_id", GUID(), sa.ForeignKey("variants.id"), nullable=False),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("fulfilled_quantity", sa.Integer(), nullable=True),
        sa.Column("request_level", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("parent_request_id", GUID(), sa.ForeignKey("inventory_requests.id"), nullable=True),
        sa.Column("batch_id", GUID(), nullable=True),
        sa.Column("requester_notes", sa.Text(), nullable=True),
        sa.Column("approver_notes", sa.Text(), nullable=True),
        sa.Column("denial_reason", sa.Text(), nullable=True),
        sa.Column("responded_by", GUID(), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("requested_quantity > 0", name="ck_inventory_requests_quantity_positive"),
    )
    op.create_index("ix_inventory_requests_requester_id", "inventory_requests", ["requester_id"])
    op.create_index("ix_inventory_requests_approver_id", "inventory_requests", ["approver_id"])
    op.create_index("ix_inventory_requests_variant_id", "inventory_requests", ["variant_id"])
    op.create_index("ix_inventory_requests_parent_request_id", "inventory_requests", ["parent_request_id"])
    op.create_index("ix_inventory_requests_batch_id", "inventory_requests", ["batch_id"])
    op.create_index("ix_inventory_requests_approver_status", "inventory_requests", ["approver_id", "status"])

    op.create_table(
        "remittance_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("agent_id", GUID(), sa.ForeignKey("custodians.id"), nullable=False),
        sa.Column("leader_id", GUID(), sa.ForeignKey("custodians.id"), nullable=False),
        sa.Column("performed_by", GUID(), nullable=False),
        sa.Column("remittance_date", sa.DateTime(), nullable=False),
        sa.Column("items_remitted", sa.Integer(), nullable=False),
        sa.Column("total_units", sa.Integer(), nullable=False),
        sa.Column("orders_count", sa.Integer(), nullable=False),
        sa.Column("total_revenue", _money(), nullable=False),
        sa.Column("order_ids", sa.JSON(), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("signature_url", sa.String(length=1000), nullable=False),
        sa.Column("signature_path", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_remittance_records_agent_id", "remittance_records", ["agent_id"])
    op.create_index("ix_remittance_records_leader_id", "remittance_records", ["leader_id"])
    op.create_index("ix_remittance_records_agent_date", "remittance_records", ["agent_id", "remittance_date"])

    op.create_table(
        "stock_movements",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("movement_type", sa.String(length=30), nullable=False),
        sa.Column("variant_id", GUID(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("from_custodian_id", GUID(), nullable=True),
        sa.Column("to_custodian_id", GUID(), nullable=True),
        sa.Column("reference_type", sa.String(length=50), nullable=True),
        sa.Column("reference_id", GUID(), nullable=True),
        *_price_columns(),
        sa.Column("performed_by", GUID(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_movements_movement_type", "stock_movements", ["movement_type"])
    op.create_index("ix_stock_movements_variant_id", "stock_movements", ["variant_id"])
    op.create_index("ix_stock_movements_from_custodian_id", "stock_movements", ["from_custodian_id"])
    op.create_index("ix_stock_movements_to_custodian_id", "stock_movements", ["to_custodian_id"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("custodian_id", GUID(), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("custodian_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_index("ix_idempotency_records_custodian_id", "idempotency_records", ["custodian_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("custodian_id", GUID(), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_custodian_id", "audit_events", ["custodian_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("idempotency_records")
    op.drop_table("stock_movements")
    op.drop_table("remittance_records")
    op.drop_table("inventory_requests")
    op.drop_table("client_order_items")
    op.drop_table("client_orders")
    op.drop_table("ledger_entries")
    op.drop_table("variants")
    op.drop_table("brands")
    op.drop_table("custodians")
