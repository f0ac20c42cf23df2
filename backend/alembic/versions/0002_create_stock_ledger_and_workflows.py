"""create stock pool, movement ledger, stock and purchase requests, audit log

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, NUMERIC, UUID

revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # stock_items: balance / average price are a cache over stock_movements
    op.create_table(
        "stock_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(20), nullable=False, server_default="un"),
        sa.Column("min_quantity", NUMERIC(18, 4), nullable=False, server_default="0"),
        sa.Column("current_quantity", NUMERIC(18, 4), nullable=False, server_default="0"),
        sa.Column("average_price", NUMERIC(18, 4), nullable=False, server_default="0"),
        sa.Column("last_price", NUMERIC(18, 4), nullable=True),
        sa.Column("last_entry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="OUT_OF_STOCK"),
        sa.Column("supplier_id", UUID(as_uuid=True), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("current_quantity >= 0", name="ck_stock_items_quantity_non_negative"),
    )
    op.create_index("ix_stock_items_tenant_id", "stock_items", ["tenant_id"], unique=False)
    op.create_index("ix_stock_items_tenant_status", "stock_items", ["tenant_id", "status"], unique=False)

    # stock_movements (append-only, no updated_at)
    op.create_table(
        "stock_movements",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stock_item_id", UUID(as_uuid=True), sa.ForeignKey("stock_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("quantity", NUMERIC(18, 4), nullable=False),
        sa.Column("unit_price", NUMERIC(18, 4), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("responsible", sa.String(255), nullable=True),
        sa.Column("origin_or_destination", sa.String(255), nullable=False),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
        sa.Column("invoice_number", sa.String(100), nullable=True),
        sa.Column("supplier_id", UUID(as_uuid=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        sa.CheckConstraint("type IN ('ENTRY', 'EXIT')", name="ck_stock_movements_type"),
    )
    op.create_index("ix_stock_movements_tenant_id", "stock_movements", ["tenant_id"], unique=False)
    op.create_index("ix_stock_movements_item_date", "stock_movements", ["stock_item_id", "date"], unique=False)
    op.create_index("ix_stock_movements_project_date", "stock_movements", ["project_id", "date"], unique=False)

    op.create_table(
        "price_history",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("stock_item_id", UUID(as_uuid=True), sa.ForeignKey("stock_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("price", NUMERIC(18, 4), nullable=False),
        sa.Column("supplier_id", UUID(as_uuid=True), nullable=True),
    )
    op.create_index("ix_price_history_item_date", "price_history", ["stock_item_id", "date"], unique=False)

    # Trigger: movements are never rewritten (cascade from a deleted item is the only removal path)
    op.execute("""
        CREATE OR REPLACE FUNCTION forbid_movement_update()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'stock_movements is append-only: id=%', OLD.id;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_forbid_movement_update
        BEFORE UPDATE ON stock_movements
        FOR EACH ROW EXECUTE FUNCTION forbid_movement_update();
    """)

    op.create_table(
        "stock_requests",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("projects.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("stock_item_id", UUID(as_uuid=True), sa.ForeignKey("stock_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("item_name_snapshot", sa.String(255), nullable=False),
        sa.Column("quantity_requested", NUMERIC(18, 4), nullable=False),
        sa.Column("quantity_delivered", NUMERIC(18, 4), nullable=False, server_default="0"),
        sa.Column("status", sa.String(30), nullable=False, server_default="PENDING"),
        sa.Column("requested_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("approved_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "quantity_delivered >= 0 AND quantity_delivered <= quantity_requested",
            name="ck_stock_requests_delivered_within_requested",
        ),
    )
    op.create_index("ix_stock_requests_stock_item_id", "stock_requests", ["stock_item_id"], unique=False)
    op.create_index("ix_stock_requests_tenant_status", "stock_requests", ["tenant_id", "status"], unique=False)
    op.create_index("ix_stock_requests_project_status", "stock_requests", ["project_id", "status"], unique=False)

    op.create_table(
        "stock_request_deliveries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("stock_request_id", UUID(as_uuid=True), sa.ForeignKey("stock_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantity", NUMERIC(18, 4), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "ix_stock_request_deliveries_stock_request_id", "stock_request_deliveries", ["stock_request_id"], unique=False
    )

    op.create_table(
        "purchase_requests",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stock_item_id", UUID(as_uuid=True), sa.ForeignKey("stock_items.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("item_name_snapshot", sa.String(255), nullable=False),
        sa.Column("quantity", NUMERIC(18, 4), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("requested_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("processed_by_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("ordered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_number", sa.String(100), nullable=True),
        sa.Column("unit_price", NUMERIC(18, 4), nullable=True),
        sa.Column("supplier_id", UUID(as_uuid=True), nullable=True),
        sa.Column(
            "originating_stock_request_id",
            UUID(as_uuid=True),
            sa.ForeignKey("stock_requests.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_purchase_requests_stock_item_id", "purchase_requests", ["stock_item_id"], unique=False)
    op.create_index("ix_purchase_requests_tenant_status", "purchase_requests", ["tenant_id", "status"], unique=False)
    op.create_index(
        "ix_purchase_requests_originating_stock_request_id",
        "purchase_requests",
        ["originating_stock_request_id"],
        unique=False,
    )

    op.create_table(
        "audit_log",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actor_id", UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("entity_id", UUID(as_uuid=True), nullable=False),
        sa.Column("before", JSONB(), nullable=True),
        sa.Column("after", JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_log_entity_id", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_purchase_requests_originating_stock_request_id", table_name="purchase_requests")
    op.drop_index("ix_purchase_requests_tenant_status", table_name="purchase_requests")
    op.drop_index("ix_purchase_requests_stock_item_id", table_name="purchase_requests")
    op.drop_table("purchase_requests")

    op.drop_index("ix_stock_request_deliveries_stock_request_id", table_name="stock_request_deliveries")
    op.drop_table("stock_request_deliveries")

    op.drop_index("ix_stock_requests_project_status", table_name="stock_requests")
    op.drop_index("ix_stock_requests_tenant_status", table_name="stock_requests")
    op.drop_index("ix_stock_requests_stock_item_id", table_name="stock_requests")
    op.drop_table("stock_requests")

    op.execute("DROP TRIGGER IF EXISTS trg_forbid_movement_update ON stock_movements")
    op.execute("DROP FUNCTION IF EXISTS forbid_movement_update()")

    op.drop_index("ix_price_history_item_date", table_name="price_history")
    op.drop_table("price_history")

    op.drop_index("ix_stock_movements_project_date", table_name="stock_movements")
    op.drop_index("ix_stock_movements_item_date", table_name="stock_movements")
    op.drop_index("ix_stock_movements_tenant_id", table_name="stock_movements")
    op.drop_table("stock_movements")

    op.drop_index("ix_stock_items_tenant_status", table_name="stock_items")
    op.drop_index("ix_stock_items_tenant_id", table_name="stock_items")
    op.drop_table("stock_items")
