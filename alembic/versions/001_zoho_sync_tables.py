"""Create commerce and Zoho integration tables.

Revision ID: 001_zoho_sync
Revises:
Create Date: 2026-10-17

Creates the tables the sync engine reads and writes:
- profiles, products, orders, order_items: commerce store, each carrying
  its Zoho linkage columns (zoho_*_id + zoho_synced_at)
- zoho_config: key/value rows for OAuth credentials and tokens
- zoho_sync_logs: audit trail of sync runs
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_zoho_sync"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()") if default else None,
        nullable=nullable,
    )


def upgrade() -> None:
    # ── profiles table ──────────────────────────────────────────────────

    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("full_name", sa.String(300), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("mobile", sa.String(50), nullable=True),
        sa.Column("address_line1", sa.String(500), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("state", sa.String(120), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("country", sa.String(80), nullable=True),
        sa.Column("zoho_crm_id", sa.String(100), nullable=True),
        _timestamp("zoho_synced_at", nullable=True, default=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_profiles"),
    )
    op.create_index("ix_profiles_zoho_crm_id", "profiles", ["zoho_crm_id"])

    # ── products table ──────────────────────────────────────────────────

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("sku", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("zoho_item_id", sa.String(100), nullable=True),
        _timestamp("zoho_synced_at", nullable=True, default=False),
        _timestamp("created_at"),
        _timestamp("updated_at", nullable=True, default=False),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
    )
    op.create_index("ix_products_zoho_item_id", "products", ["zoho_item_id"])

    # ── orders table ────────────────────────────────────────────────────

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("order_number", sa.String(50), nullable=True),
        sa.Column("customer_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("shipping_cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("zoho_order_id", sa.String(100), nullable=True),
        sa.Column("zoho_deal_id", sa.String(100), nullable=True),
        _timestamp("zoho_synced_at", nullable=True, default=False),
        _timestamp("created_at"),
        _timestamp("updated_at", nullable=True, default=False),
        sa.PrimaryKeyConstraint("id", name="pk_orders"),
        sa.ForeignKeyConstraint(
            ["customer_id"], ["profiles.id"], name="fk_orders_customer_id_profiles"
        ),
    )
    op.create_index("ix_orders_zoho_order_id", "orders", ["zoho_order_id"])
    op.create_index("ix_orders_zoho_deal_id", "orders", ["zoho_deal_id"])

    # ── order_items table ───────────────────────────────────────────────

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(300), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_order_items"),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], name="fk_order_items_order_id_orders"
        ),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], name="fk_order_items_product_id_products"
        ),
    )

    # ── zoho_config table ───────────────────────────────────────────────

    op.create_table(
        "zoho_config",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("config_key", sa.String(100), nullable=False),
        sa.Column("config_value", sa.Text(), nullable=False, server_default=""),
        sa.Column("encrypted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("expires_at", nullable=True, default=False),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name="pk_zoho_config"),
        sa.UniqueConstraint("config_key", name="uq_zoho_config_config_key"),
    )

    # ── zoho_sync_logs table ────────────────────────────────────────────

    op.create_table(
        "zoho_sync_logs",
        sa.Column("id", sa.Integer(), autoincrement=True),
        _timestamp("created_at"),
        sa.Column("module", sa.String(30), nullable=False),
        sa.Column("direction", sa.String(20), nullable=False),
        sa.Column("synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sync_details", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_zoho_sync_logs"),
    )
    op.create_index("ix_zoho_sync_logs_created_at", "zoho_sync_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_zoho_sync_logs_created_at", table_name="zoho_sync_logs")
    op.drop_table("zoho_sync_logs")
    op.drop_table("zoho_config")
    op.drop_table("order_items")
    op.drop_index("ix_orders_zoho_deal_id", table_name="orders")
    op.drop_index("ix_orders_zoho_order_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_products_zoho_item_id", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_profiles_zoho_crm_id", table_name="profiles")
    op.drop_table("profiles")
