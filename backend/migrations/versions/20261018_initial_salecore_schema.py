"""Initial sale engine schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("cost_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reorder_level", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_products"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)

    op.create_table(
        "product_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(64), nullable=True),
        sa.Column("quantity_initial", sa.Integer(), nullable=False),
        sa.Column("quantity_remaining", sa.Integer(), nullable=False),
        sa.Column("cost_price_cents", sa.Integer(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("quantity_remaining >= 0", name="ck_product_batches_remaining_non_negative"),
        sa.CheckConstraint(
            "quantity_remaining <= quantity_initial", name="ck_product_batches_remaining_within_initial"
        ),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_product_batches_product_id_products"),
        sa.PrimaryKeyConstraint("id", name="pk_product_batches"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("product_batches", schema=None) as batch_op:
        batch_op.create_index("ix_product_batches_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_product_batches_product_created", ["product_id", "created_at"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("loyalty_points >= 0", name="ck_customers_loyalty_points_non_negative"),
        sa.PrimaryKeyConstraint("id", name="pk_customers"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_phone", ["phone"], unique=False)
        batch_op.create_index("ix_customers_is_active", ["is_active"], unique=False)

    op.create_table(
        "loyalty_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("points_change", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_loyalty_logs_customer_id_customers"),
        sa.PrimaryKeyConstraint("id", name="pk_loyalty_logs"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("loyalty_logs", schema=None) as batch_op:
        batch_op.create_index("ix_loyalty_logs_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_loyalty_logs_reference_id", ["reference_id"], unique=False)

    op.create_table(
        "shift_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("starting_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_sales_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("ending_cash_cents", sa.Integer(), nullable=True),
        sa.Column("difference_cents", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id", name="pk_shift_sessions"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shift_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_shift_sessions_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_shift_sessions_status", ["status"], unique=False)
        batch_op.create_index("ix_shift_sessions_user_status", ["user_id", "status"], unique=False)

    op.create_table(
        "cash_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(
            ["shift_id"], ["shift_sessions.id"], name="fk_cash_transactions_shift_id_shift_sessions"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_cash_transactions"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("cash_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_cash_transactions_shift_id", ["shift_id"], unique=False)

    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("promo_type", sa.String(16), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_order_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_promotions"),
        sa.UniqueConstraint("code", name="uq_promotions_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("promotions", schema=None) as batch_op:
        batch_op.create_index("ix_promotions_is_active", ["is_active"], unique=False)

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("receipt_number", sa.String(64), nullable=False),
        sa.Column("cashier_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("sub_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_method", sa.String(16), nullable=False),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("change_given_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("promo_code", sa.String(64), nullable=True),
        sa.Column("loyalty_points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_points_redeemed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("grand_total_cents >= 0", name="ck_sales_grand_total_non_negative"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_sales_customer_id_customers"),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_sessions.id"], name="fk_sales_shift_id_shift_sessions"),
        sa.PrimaryKeyConstraint("id", name="pk_sales"),
        sa.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_cashier_id", ["cashier_id"], unique=False)
        batch_op.create_index("ix_sales_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_sales_shift_id", ["shift_id"], unique=False)
        batch_op.create_index("ix_sales_status", ["status"], unique=False)
        batch_op.create_index("ix_sales_created_at", ["created_at"], unique=False)
        batch_op.create_index(
            "ix_sales_cashier_status_created", ["cashier_id", "status", "created_at"], unique=False
        )

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("sub_total_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("returned_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        sa.CheckConstraint("discount_cents <= sub_total_cents", name="ck_sale_items_discount_within_sub_total"),
        sa.CheckConstraint("returned_quantity <= quantity", name="ck_sale_items_returned_within_quantity"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_items_sale_id_sales"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_sale_items_product_id_products"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_items"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_items", schema=None) as batch_op:
        batch_op.create_index("ix_sale_items_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "sale_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(16), nullable=False),
        sa.Column("reference_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_sale_payments_amount_positive"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_payments_sale_id_sales"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_payments"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_payments", schema=None) as batch_op:
        batch_op.create_index("ix_sale_payments_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_payments_method", ["method"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("remarks", sa.String(255), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], name="fk_stock_movements_product_id_products"),
        sa.ForeignKeyConstraint(
            ["batch_id"], ["product_batches.id"], name="fk_stock_movements_batch_id_product_batches"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_stock_movements"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_movements_batch_id", ["batch_id"], unique=False)
        batch_op.create_index("ix_stock_movements_type", ["type"], unique=False)
        batch_op.create_index("ix_stock_movements_reference_id", ["reference_id"], unique=False)
        batch_op.create_index("ix_stock_movements_product_created", ["product_id", "created_at"], unique=False)

    op.create_table(
        "return_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_return_requests_sale_id_sales"),
        sa.PrimaryKeyConstraint("id", name="pk_return_requests"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("return_requests", schema=None) as batch_op:
        batch_op.create_index("ix_return_requests_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_return_requests_status", ["status"], unique=False)

    op.create_table(
        "return_request_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("return_id", sa.Integer(), nullable=False),
        sa.Column("sale_item_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("refund_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_return_request_items_quantity_positive"),
        sa.ForeignKeyConstraint(
            ["return_id"], ["return_requests.id"], name="fk_return_request_items_return_id_return_requests"
        ),
        sa.ForeignKeyConstraint(
            ["sale_item_id"], ["sale_items.id"], name="fk_return_request_items_sale_item_id_sale_items"
        ),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], name="fk_return_request_items_product_id_products"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_return_request_items"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("return_request_items", schema=None) as batch_op:
        batch_op.create_index("ix_return_request_items_return_id", ["return_id"], unique=False)
        batch_op.create_index("ix_return_request_items_sale_item_id", ["sale_item_id"], unique=False)

    op.create_table(
        "receipt_sequences",
        sa.Column("year", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("year", name="pk_receipt_sequences"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_audit_events"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("audit_events", schema=None) as batch_op:
        batch_op.create_index("ix_audit_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_audit_events_entity", ["entity_type", "entity_id"], unique=False)


def downgrade():
    for table in (
        "audit_events",
        "receipt_sequences",
        "return_request_items",
        "return_requests",
        "stock_movements",
        "sale_payments",
        "sale_items",
        "sales",
        "promotions",
        "cash_transactions",
        "shift_sessions",
        "loyalty_logs",
        "customers",
        "product_batches",
        "products",
    ):
        op.drop_table(table)
