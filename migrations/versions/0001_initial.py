"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2024-05-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
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


UNRESTRICTED_ROLES = "('SUPERADMIN_ROLE', 'BOD_ROLE', 'AUDITOR_ROLE')"
LOCATION_SCOPED_ROLES = "('SALES_MANAGER_ROLE', 'SALES_SUPERVISOR_ROLE')"

# Row-level security mirrors the application's policy predicates. The caller
# is read from the transaction-local ``app.caller_id`` setting. Server-side
# writers set ``app.trusted`` instead and bypass the caller predicates.
POSTGRES_POLICY_STATEMENTS = [
    """
    CREATE FUNCTION app_caller_id() RETURNS text
    LANGUAGE sql STABLE AS $$
        SELECT coalesce(current_setting('app.caller_id', true), '')
    $$
    """,
    """
    CREATE FUNCTION app_is_trusted() RETURNS boolean
    LANGUAGE sql STABLE AS $$
        SELECT coalesce(current_setting('app.trusted', true), '') = 'on'
    $$
    """,
    """
    CREATE FUNCTION app_caller_role() RETURNS text
    LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public AS $$
        SELECT coalesce(
            (SELECT role FROM users WHERE external_id = app_caller_id()),
            'NO_ROLE'
        )
    $$
    """,
    """
    CREATE FUNCTION app_caller_locations() RETURNS jsonb
    LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public AS $$
        SELECT coalesce(
            (SELECT locations::jsonb FROM users WHERE external_id = app_caller_id()),
            '[]'::jsonb
        )
    $$
    """,
    "ALTER TABLE users ENABLE ROW LEVEL SECURITY",
    "ALTER TABLE locations ENABLE ROW LEVEL SECURITY",
    "ALTER TABLE stock ENABLE ROW LEVEL SECURITY",
    f"""
    CREATE POLICY users_select ON users FOR SELECT
    USING (
        app_is_trusted()
        OR external_id = app_caller_id()
        OR app_caller_role() IN {UNRESTRICTED_ROLES}
    )
    """,
    """
    CREATE POLICY users_insert_self ON users FOR INSERT
    WITH CHECK (app_is_trusted() OR (external_id = app_caller_id() AND role = 'NO_ROLE'))
    """,
    """
    CREATE POLICY users_update ON users FOR UPDATE
    USING (app_is_trusted() OR external_id = app_caller_id() OR app_caller_role() = 'SUPERADMIN_ROLE')
    WITH CHECK (
        app_is_trusted()
        OR app_caller_role() = 'SUPERADMIN_ROLE'
        OR (
            external_id = app_caller_id()
            AND role = app_caller_role()
            AND locations::jsonb = app_caller_locations()
        )
    )
    """,
    """
    CREATE POLICY users_delete ON users FOR DELETE
    USING (app_is_trusted() OR app_caller_role() = 'SUPERADMIN_ROLE')
    """,
    """
    CREATE POLICY locations_select ON locations FOR SELECT
    USING (app_is_trusted() OR is_active OR app_caller_role() = 'SUPERADMIN_ROLE')
    """,
    """
    CREATE POLICY locations_write ON locations FOR ALL
    USING (app_is_trusted() OR app_caller_role() = 'SUPERADMIN_ROLE')
    WITH CHECK (app_is_trusted() OR app_caller_role() = 'SUPERADMIN_ROLE')
    """,
    f"""
    CREATE POLICY stock_select ON stock FOR SELECT
    USING (
        app_is_trusted()
        OR app_caller_role() IN {UNRESTRICTED_ROLES}
        OR (
            app_caller_role() IN {LOCATION_SCOPED_ROLES}
            AND location_name IN (
                SELECT l.name FROM locations l
                WHERE l.is_active
                AND l.id IN (SELECT jsonb_array_elements_text(app_caller_locations())::int)
            )
            AND EXISTS (SELECT 1 FROM locations l WHERE l.id = stock.location_id AND l.is_active)
        )
    )
    """,
    """
    CREATE POLICY stock_write ON stock FOR ALL
    USING (app_is_trusted() OR app_caller_role() = 'SUPERADMIN_ROLE')
    WITH CHECK (app_is_trusted() OR app_caller_role() = 'SUPERADMIN_ROLE')
    """,
]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="NO_ROLE"),
        sa.Column("locations", sa.JSON(), nullable=False),
        sa.Column("source_updated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("external_id", name="uq_users_external_id"),
    )
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("display_value", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_locations_is_active", "locations", ["is_active"], unique=False)

    op.create_table(
        "stock",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("location_name", sa.String(length=255), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("uom_id", sa.Integer(), nullable=False),
        sa.Column("uom_name", sa.String(length=64), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("category_name", sa.String(length=255), nullable=False),
        sa.Column("weight", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("quantity_on_hand", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("product_type", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_product_type", "stock", ["product_type"], unique=False)
    op.create_index("ix_stock_location_id", "stock", ["location_id"], unique=False)
    op.create_index("ix_stock_location_name", "stock", ["location_name"], unique=False)

    op.create_table(
        "identity_tombstones",
        sa.Column("external_id", sa.String(length=255), primary_key=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=32), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_events_trace_id", "audit_events", ["trace_id"], unique=False)
    op.create_index("ix_audit_events_action", "audit_events", ["action"], unique=False)

    if op.get_bind().dialect.name == "postgresql":
        for statement in POSTGRES_POLICY_STATEMENTS:
            op.execute(statement)


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        for table in ("stock", "locations", "users"):
            op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
        for policy, table in (
            ("stock_write", "stock"),
            ("stock_select", "stock"),
            ("locations_write", "locations"),
            ("locations_select", "locations"),
            ("users_delete", "users"),
            ("users_update", "users"),
            ("users_insert_self", "users"),
            ("users_select", "users"),
        ):
            op.execute(f"DROP POLICY IF EXISTS {policy} ON {table}")
        for function in ("app_caller_locations", "app_caller_role", "app_is_trusted", "app_caller_id"):
            op.execute(f"DROP FUNCTION IF EXISTS {function}()")

    op.drop_index("ix_audit_events_action", table_name="audit_events")
    op.drop_index("ix_audit_events_trace_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("identity_tombstones")
    op.drop_index("ix_stock_location_name", table_name="stock")
    op.drop_index("ix_stock_location_id", table_name="stock")
    op.drop_index("ix_stock_product_type", table_name="stock")
    op.drop_table("stock")
    op.drop_index("ix_locations_is_active", table_name="locations")
    op.drop_table("locations")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_table("users")
