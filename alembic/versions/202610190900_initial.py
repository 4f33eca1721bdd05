"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _existing_enum(*values: str, name: str) -> sa.Enum:
    # Already created by an earlier table; PostgreSQL would fail on a second CREATE TYPE.
    return sa.Enum(*values, name=name).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False), "postgresql"
    )


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=120)),
        sa.Column(
            "subscription",
            sa.Enum("free", "pro", name="subscriptiontier"),
            nullable=False,
            server_default="free",
        ),
        sa.Column(
            "report",
            sa.Enum("none", "simple", "advanced", name="reporttype"),
            nullable=False,
            server_default="none",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "finance_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("valor", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "tipo", sa.Enum("entrada", "saida", name="transactiontype"), nullable=False
        ),
        sa.Column("categoria", sa.String(length=100), nullable=False),
        sa.Column("de", sa.String(length=200)),
        sa.Column("para", sa.String(length=200)),
        sa.Column(
            "classificacao",
            sa.Enum(
                "fixo", "variavel", "recorrente", "ajuste_saldo", name="classification"
            ),
        ),
        sa.Column("data_comprovante", sa.Date(), nullable=False),
        sa.Column("recurrence_group_id", sa.String(length=36)),
        sa.Column(
            "recurrence_interval",
            sa.Enum(
                "semanal",
                "mensal",
                "trimestral",
                "semestral",
                "anual",
                name="recurrenceinterval",
            ),
        ),
        sa.Column("is_infinite", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_future", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("valor > 0", name="ck_finance_records_valor_positive"),
        sa.CheckConstraint(
            "recurrence_group_id IS NULL OR recurrence_interval IS NOT NULL",
            name="ck_finance_records_group_has_interval",
        ),
    )
    op.create_index(
        "ix_finance_records_user_date",
        "finance_records",
        ["user_id", "data_comprovante"],
    )
    op.create_index(
        "ix_finance_records_user_infinite", "finance_records", ["user_id", "is_infinite"]
    )
    op.create_index(
        "ix_finance_records_group_date",
        "finance_records",
        ["recurrence_group_id", "data_comprovante"],
    )

    op.create_table(
        "custom_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "tipo", _existing_enum("entrada", "saida", name="transactiontype"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "tipo", "name", name="uq_custom_category_user_tipo_name"
        ),
    )

    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "generating",
                "sent",
                "failed",
                "insufficient_data",
                name="reportstatus",
            ),
            nullable=False,
        ),
        sa.Column(
            "type",
            _existing_enum("none", "simple", "advanced", name="reporttype"),
            nullable=False,
        ),
        sa.Column("content", sa.Text()),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("generated_at", sa.DateTime()),
        sa.Column("sent_at", sa.DateTime()),
        sa.Column(
            "counts_for_limit", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("error_message", sa.Text()),
        sa.Column("filter_start_date", sa.String(length=10)),
        sa.Column("filter_end_date", sa.String(length=10)),
    )
    op.create_index("ix_reports_user_requested", "reports", ["user_id", "requested_at"])
    op.create_index("ix_reports_status_requested", "reports", ["status", "requested_at"])


def downgrade():
    op.drop_index("ix_reports_status_requested", table_name="reports")
    op.drop_index("ix_reports_user_requested", table_name="reports")
    op.drop_table("reports")
    op.drop_table("custom_categories")
    op.drop_index("ix_finance_records_group_date", table_name="finance_records")
    op.drop_index("ix_finance_records_user_infinite", table_name="finance_records")
    op.drop_index("ix_finance_records_user_date", table_name="finance_records")
    op.drop_table("finance_records")
    op.drop_table("users")
    if op.get_context().dialect.name == "postgresql":
        for name in (
            "reportstatus",
            "reporttype",
            "recurrenceinterval",
            "classification",
            "transactiontype",
            "subscriptiontier",
        ):
            op.execute(f"DROP TYPE IF EXISTS {name}")
