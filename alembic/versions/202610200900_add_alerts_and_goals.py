"""add alerts, goals and gamification

Revision ID: 202610200900
Revises: 202610190900
Create Date: 2026-10-20 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610200900"
down_revision = "202610190900"
branch_labels = None
depends_on = None

_NEW_ENUMS = (
    "alertpriority",
    "alertstatus",
    "alertcontext",
    "goaltype",
    "goalperiod",
    "goalstatus",
)


def upgrade():
    with op.batch_alter_table("users") as batch_op:
        batch_op.add_column(
            sa.Column("experience", sa.Integer(), nullable=False, server_default="0")
        )
        batch_op.add_column(
            sa.Column("level", sa.Integer(), nullable=False, server_default="1")
        )
        batch_op.add_column(
            sa.Column(
                "total_goals_completed",
                sa.Integer(),
                nullable=False,
                server_default="0",
            )
        )
        batch_op.add_column(
            sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0")
        )
        batch_op.add_column(
            sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0")
        )

    op.create_table(
        "ai_alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("aviso", sa.Text(), nullable=False),
        sa.Column("justificativa", sa.Text()),
        sa.Column(
            "prioridade",
            sa.Enum("baixa", "media", "alta", name="alertpriority"),
            nullable=False,
        ),
        sa.Column("status", sa.Enum("concluido", "ignorado", name="alertstatus")),
        sa.Column(
            "context",
            sa.Enum("finance", "goals", "both", name="alertcontext"),
            nullable=False,
            server_default="finance",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_ai_alerts_user_status", "ai_alerts", ["user_id", "status"])

    op.create_table(
        "financial_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500)),
        sa.Column(
            "type",
            sa.Enum(
                "economia",
                "limite_gasto",
                "meta_receita",
                "investimento",
                name="goaltype",
            ),
            nullable=False,
        ),
        sa.Column("target_value", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "current_value", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("category", sa.String(length=100)),
        sa.Column(
            "period",
            sa.Enum(
                "mensal", "trimestral", "anual", "personalizado", name="goalperiod"
            ),
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("ativo", "pausado", "concluido", "falhou", name="goalstatus"),
            nullable=False,
            server_default="ativo",
        ),
        sa.Column(
            "auto_complete", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "target_value > 0", name="ck_financial_goals_target_positive"
        ),
    )
    op.create_index(
        "ix_financial_goals_user_status", "financial_goals", ["user_id", "status"]
    )

    op.create_table(
        "user_badges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("badge_code", sa.String(length=50), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "badge_code", name="uq_user_badges_user_code"),
    )


def downgrade():
    op.drop_table("user_badges")
    op.drop_index("ix_financial_goals_user_status", table_name="financial_goals")
    op.drop_table("financial_goals")
    op.drop_index("ix_ai_alerts_user_status", table_name="ai_alerts")
    op.drop_table("ai_alerts")
    if op.get_context().dialect.name == "postgresql":
        for name in _NEW_ENUMS:
            op.execute(f"DROP TYPE IF EXISTS {name}")

    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_column("longest_streak")
        batch_op.drop_column("current_streak")
        batch_op.drop_column("total_goals_completed")
        batch_op.drop_column("level")
        batch_op.drop_column("experience")
