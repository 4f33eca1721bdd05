from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    entrada = "entrada"
    saida = "saida"


class Classification(str, Enum):
    fixo = "fixo"
    variavel = "variavel"
    recorrente = "recorrente"
    ajuste_saldo = "ajuste_saldo"


class RecurrenceInterval(str, Enum):
    semanal = "semanal"
    mensal = "mensal"
    trimestral = "trimestral"
    semestral = "semestral"
    anual = "anual"


class RecurrenceDuration(str, Enum):
    tres_meses = "3_meses"
    seis_meses = "6_meses"
    doze_meses = "12_meses"
    indefinido = "indefinido"


class SubscriptionTier(str, Enum):
    free = "free"
    pro = "pro"


class ReportType(str, Enum):
    none = "none"
    simple = "simple"
    advanced = "advanced"


class ReportStatus(str, Enum):
    pending = "pending"
    generating = "generating"
    sent = "sent"
    failed = "failed"
    insufficient_data = "insufficient_data"


class AlertPriority(str, Enum):
    baixa = "baixa"
    media = "media"
    alta = "alta"


class AlertStatus(str, Enum):
    concluido = "concluido"
    ignorado = "ignorado"


class AlertContext(str, Enum):
    finance = "finance"
    goals = "goals"
    both = "both"


class GoalType(str, Enum):
    economia = "economia"
    limite_gasto = "limite_gasto"
    meta_receita = "meta_receita"
    investimento = "investimento"


class GoalPeriod(str, Enum):
    mensal = "mensal"
    trimestral = "trimestral"
    anual = "anual"
    personalizado = "personalizado"


class GoalStatus(str, Enum):
    ativo = "ativo"
    pausado = "pausado"
    concluido = "concluido"
    falhou = "falhou"


def _enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


TRANSACTION_TYPE_ENUM = _enum(TransactionType, "transactiontype")
CLASSIFICATION_ENUM = _enum(Classification, "classification")
RECURRENCE_INTERVAL_ENUM = _enum(RecurrenceInterval, "recurrenceinterval")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(120))
    subscription: Mapped[SubscriptionTier] = mapped_column(
        _enum(SubscriptionTier, "subscriptiontier"),
        default=SubscriptionTier.free,
        nullable=False,
    )
    report: Mapped[ReportType] = mapped_column(
        _enum(ReportType, "reporttype"), default=ReportType.none, nullable=False
    )
    experience: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_goals_completed: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    records: Mapped[list["FinanceRecord"]] = relationship(
        "FinanceRecord", back_populates="user"
    )


class FinanceRecord(Base, TimestampMixin):
    __tablename__ = "finance_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    valor: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tipo: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    categoria: Mapped[str] = mapped_column(String(100), nullable=False)
    de: Mapped[Optional[str]] = mapped_column(String(200))
    para: Mapped[Optional[str]] = mapped_column(String(200))
    classificacao: Mapped[Optional[Classification]] = mapped_column(
        CLASSIFICATION_ENUM
    )
    data_comprovante: Mapped[date] = mapped_column(Date, nullable=False)

    recurrence_group_id: Mapped[Optional[str]] = mapped_column(String(36))
    recurrence_interval: Mapped[Optional[RecurrenceInterval]] = mapped_column(
        RECURRENCE_INTERVAL_ENUM
    )
    is_infinite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Cached `data_comprovante > today`, reconciled by RecurrenceService.
    is_future: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="records")

    __table_args__ = (
        Index("ix_finance_records_user_date", "user_id", "data_comprovante"),
        Index("ix_finance_records_user_infinite", "user_id", "is_infinite"),
        Index(
            "ix_finance_records_group_date", "recurrence_group_id", "data_comprovante"
        ),
        CheckConstraint("valor > 0", name="ck_finance_records_valor_positive"),
        CheckConstraint(
            "recurrence_group_id IS NULL OR recurrence_interval IS NOT NULL",
            name="ck_finance_records_group_has_interval",
        ),
    )


class CustomCategory(Base, TimestampMixin):
    __tablename__ = "custom_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tipo: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "tipo", "name", name="uq_custom_category_user_tipo_name"
        ),
    )


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[ReportStatus] = mapped_column(
        _enum(ReportStatus, "reportstatus"), nullable=False
    )
    type: Mapped[ReportType] = mapped_column(
        _enum(ReportType, "reporttype"), nullable=False
    )
    content: Mapped[Optional[str]] = mapped_column(Text)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    counts_for_limit: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    filter_start_date: Mapped[Optional[str]] = mapped_column(String(10))
    filter_end_date: Mapped[Optional[str]] = mapped_column(String(10))

    __table_args__ = (
        Index("ix_reports_user_requested", "user_id", "requested_at"),
        Index("ix_reports_status_requested", "status", "requested_at"),
    )


class AIAlert(Base, TimestampMixin):
    __tablename__ = "ai_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    aviso: Mapped[str] = mapped_column(Text, nullable=False)
    justificativa: Mapped[Optional[str]] = mapped_column(Text)
    prioridade: Mapped[AlertPriority] = mapped_column(
        _enum(AlertPriority, "alertpriority"), nullable=False
    )
    # NULL while the alert is still active.
    status: Mapped[Optional[AlertStatus]] = mapped_column(
        _enum(AlertStatus, "alertstatus")
    )
    context: Mapped[AlertContext] = mapped_column(
        _enum(AlertContext, "alertcontext"),
        default=AlertContext.finance,
        nullable=False,
    )

    __table_args__ = (Index("ix_ai_alerts_user_status", "user_id", "status"),)


class FinancialGoal(Base, TimestampMixin):
    __tablename__ = "financial_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    type: Mapped[GoalType] = mapped_column(_enum(GoalType, "goaltype"), nullable=False)
    target_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    current_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    category: Mapped[Optional[str]] = mapped_column(String(100))
    period: Mapped[Optional[GoalPeriod]] = mapped_column(_enum(GoalPeriod, "goalperiod"))
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[GoalStatus] = mapped_column(
        _enum(GoalStatus, "goalstatus"), default=GoalStatus.ativo, nullable=False
    )
    auto_complete: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_financial_goals_user_status", "user_id", "status"),
        CheckConstraint("target_value > 0", name="ck_financial_goals_target_positive"),
    )


class UserBadge(Base):
    __tablename__ = "user_badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    badge_code: Mapped[str] = mapped_column(String(50), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "badge_code", name="uq_user_badges_user_code"),
    )
