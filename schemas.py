from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    AlertContext,
    AlertPriority,
    AlertStatus,
    Classification,
    GoalPeriod,
    GoalStatus,
    GoalType,
    RecurrenceDuration,
    RecurrenceInterval,
    ReportStatus,
    ReportType,
    TransactionType,
)


class FinanceRecordIn(BaseModel):
    valor: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    tipo: TransactionType
    categoria: str = Field(..., min_length=1, max_length=100)
    de: Optional[str] = Field(default=None, max_length=200)
    para: Optional[str] = Field(default=None, max_length=200)
    classificacao: Optional[Classification] = None
    data_comprovante: date
    recurrence_interval: Optional[RecurrenceInterval] = None
    recurrence_duration: Optional[RecurrenceDuration] = None

    @model_validator(mode="after")
    def _recurrence_fields_together(self) -> "FinanceRecordIn":
        if (self.recurrence_interval is None) != (self.recurrence_duration is None):
            raise ValueError(
                "recurrence_interval and recurrence_duration must be given together"
            )
        if self.classificacao == Classification.ajuste_saldo:
            raise ValueError("Balance adjustments are created through adjust_balance")
        return self

    @property
    def is_recurrent(self) -> bool:
        return self.recurrence_interval is not None


class FinanceRecordUpdate(BaseModel):
    valor: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    tipo: TransactionType
    categoria: str = Field(..., min_length=1, max_length=100)
    de: Optional[str] = Field(default=None, max_length=200)
    para: Optional[str] = Field(default=None, max_length=200)
    classificacao: Optional[Classification] = None
    data_comprovante: date


class FinanceRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    valor: float
    tipo: TransactionType
    categoria: str
    de: Optional[str]
    para: Optional[str]
    classificacao: Optional[Classification]
    data_comprovante: date
    created_at: datetime
    recurrence_group_id: Optional[str]
    recurrence_interval: Optional[RecurrenceInterval]
    is_infinite: bool
    is_future: bool


class BalanceAdjustmentIn(BaseModel):
    target_balance: Decimal


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    tipo: TransactionType


class ReportRequestIn(BaseModel):
    filter_start_date: Optional[date] = None
    filter_end_date: Optional[date] = None


class ReportCallbackIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    report_id: int
    status: Literal["sent", "failed"]
    content: Optional[str] = None
    error_message: Optional[str] = None


class ReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    status: ReportStatus
    type: ReportType
    content: Optional[str]
    requested_at: datetime
    generated_at: Optional[datetime]
    sent_at: Optional[datetime]
    counts_for_limit: bool
    error_message: Optional[str]
    filter_start_date: Optional[str]
    filter_end_date: Optional[str]


class AlertIn(BaseModel):
    user_id: int
    aviso: str = Field(..., min_length=1)
    justificativa: Optional[str] = None
    prioridade: AlertPriority
    context: AlertContext = AlertContext.finance


class AlertStatusIn(BaseModel):
    status: AlertStatus


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    aviso: str
    justificativa: Optional[str]
    prioridade: AlertPriority
    status: Optional[AlertStatus]
    context: AlertContext
    created_at: datetime
    updated_at: datetime


class GoalIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: GoalType
    target_value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category: Optional[str] = Field(default=None, max_length=100)
    period: Optional[GoalPeriod] = None
    start_date: date
    end_date: date
    auto_complete: bool = True


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    target_value: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    category: Optional[str] = Field(default=None, max_length=100)
    period: Optional[GoalPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[GoalStatus] = None
    auto_complete: Optional[bool] = None


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str]
    type: GoalType
    target_value: float
    current_value: float
    category: Optional[str]
    period: Optional[GoalPeriod]
    start_date: date
    end_date: date
    status: GoalStatus
    auto_complete: bool
    completed_at: Optional[datetime]
    created_at: datetime
