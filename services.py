from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.orm import Session

from models import (
    AIAlert,
    AlertContext,
    AlertPriority,
    AlertStatus,
    Classification,
    CustomCategory,
    FinanceRecord,
    FinancialGoal,
    GoalPeriod,
    GoalStatus,
    GoalType,
    Report,
    ReportStatus,
    ReportType,
    SubscriptionTier,
    TransactionType,
    User,
    UserBadge,
)
from periods import (
    FinanceFilters,
    Period,
    add_months,
    comparison_periods,
    month_period,
    shift_months,
)
from recurrence import RecurrenceService, is_future_date, local_now, local_today
from report_webhook import (
    ReportDispatchError,
    ReportWebhookClient,
    ReportWebhookPayload,
)
from schemas import (
    AlertIn,
    CategoryIn,
    FinanceRecordIn,
    FinanceRecordUpdate,
    GoalIn,
    GoalUpdate,
)


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")

ADJUSTMENT_CATEGORY = "Ajuste de Saldo"
ADJUSTMENT_COUNTERPARTY = "Ajuste Manual"
MAX_ADJUSTMENTS_PER_MONTH = 3
BALANCE_EPSILON = Decimal("0.01")

MEAN_WINDOW_MONTHS = 6

REPORT_MONTHLY_LIMIT = 3
REPORT_COOLDOWN = timedelta(hours=24)
MIN_TOTAL_RECORDS = 10
MIN_RECENT_RECORDS = 5
RECENT_WINDOW = timedelta(days=30)

ALERT_LIMIT = 10

GOAL_LIMITS = {SubscriptionTier.free: 2, SubscriptionTier.pro: 10}
INVESTMENT_CATEGORIES = ("Reserva", "Objetivos", "Investimentos")
AT_RISK_TIME_PROGRESS = 0.75
AT_RISK_VALUE_PROGRESS = 0.5
XP_GOAL_COMPLETED = 50
XP_EARLY_COMPLETION = 25
EARLY_COMPLETION_DAYS = 7

DEFAULT_EXPENSE_CATEGORIES = (
    "Aluguel",
    "Contas Fixas",
    "Alimentação",
    "FastFood",
    "Transporte",
    "Saúde",
    "Filhos",
    "Trabalho",
    "Ferramentas",
    "Lazer e Vida Social",
    "Dívidas",
    "Reserva",
    "Objetivos",
    "Educação",
    "Imprevistos",
    "Outros",
)
DEFAULT_INCOME_CATEGORIES = ("Site", "Automação", "Design", "Outros")


def default_categories(tipo: TransactionType) -> tuple[str, ...]:
    if tipo == TransactionType.entrada:
        return DEFAULT_INCOME_CATEGORIES
    return DEFAULT_EXPENSE_CATEGORIES


def to_money(value: Union[Decimal, float, int, str, None]) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _total(records: list[FinanceRecord], tipo: TransactionType) -> Decimal:
    return sum((r.valor for r in records if r.tipo == tipo), ZERO)


def _count(records: list[FinanceRecord], tipo: TransactionType) -> int:
    return sum(1 for r in records if r.tipo == tipo)


def _margin(inflows: Decimal, outflows: Decimal) -> float:
    if inflows <= 0:
        return 0.0
    return float((inflows - outflows) / inflows * 100)


def _balance_of(records: list[FinanceRecord]) -> Decimal:
    return _total(records, TransactionType.entrada) - _total(
        records, TransactionType.saida
    )


def filtered_records_stmt(
    user_id: int,
    filters: FinanceFilters,
    *,
    include_future: bool,
    today: date,
):
    stmt = select(FinanceRecord).where(FinanceRecord.user_id == user_id)
    end = filters.end_date
    if not include_future:
        end = min(end, today) if end else today
    if filters.start_date:
        stmt = stmt.where(FinanceRecord.data_comprovante >= filters.start_date)
    if end:
        stmt = stmt.where(FinanceRecord.data_comprovante <= end)
    if filters.tipo:
        stmt = stmt.where(FinanceRecord.tipo == filters.tipo)
    if filters.categoria:
        stmt = stmt.where(FinanceRecord.categoria == filters.categoria)
    return stmt.order_by(
        FinanceRecord.data_comprovante.desc(), FinanceRecord.id.desc()
    )


class NoAdjustmentNeeded(ValueError):
    pass


class AdjustmentLimitReached(ValueError):
    code = "LIMITE_AJUSTE_ATINGIDO"

    def __init__(self, limit: int, current: int) -> None:
        self.limit = limit
        self.current = current
        super().__init__(
            f"Você já realizou {current} ajustes de saldo este mês. Muitos ajustes "
            "podem distorcer seus gráficos. O limite será liberado no próximo mês."
        )


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_custom(self) -> list[CustomCategory]:
        stmt = (
            select(CustomCategory)
            .where(CustomCategory.user_id == self.user_id)
            .order_by(CustomCategory.tipo, CustomCategory.name)
        )
        return self.session.scalars(stmt).all()

    def catalog(self) -> dict[str, object]:
        custom = self.list_custom()
        names: dict[str, list[str]] = {}
        for tipo in TransactionType:
            names[tipo.value] = list(default_categories(tipo)) + [
                c.name for c in custom if c.tipo == tipo
            ]
        return {"categories": names, "custom": custom}

    def get(self, category_id: int) -> CustomCategory:
        category = self.session.get(CustomCategory, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def _ensure_unique(
        self, name: str, tipo: TransactionType, exclude_id: Optional[int] = None
    ) -> None:
        lowered = name.strip().lower()
        if lowered in {n.lower() for n in default_categories(tipo)}:
            raise ValueError("Category already exists")
        stmt = select(CustomCategory.id).where(
            CustomCategory.user_id == self.user_id,
            CustomCategory.tipo == tipo,
            func.lower(CustomCategory.name) == lowered,
        )
        if exclude_id is not None:
            stmt = stmt.where(CustomCategory.id != exclude_id)
        if self.session.scalar(stmt.limit(1)) is not None:
            raise ValueError("Category already exists")

    def create(self, data: CategoryIn) -> CustomCategory:
        name = data.name.strip()
        self._ensure_unique(name, data.tipo)
        category = CustomCategory(user_id=self.user_id, name=name, tipo=data.tipo)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> CustomCategory:
        category = self.get(category_id)
        name = data.name.strip()
        self._ensure_unique(name, data.tipo, exclude_id=category.id)
        category.name = name
        category.tipo = data.tipo
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()


class FinanceRecordService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(
        self, data: FinanceRecordIn, *, today: Optional[date] = None
    ) -> list[FinanceRecord]:
        today = today or local_today()
        if data.is_recurrent:
            batch = RecurrenceService(self.session, self.user_id).create_recurrent_records(
                valor=data.valor,
                tipo=data.tipo,
                categoria=data.categoria,
                data_comprovante=data.data_comprovante,
                recurrence_interval=data.recurrence_interval,
                recurrence_duration=data.recurrence_duration,
                de=data.de,
                para=data.para,
                today=today,
            )
            return batch.records

        record = FinanceRecord(
            user_id=self.user_id,
            valor=data.valor,
            tipo=data.tipo,
            categoria=data.categoria,
            de=data.de or None,
            para=data.para or None,
            classificacao=data.classificacao,
            data_comprovante=data.data_comprovante,
            is_future=is_future_date(data.data_comprovante, today),
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return [record]

    def get(self, record_id: int) -> FinanceRecord:
        record = self.session.get(FinanceRecord, record_id)
        if not record or record.user_id != self.user_id:
            raise ValueError("Record not found")
        return record

    def update(
        self,
        record_id: int,
        data: FinanceRecordUpdate,
        *,
        today: Optional[date] = None,
    ) -> FinanceRecord:
        record = self.get(record_id)
        if data.classificacao == Classification.ajuste_saldo:
            raise ValueError("Balance adjustments are created through adjust_balance")
        today = today or local_today()
        record.valor = data.valor
        record.tipo = data.tipo
        record.categoria = data.categoria
        record.de = data.de or None
        record.para = data.para or None
        # Classification is fixed for series rows (recorrente) and for
        # balance adjustments (ajuste_saldo).
        if (
            record.recurrence_group_id is None
            and record.classificacao != Classification.ajuste_saldo
        ):
            record.classificacao = data.classificacao
        if record.data_comprovante != data.data_comprovante:
            record.data_comprovante = data.data_comprovante
            record.is_future = is_future_date(data.data_comprovante, today)
        self.session.commit()
        self.session.refresh(record)
        return record

    def list_records(
        self,
        filters: FinanceFilters,
        *,
        include_future: bool = True,
        today: Optional[date] = None,
    ) -> list[FinanceRecord]:
        stmt = filtered_records_stmt(
            self.user_id,
            filters,
            include_future=include_future,
            today=today or local_today(),
        )
        return self.session.scalars(stmt).all()

    def delete(self, record_id: int, scope: str = "single") -> int:
        """Delete one record, or with ``scope="future"`` it and the rest of its series."""
        if scope not in ("single", "future"):
            raise ValueError(f"Invalid delete scope: {scope}")
        record = self.get(record_id)
        if scope == "single" or record.recurrence_group_id is None:
            self.session.delete(record)
            self.session.commit()
            return 1

        result = self.session.execute(
            delete(FinanceRecord)
            .where(
                FinanceRecord.user_id == self.user_id,
                FinanceRecord.recurrence_group_id == record.recurrence_group_id,
                FinanceRecord.data_comprovante >= record.data_comprovante,
            )
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        logger.info(
            f"recurrence_deleted: user={self.user_id} "
            f"group={record.recurrence_group_id} count={result.rowcount}"
        )
        return int(result.rowcount or 0)

    def clients(self) -> list[str]:
        rows = self.session.execute(
            select(FinanceRecord.de, FinanceRecord.para).where(
                FinanceRecord.user_id == self.user_id
            )
        ).all()
        names: set[str] = set()
        for row in rows:
            for value in (row.de, row.para):
                if value:
                    names.add(value)
        return sorted(names)


@dataclass(frozen=True)
class FinanceKPIs:
    saldo: float
    entradas: float
    saidas: float
    lucro_liquido: float
    margem_liquida: float
    ticket_medio: float
    ticket_medio_entrada: float
    media_mensal: float
    variacao_mensal: float
    variacao_mensal_reais: float
    variacao_margem: float
    variacao_saidas: float
    total_transacoes: int

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


class FinanceService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _prepare(self, today: date) -> None:
        # Flags first so the buffer check and every read see current values.
        recurrence = RecurrenceService(self.session, self.user_id)
        recurrence.sync_is_future_flags(today=today)
        recurrence.ensure_recurrence_buffer(today=today)

    def get_records(
        self,
        filters: FinanceFilters,
        *,
        include_future: bool = False,
        today: Optional[date] = None,
    ) -> list[FinanceRecord]:
        stmt = filtered_records_stmt(
            self.user_id,
            filters,
            include_future=include_future,
            today=today or local_today(),
        )
        return self.session.scalars(stmt).all()

    def get_kpis(
        self,
        filters: FinanceFilters,
        *,
        today: Optional[date] = None,
        prepare: bool = True,
    ) -> FinanceKPIs:
        today = today or local_today()
        if prepare:
            self._prepare(today)

        filtered = self.get_records(filters, today=today)
        all_records = self.get_records(FinanceFilters(), today=today)

        entradas = _total(filtered, TransactionType.entrada)
        saidas = _total(filtered, TransactionType.saida)
        lucro = entradas - saidas
        margem = _margin(entradas, saidas)

        saidas_count = _count(filtered, TransactionType.saida)
        entradas_count = _count(filtered, TransactionType.entrada)
        ticket_medio = saidas / saidas_count if saidas_count else ZERO
        ticket_medio_entrada = entradas / entradas_count if entradas_count else ZERO

        variances = self._variances(filters, filtered, today)
        return FinanceKPIs(
            saldo=float(lucro),
            entradas=float(entradas),
            saidas=float(saidas),
            lucro_liquido=float(lucro),
            margem_liquida=margem,
            ticket_medio=float(ticket_medio),
            ticket_medio_entrada=float(ticket_medio_entrada),
            media_mensal=float(self._monthly_mean(all_records, today)),
            total_transacoes=len(filtered),
            **variances,
        )

    def _monthly_mean(self, all_records: list[FinanceRecord], today: date) -> Decimal:
        """Mean outflow over this month and the five before it, ignoring filters.

        Months without records count as zero.
        """
        total = ZERO
        for offset in range(MEAN_WINDOW_MONTHS):
            window = month_period(add_months(today, -offset))
            total += sum(
                (
                    r.valor
                    for r in all_records
                    if r.tipo == TransactionType.saida
                    and window.contains(r.data_comprovante)
                ),
                ZERO,
            )
        return total / MEAN_WINDOW_MONTHS

    def _variances(
        self,
        filters: FinanceFilters,
        filtered: list[FinanceRecord],
        today: date,
    ) -> dict[str, float]:
        current_period, previous_period = comparison_periods(filters, today)
        current = [r for r in filtered if current_period.contains(r.data_comprovante)]
        current_saidas = _total(current, TransactionType.saida)
        current_margem = _margin(_total(current, TransactionType.entrada), current_saidas)

        previous = self._records_between(previous_period, filters)
        prev_saidas = _total(previous, TransactionType.saida)
        prev_margem = _margin(_total(previous, TransactionType.entrada), prev_saidas)

        variacao_mensal = (
            float((current_saidas - prev_saidas) / prev_saidas * 100)
            if prev_saidas > 0
            else 0.0
        )
        return {
            "variacao_mensal": variacao_mensal,
            "variacao_mensal_reais": float(current_saidas - prev_saidas),
            "variacao_margem": current_margem - prev_margem,
            # Same figure published under a second name for existing consumers.
            "variacao_saidas": variacao_mensal,
        }

    def _records_between(
        self, period: Period, filters: FinanceFilters
    ) -> list[FinanceRecord]:
        stmt = select(FinanceRecord).where(
            FinanceRecord.user_id == self.user_id,
            FinanceRecord.data_comprovante.between(period.start, period.end),
        )
        if filters.tipo:
            stmt = stmt.where(FinanceRecord.tipo == filters.tipo)
        if filters.categoria:
            stmt = stmt.where(FinanceRecord.categoria == filters.categoria)
        return self.session.scalars(stmt).all()

    def get_expense_distribution(
        self,
        filters: FinanceFilters,
        *,
        today: Optional[date] = None,
        prepare: bool = True,
    ) -> list[dict[str, object]]:
        today = today or local_today()
        if prepare:
            self._prepare(today)

        totals: dict[str, Decimal] = {}
        for record in self.get_records(filters, today=today):
            if record.tipo != TransactionType.saida:
                continue
            if record.classificacao == Classification.ajuste_saldo:
                continue
            totals[record.categoria] = totals.get(record.categoria, ZERO) + record.valor

        total = sum(totals.values(), ZERO)
        distribution = [
            {
                "categoria": categoria,
                "valor": float(valor),
                "percentual": float(valor / total * 100) if total > 0 else 0.0,
            }
            for categoria, valor in totals.items()
        ]
        distribution.sort(key=lambda item: item["valor"], reverse=True)
        return distribution

    def get_summary(
        self, filters: FinanceFilters, *, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        self._prepare(today)
        return {
            "kpis": self.get_kpis(filters, today=today, prepare=False),
            "records": self.get_records(filters, today=today),
            "distribution": self.get_expense_distribution(
                filters, today=today, prepare=False
            ),
            "alerts": self.get_alerts(),
        }

    def get_alerts(self, limit: int = ALERT_LIMIT) -> list[AIAlert]:
        return AlertService(self.session, self.user_id).get_alerts(limit)

    def global_balance(self) -> Decimal:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            FinanceRecord.tipo == TransactionType.entrada,
                            FinanceRecord.valor,
                        ),
                        else_=-FinanceRecord.valor,
                    )
                ),
                0,
            )
        ).where(FinanceRecord.user_id == self.user_id)
        return to_money(self.session.execute(stmt).scalar_one())

    def adjust_balance(
        self,
        target_balance: Union[Decimal, float, str],
        *,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        today = today or local_today()
        target = Decimal(str(target_balance))

        # Row lock on the owner serializes concurrent adjustments for the
        # count check and the insert below, committed together.
        user = self.session.scalar(
            select(User).where(User.id == self.user_id).with_for_update()
        )
        if user is None:
            raise ValueError("User not found")

        month = month_period(today)
        adjustments = int(
            self.session.execute(
                select(func.count(FinanceRecord.id)).where(
                    FinanceRecord.user_id == self.user_id,
                    FinanceRecord.classificacao == Classification.ajuste_saldo,
                    FinanceRecord.data_comprovante.between(month.start, month.end),
                )
            ).scalar_one()
        )
        if adjustments >= MAX_ADJUSTMENTS_PER_MONTH:
            self.session.rollback()
            raise AdjustmentLimitReached(MAX_ADJUSTMENTS_PER_MONTH, adjustments)

        current_balance = self.global_balance()
        difference = target - current_balance
        if abs(difference) < BALANCE_EPSILON:
            self.session.rollback()
            raise NoAdjustmentNeeded("O saldo atual já está correto.")

        tipo = TransactionType.entrada if difference > 0 else TransactionType.saida
        record = FinanceRecord(
            user_id=self.user_id,
            valor=to_money(abs(difference)),
            tipo=tipo,
            categoria=ADJUSTMENT_CATEGORY,
            classificacao=Classification.ajuste_saldo,
            data_comprovante=today,
            de=ADJUSTMENT_COUNTERPARTY,
            para=ADJUSTMENT_COUNTERPARTY,
            is_future=False,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(
            f"balance_adjusted: user={self.user_id} previous={current_balance} "
            f"target={target} tipo={tipo.value} count={adjustments + 1}"
        )
        return {
            "message": "Saldo ajustado com sucesso",
            "record": record,
            "adjustment": {
                "previous_balance": float(current_balance),
                "target_balance": float(target),
                "difference": float(difference),
                "tipo": tipo.value,
            },
        }

    def get_seasonality(
        self, tipo: TransactionType, *, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        records = self._records_between(
            Period(shift_months(today, -12), today), FinanceFilters(tipo=tipo)
        )
        if not records:
            return {
                "tipo": tipo.value,
                "max_value": 0.0,
                "min_value": 0.0,
                "avg_value": 0.0,
                "has_data": False,
            }
        monthly: dict[tuple[int, int], Decimal] = {}
        for record in records:
            key = (record.data_comprovante.year, record.data_comprovante.month)
            monthly[key] = monthly.get(key, ZERO) + record.valor
        values = list(monthly.values())
        return {
            "tipo": tipo.value,
            "max_value": float(max(values)),
            "min_value": float(min(values)),
            "avg_value": float(sum(values, ZERO) / len(values)),
            "has_data": True,
        }

    def get_health_metrics(self, *, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        all_records = self.session.scalars(
            select(FinanceRecord).where(FinanceRecord.user_id == self.user_id)
        ).all()
        if not all_records:
            return {
                "score": 0,
                "score_label": "atenção",
                "score_color": "yellow",
                "trend": None,
                "burn_rate": {"current": 0.0, "six_months": 0.0, "has_limited_data": True},
                "fixed_commitment": {
                    "value": 0.0,
                    "status": "atenção",
                    "has_limited_data": True,
                },
                "survival_time": {
                    "value": 0.0,
                    "unit": "dias",
                    "status": "atenção",
                    "is_stable": True,
                },
                "saldo_global": 0.0,
            }

        window = Period(shift_months(today, -12), today)
        last_12 = [r for r in all_records if window.contains(r.data_comprovante)]
        saldo = _balance_of(all_records)
        health = _health_snapshot(saldo, last_12, today)

        month_ago = shift_months(today, -1)
        older = [r for r in all_records if r.data_comprovante <= month_ago]
        older_12 = [r for r in last_12 if r.data_comprovante <= month_ago]
        trend = None
        if len(older) >= 5 and len(older_12) >= 5:
            previous = _health_snapshot(_balance_of(older), older_12, month_ago)
            trend = _trend(health["score"] - previous["score"])

        return {
            "score": health["score"],
            "score_label": health["score_label"],
            "score_color": health["score_color"],
            "trend": trend,
            "burn_rate": health["burn_rate"],
            "fixed_commitment": health["fixed_commitment"],
            "survival_time": health["survival_time"],
            "saldo_global": float(saldo),
        }


def _health_status(value: float, healthy: float, attention: float) -> str:
    if value <= healthy:
        return "saudável"
    if value <= attention:
        return "atenção"
    return "risco"


def _health_snapshot(
    saldo: Decimal, last_12: list[FinanceRecord], reference: date
) -> dict[str, object]:
    six_months_ago = shift_months(reference, -6)
    expenses = [r for r in last_12 if r.tipo == TransactionType.saida]
    recent_expenses = [r for r in expenses if r.data_comprovante >= six_months_ago]
    burn_current = sum((r.valor for r in expenses), ZERO) / 12
    burn_rate = {
        "current": float(burn_current),
        "six_months": float(sum((r.valor for r in recent_expenses), ZERO) / 6),
        "has_limited_data": len(expenses) < 3,
    }

    income = _total(last_12, TransactionType.entrada)
    recurring_expenses = sum(
        (r.valor for r in expenses if r.classificacao == Classification.recorrente),
        ZERO,
    )
    commitment = float(recurring_expenses / income * 100) if income > 0 else 0.0
    fixed_commitment = {
        "value": commitment,
        "status": _health_status(commitment, 50, 70),
        "has_limited_data": _count(last_12, TransactionType.entrada) < 2,
    }

    survival = _survival_time(float(saldo), float(burn_current))
    score = _health_score(commitment, survival)
    if score >= 70:
        label, color = "saudável", "green"
    elif score >= 50:
        label, color = "atenção", "yellow"
    else:
        label, color = "risco", "red"
    return {
        "score": score,
        "score_label": label,
        "score_color": color,
        "burn_rate": burn_rate,
        "fixed_commitment": fixed_commitment,
        "survival_time": survival,
    }


def _survival_time(saldo: float, burn_rate: float) -> dict[str, object]:
    if burn_rate <= 0:
        return {"value": 0.0, "unit": "dias", "status": "atenção", "is_stable": True}
    if saldo <= 0:
        return {"value": 0.0, "unit": "dias", "status": "risco", "is_stable": False}

    months = saldo / burn_rate
    if months < 0.1:
        value, unit = months * 30 * 24, "horas"
    elif months < 1:
        value, unit = months * 30, "dias"
    elif months < 24:
        value, unit = months, "meses"
    else:
        value, unit = months / 12, "anos"

    if months >= 6:
        status = "saudável"
    elif months >= 3:
        status = "atenção"
    else:
        status = "risco"
    return {"value": round(value, 1), "unit": unit, "status": status, "is_stable": True}


_UNIT_IN_MONTHS = {"anos": 12.0, "meses": 1.0, "dias": 1 / 30, "horas": 1 / (30 * 24)}


def _health_score(commitment: float, survival: dict[str, object]) -> int:
    if commitment == 0:
        commitment_band = 50
    elif commitment <= 30:
        commitment_band = 100
    elif commitment <= 50:
        commitment_band = 80
    elif commitment <= 70:
        commitment_band = 60
    elif commitment <= 90:
        commitment_band = 40
    elif commitment <= 110:
        commitment_band = 25
    else:
        commitment_band = 10

    fixed_score = 100 if commitment <= 50 else 100 - (commitment - 50) * 2

    survival_months = 0.0
    if survival["is_stable"]:
        survival_months = float(survival["value"]) * _UNIT_IN_MONTHS[survival["unit"]]
    if survival_months >= 12:
        survival_score = 100
    elif survival_months >= 6:
        survival_score = 80
    elif survival_months >= 3:
        survival_score = 50
    elif survival_months >= 1:
        survival_score = 30
    else:
        survival_score = 10

    total = commitment_band * 0.3 + fixed_score * 0.4 + survival_score * 0.3
    return max(0, min(100, round(total)))


def _trend(score_diff: float) -> dict[str, str]:
    if score_diff >= 5:
        return {"direction": "improving", "label": "Em melhora", "color": "green"}
    if score_diff <= -5:
        return {"direction": "declining", "label": "Em queda", "color": "red"}
    return {"direction": "stable", "label": "Estável", "color": "yellow"}


@dataclass(frozen=True)
class ReportEligibility:
    can_generate: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    cooldown_ends_at: Optional[datetime] = None

    @property
    def blocks_creation(self) -> bool:
        # Missing data still records the attempt; every other rejection does not.
        return not self.can_generate and self.code != "insufficient_data"


@dataclass
class ReportResult:
    success: bool
    message: str
    report: Optional[Report] = None
    insufficient_data: bool = False
    eligibility: Optional[ReportEligibility] = None


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id

    def _user(self) -> Optional[User]:
        if self.user_id is None:
            return None
        return self.session.get(User, self.user_id)

    def _reports_this_month(self, now: datetime) -> int:
        month = month_period(now.date())
        return int(
            self.session.execute(
                select(func.count(Report.id)).where(
                    Report.user_id == self.user_id,
                    Report.counts_for_limit.is_(True),
                    Report.requested_at >= datetime.combine(month.start, datetime.min.time()),
                    Report.requested_at <= datetime.combine(month.end, datetime.max.time()),
                )
            ).scalar_one()
        )

    def can_generate_report(self, *, now: Optional[datetime] = None) -> ReportEligibility:
        now = now or local_now()
        user = self._user()
        if user is None:
            return ReportEligibility(False, "Usuário não encontrado", "user_not_found")
        if user.subscription != SubscriptionTier.pro:
            return ReportEligibility(
                False, "Apenas usuários PRO podem gerar relatórios", "not_pro"
            )
        if user.report == ReportType.none:
            return ReportEligibility(
                False,
                "Configure o tipo de relatório nas preferências antes de gerar",
                "report_type_not_configured",
            )

        recent = self.session.scalar(
            select(Report)
            .where(
                Report.user_id == self.user_id,
                Report.requested_at >= now - REPORT_COOLDOWN,
            )
            .order_by(Report.requested_at.desc())
            .limit(1)
        )
        if recent is not None:
            return ReportEligibility(
                False,
                "Aguarde o período de cooldown de 24 horas",
                "cooldown",
                cooldown_ends_at=recent.requested_at + REPORT_COOLDOWN,
            )

        if self._reports_this_month(now) >= REPORT_MONTHLY_LIMIT:
            return ReportEligibility(
                False,
                f"Limite mensal de {REPORT_MONTHLY_LIMIT} relatórios atingido",
                "monthly_limit",
            )

        if not self.check_data_sufficiency(today=now.date()):
            return ReportEligibility(
                False, "Dados insuficientes para gerar relatório", "insufficient_data"
            )
        return ReportEligibility(True)

    def check_data_sufficiency(self, *, today: Optional[date] = None) -> bool:
        today = today or local_today()
        total = int(
            self.session.execute(
                select(func.count(FinanceRecord.id)).where(
                    FinanceRecord.user_id == self.user_id
                )
            ).scalar_one()
        )
        if total >= MIN_TOTAL_RECORDS:
            return True
        recent = int(
            self.session.execute(
                select(func.count(FinanceRecord.id)).where(
                    FinanceRecord.user_id == self.user_id,
                    FinanceRecord.data_comprovante >= today - RECENT_WINDOW,
                )
            ).scalar_one()
        )
        return recent >= MIN_RECENT_RECORDS

    def create_report(
        self, filters: FinanceFilters, *, now: Optional[datetime] = None
    ) -> ReportResult:
        now = now or local_now()
        user = self._user()
        if user is None:
            raise ValueError("User not found")
        bounds = filters.as_strings()

        if not self.check_data_sufficiency(today=now.date()):
            report = Report(
                user_id=user.id,
                status=ReportStatus.insufficient_data,
                type=user.report,
                counts_for_limit=False,
                error_message="Dados insuficientes para gerar relatório",
                requested_at=now,
                filter_start_date=bounds["start_date"],
                filter_end_date=bounds["end_date"],
            )
            self.session.add(report)
            self.session.commit()
            self.session.refresh(report)
            logger.info(f"report_insufficient_data: user={user.id} report={report.id}")
            return ReportResult(
                success=False,
                message=(
                    "Você precisa ter pelo menos 10 registros financeiros ou 5 "
                    "registros nos últimos 30 dias para gerar um relatório."
                ),
                report=report,
                insufficient_data=True,
            )

        report = Report(
            user_id=user.id,
            status=ReportStatus.pending,
            type=user.report,
            counts_for_limit=True,
            requested_at=now,
            filter_start_date=bounds["start_date"],
            filter_end_date=bounds["end_date"],
        )
        self.session.add(report)
        self.session.commit()
        self.session.refresh(report)

        kpis = FinanceService(self.session, user.id).get_kpis(filters, today=now.date())
        payload = ReportWebhookPayload(
            report_id=report.id,
            user_id=user.id,
            user_email=user.email,
            display_name=user.display_name or user.email,
            report_type=user.report.value,
            timestamp=now.isoformat(),
            filters=bounds,
            kpis={
                "saldo": kpis.saldo,
                "entradas": kpis.entradas,
                "saidas": kpis.saidas,
                "lucro_liquido": kpis.lucro_liquido,
                "margem_liquida": kpis.margem_liquida,
                "ticket_medio": kpis.ticket_medio,
                "media_mensal": kpis.media_mensal,
                "total_transacoes": kpis.total_transacoes,
            },
        )
        try:
            ReportWebhookClient().dispatch(payload)
        except ReportDispatchError as exc:
            report.status = ReportStatus.failed
            report.error_message = str(exc)
            self.session.commit()
            logger.warning(f"report_dispatch_failed: report={report.id} error={exc}")
            raise ReportDispatchError("Erro ao iniciar geração do relatório") from exc

        report.status = ReportStatus.generating
        self.session.commit()
        self.session.refresh(report)
        logger.info(f"report_dispatched: user={user.id} report={report.id}")
        return ReportResult(
            success=True,
            message="Relatório sendo gerado. Você receberá por email em até 20 minutos.",
            report=report,
        )

    def request_report(
        self, filters: FinanceFilters, *, now: Optional[datetime] = None
    ) -> ReportResult:
        now = now or local_now()
        eligibility = self.can_generate_report(now=now)
        if eligibility.blocks_creation:
            return ReportResult(
                success=False, message=eligibility.reason or "", eligibility=eligibility
            )
        result = self.create_report(filters, now=now)
        result.eligibility = eligibility
        return result

    def update_report_status(
        self,
        report_id: int,
        status: Union[ReportStatus, str],
        *,
        content: Optional[str] = None,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Report:
        now = now or local_now()
        status = ReportStatus(status)
        if status not in (ReportStatus.sent, ReportStatus.failed):
            raise ValueError(f"Invalid callback status: {status.value}")
        report = self.session.get(Report, report_id)
        if report is None:
            raise ValueError("Report not found")

        report.status = status
        report.generated_at = now
        if status == ReportStatus.sent:
            report.sent_at = now
            report.content = content
        else:
            report.error_message = error_message or "Erro na geração do relatório"
        self.session.commit()
        self.session.refresh(report)
        return report

    def get_report_status(self, *, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or local_now()
        eligibility = self.can_generate_report(now=now)
        used = self._reports_this_month(now)
        last_report = self.session.scalar(
            select(Report)
            .where(Report.user_id == self.user_id)
            .order_by(Report.requested_at.desc())
            .limit(1)
        )
        return {
            "can_generate": eligibility.can_generate,
            "reason": eligibility.reason,
            "cooldown_ends_at": eligibility.cooldown_ends_at,
            "remaining_reports": max(0, REPORT_MONTHLY_LIMIT - used),
            "total_reports_this_month": used,
            "last_report": last_report,
            "has_insufficient_data": eligibility.code == "insufficient_data",
        }

    def get_report_history(self, limit: int = 10) -> list[Report]:
        if not 1 <= limit <= 100:
            raise ValueError("limit must be between 1 and 100")
        stmt = (
            select(Report)
            .where(Report.user_id == self.user_id)
            .order_by(Report.requested_at.desc(), Report.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def mark_timeout_reports(
        self, *, now: Optional[datetime] = None, timeout_minutes: int = 30
    ) -> int:
        now = now or local_now()
        threshold = now - timedelta(minutes=timeout_minutes)
        result = self.session.execute(
            update(Report)
            .where(
                or_(
                    Report.status == ReportStatus.pending,
                    Report.status == ReportStatus.generating,
                ),
                Report.requested_at < threshold,
            )
            .values(
                status=ReportStatus.failed,
                error_message="Timeout na geração do relatório",
            )
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        count = int(result.rowcount or 0)
        if count:
            logger.info(f"report_timeouts_marked: count={count}")
        return count


_PRIORITY_RANK = case(
    (AIAlert.prioridade == AlertPriority.alta, 0),
    (AIAlert.prioridade == AlertPriority.media, 1),
    else_=2,
)


class AlertService:
    """AI alerts written by the automation and resolved by the user.

    An alert is active while its status is NULL.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _active_stmt(self):
        return select(AIAlert).where(
            AIAlert.user_id == self.user_id, AIAlert.status.is_(None)
        )

    def get_alerts(self, limit: int = ALERT_LIMIT) -> list[AIAlert]:
        stmt = (
            self._active_stmt()
            .order_by(_PRIORITY_RANK, AIAlert.created_at.desc(), AIAlert.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def get_alerts_page(self) -> dict[str, object]:
        alerts = list(
            self.session.scalars(
                self._active_stmt().order_by(
                    _PRIORITY_RANK, AIAlert.created_at.desc(), AIAlert.id.desc()
                )
            )
        )
        counts = {priority.value: 0 for priority in AlertPriority}
        for alert in alerts:
            counts[alert.prioridade.value] += 1
        return {
            "alerts": alerts,
            "stats": {"total_alerts": len(alerts), "priority_counts": counts},
        }

    def get_goal_alerts(self, limit: int = ALERT_LIMIT) -> list[AIAlert]:
        stmt = (
            select(AIAlert)
            .where(
                AIAlert.user_id == self.user_id,
                AIAlert.context.in_([AlertContext.goals, AlertContext.both]),
            )
            .order_by(AIAlert.updated_at.desc(), AIAlert.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def get(self, alert_id: int) -> AIAlert:
        alert = self.session.get(AIAlert, alert_id)
        if not alert or alert.user_id != self.user_id:
            raise ValueError("Alert not found")
        return alert

    def update_status(self, alert_id: int, status: AlertStatus) -> AIAlert:
        alert = self.get(alert_id)
        alert.status = status
        self.session.commit()
        self.session.refresh(alert)
        logger.info(
            f"alert_resolved: user={self.user_id} alert={alert.id} status={status.value}"
        )
        return alert

    def create_alert(self, data: AlertIn) -> AIAlert:
        if self.session.get(User, self.user_id) is None:
            raise ValueError("User not found")
        alert = AIAlert(
            user_id=self.user_id,
            aviso=data.aviso.strip(),
            justificativa=data.justificativa,
            prioridade=data.prioridade,
            context=data.context,
        )
        self.session.add(alert)
        self.session.commit()
        self.session.refresh(alert)
        logger.info(
            f"alert_created: user={self.user_id} alert={alert.id} "
            f"prioridade={alert.prioridade.value} context={alert.context.value}"
        )
        return alert


@dataclass(frozen=True)
class Level:
    level: int
    name: str
    min_xp: int


LEVELS = (
    Level(1, "Iniciante", 0),
    Level(2, "Aprendiz", 100),
    Level(3, "Organizado", 300),
    Level(4, "Disciplinado", 600),
    Level(5, "Estrategista", 1000),
    Level(6, "Expert", 1500),
    Level(7, "Mestre", 2100),
    Level(8, "Lenda", 2800),
)


@dataclass(frozen=True)
class Badge:
    code: str
    name: str
    description: str
    icon: str
    category: str
    # "goals" counts completed goals, "streak" the current streak.
    metric: str
    threshold: int


BADGES = (
    Badge(
        "first_goal", "Primeiro Passo", "Complete sua primeira meta",
        "target", "metas", "goals", 1,
    ),
    Badge("goal_5", "Determinado", "Complete 5 metas", "zap", "metas", "goals", 5),
    Badge(
        "goal_10", "Persistente", "Complete 10 metas", "flame", "metas", "goals", 10
    ),
    Badge(
        "goal_25", "Imparável", "Complete 25 metas", "trophy", "metas", "goals", 25
    ),
    Badge(
        "streak_7", "Semana Perfeita", "7 dias com metas em dia",
        "calendar", "consistencia", "streak", 7,
    ),
    Badge(
        "streak_30", "Mês Consistente", "30 dias consecutivos",
        "star", "consistencia", "streak", 30,
    ),
    Badge(
        "streak_90", "Trimestre de Ouro", "90 dias consecutivos",
        "crown", "consistencia", "streak", 90,
    ),
)
_BADGES_BY_CODE = {badge.code: badge for badge in BADGES}


def level_for_xp(xp: int) -> tuple[Level, Optional[Level]]:
    """Current level and the next one (``None`` at the top)."""
    current = LEVELS[0]
    for level in LEVELS:
        if xp < level.min_xp:
            break
        current = level
    following = next((lvl for lvl in LEVELS if lvl.level == current.level + 1), None)
    return current, following


class GoalLimitReached(ValueError):
    code = "LIMITE_METAS_ATINGIDO"

    def __init__(self, limit: int, current: int) -> None:
        self.limit = limit
        self.current = current
        super().__init__(
            f"Limite de metas atingido ({limit}). "
            "Faça upgrade para PRO para criar mais metas."
        )


def goal_progress_percent(goal: FinancialGoal, value: Optional[Decimal] = None) -> float:
    value = goal.current_value if value is None else value
    if goal.target_value <= 0:
        return 0.0
    return min(100.0, float(value / goal.target_value * 100))


def is_goal_at_risk(goal: FinancialGoal, today: date) -> bool:
    """Most of the window has elapsed but less than half the target is reached."""
    if goal.status != GoalStatus.ativo:
        return False
    total_days = (goal.end_date - goal.start_date).days
    if total_days <= 0 or goal.target_value <= 0:
        return False
    time_progress = (today - goal.start_date).days / total_days
    value_progress = float(goal.current_value / goal.target_value)
    return (
        time_progress > AT_RISK_TIME_PROGRESS
        and value_progress < AT_RISK_VALUE_PROGRESS
    )


def is_goal_successful(goal: FinancialGoal, value: Optional[Decimal] = None) -> bool:
    value = goal.current_value if value is None else value
    if goal.type == GoalType.limite_gasto:
        return value <= goal.target_value
    return value >= goal.target_value


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _user(self) -> User:
        user = self.session.get(User, self.user_id)
        if user is None:
            raise ValueError("User not found")
        return user

    def get(self, goal_id: int) -> FinancialGoal:
        goal = self.session.get(FinancialGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise ValueError("Goal not found")
        return goal

    def list_goals(
        self,
        *,
        status: Optional[GoalStatus] = None,
        period: Optional[GoalPeriod] = None,
    ) -> list[FinancialGoal]:
        stmt = select(FinancialGoal).where(FinancialGoal.user_id == self.user_id)
        if status is not None:
            stmt = stmt.where(FinancialGoal.status == status)
        if period is not None:
            stmt = stmt.where(FinancialGoal.period == period)
        stmt = stmt.order_by(FinancialGoal.created_at.desc(), FinancialGoal.id.desc())
        return list(self.session.scalars(stmt))

    def _count(self, status: Optional[GoalStatus] = None) -> int:
        stmt = select(func.count(FinancialGoal.id)).where(
            FinancialGoal.user_id == self.user_id
        )
        if status is not None:
            stmt = stmt.where(FinancialGoal.status == status)
        return int(self.session.execute(stmt).scalar_one())

    def stats(self, *, today: Optional[date] = None) -> dict[str, int]:
        today = today or local_today()
        active_goals = self.list_goals(status=GoalStatus.ativo)
        completed = self._count(GoalStatus.concluido)
        failed = self._count(GoalStatus.falhou)
        total = self._count()
        success_rate = (
            round(completed / ((completed + failed) or 1) * 100) if total else 0
        )
        return {
            "active": len(active_goals),
            "completed": completed,
            "failed": failed,
            "at_risk": sum(1 for goal in active_goals if is_goal_at_risk(goal, today)),
            "total": total,
            "success_rate": success_rate,
        }

    def create(self, data: GoalIn) -> FinancialGoal:
        user = self._user()
        active = self._count(GoalStatus.ativo)
        limit = GOAL_LIMITS.get(user.subscription, GOAL_LIMITS[SubscriptionTier.free])
        if active >= limit:
            raise GoalLimitReached(limit, active)
        if data.end_date <= data.start_date:
            raise ValueError("Data de término deve ser posterior à data de início")

        goal = FinancialGoal(
            user_id=self.user_id,
            title=data.title.strip(),
            description=data.description,
            type=data.type,
            target_value=data.target_value,
            category=data.category or None,
            period=data.period,
            start_date=data.start_date,
            end_date=data.end_date,
            auto_complete=data.auto_complete,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_created: user={self.user_id} goal={goal.id} type={goal.type.value} "
            f"active={active + 1}/{limit}"
        )
        return goal

    def update(
        self, goal_id: int, data: GoalUpdate, *, now: Optional[datetime] = None
    ) -> FinancialGoal:
        goal = self.get(goal_id)
        changes = data.model_dump(exclude_unset=True)
        status = changes.pop("status", None)
        for field, value in changes.items():
            # Only these columns can be cleared.
            if value is None and field not in ("description", "category", "period"):
                continue
            setattr(goal, field, value)
        if goal.end_date <= goal.start_date:
            self.session.rollback()
            raise ValueError("Data de término deve ser posterior à data de início")

        if status is not None and status != goal.status:
            if status == GoalStatus.concluido:
                self._complete(goal, now or local_now())
            else:
                if status == GoalStatus.falhou:
                    self._user().current_streak = 0
                goal.status = status
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()
        logger.info(f"goal_deleted: user={self.user_id} goal={goal_id}")

    def calculate_progress(self, goal: FinancialGoal) -> Decimal:
        """Current value of the goal from the records inside its window."""
        stmt = (
            select(
                FinanceRecord.tipo,
                FinanceRecord.categoria,
                func.coalesce(func.sum(FinanceRecord.valor), 0),
            )
            .where(
                FinanceRecord.user_id == self.user_id,
                FinanceRecord.data_comprovante.between(goal.start_date, goal.end_date),
            )
            .group_by(FinanceRecord.tipo, FinanceRecord.categoria)
        )
        if goal.category:
            stmt = stmt.where(FinanceRecord.categoria == goal.category)

        entradas = saidas = investido = ZERO
        for tipo, categoria, total in self.session.execute(stmt):
            total = to_money(total)
            if tipo == TransactionType.entrada:
                entradas += total
            else:
                saidas += total
                if categoria in INVESTMENT_CATEGORIES:
                    investido += total

        if goal.type == GoalType.economia:
            return entradas - saidas
        if goal.type == GoalType.limite_gasto:
            return saidas
        if goal.type == GoalType.meta_receita:
            return entradas
        return investido

    def sync_progress(
        self, goal_id: int, *, now: Optional[datetime] = None
    ) -> FinancialGoal:
        now = now or local_now()
        goal = self.get(goal_id)
        goal.current_value = self.calculate_progress(goal)

        if goal.auto_complete and goal.status == GoalStatus.ativo:
            # A spending cap is only met once its window has closed.
            window_closed = now.date() > goal.end_date
            if is_goal_successful(goal) and (
                goal.type != GoalType.limite_gasto or window_closed
            ):
                self._complete(goal, now)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_synced: user={self.user_id} goal={goal.id} "
            f"value={goal.current_value} status={goal.status.value}"
        )
        return goal

    def _complete(self, goal: FinancialGoal, now: datetime) -> list[str]:
        user = self._user()
        goal.status = GoalStatus.concluido
        goal.completed_at = now

        xp = XP_GOAL_COMPLETED
        if (goal.end_date - now.date()).days >= EARLY_COMPLETION_DAYS:
            xp += XP_EARLY_COMPLETION
        user.experience += xp
        user.level = level_for_xp(user.experience)[0].level
        user.total_goals_completed += 1
        user.current_streak += 1
        user.longest_streak = max(user.longest_streak, user.current_streak)

        new_badges = self._award_badges(user, now)
        logger.info(
            f"goal_completed: user={self.user_id} goal={goal.id} xp={xp} "
            f"level={user.level} badges={','.join(new_badges) or '-'}"
        )
        return new_badges

    def _award_badges(self, user: User, now: datetime) -> list[str]:
        owned = set(
            self.session.scalars(
                select(UserBadge.badge_code).where(UserBadge.user_id == user.id)
            )
        )
        new_badges = []
        for badge in BADGES:
            value = (
                user.total_goals_completed
                if badge.metric == "goals"
                else user.current_streak
            )
            if value >= badge.threshold and badge.code not in owned:
                self.session.add(
                    UserBadge(user_id=user.id, badge_code=badge.code, unlocked_at=now)
                )
                new_badges.append(badge.code)
        return new_badges

    def gamification(self) -> dict[str, object]:
        user = self._user()
        current, following = level_for_xp(user.experience)
        if following is not None:
            xp_for_next_level = following.min_xp - user.experience
            xp_progress = (
                (user.experience - current.min_xp)
                / (following.min_xp - current.min_xp)
                * 100
            )
        else:
            xp_for_next_level = 0
            xp_progress = 100.0

        unlocked = self.session.scalars(
            select(UserBadge)
            .where(UserBadge.user_id == user.id)
            .order_by(UserBadge.unlocked_at.desc(), UserBadge.id.desc())
        )
        badges = []
        for row in unlocked:
            badge = _BADGES_BY_CODE.get(row.badge_code)
            if badge is None:
                continue
            info = asdict(badge)
            del info["metric"], info["threshold"]
            info["unlocked_at"] = row.unlocked_at
            badges.append(info)

        return {
            "level": user.level,
            "level_name": current.name,
            "experience": user.experience,
            "xp_for_next_level": xp_for_next_level,
            "xp_progress": round(xp_progress),
            "total_goals_completed": user.total_goals_completed,
            "current_streak": user.current_streak,
            "longest_streak": user.longest_streak,
            "badges": badges,
        }

    def reset_level(self) -> User:
        """Back to level 1 with no XP; goals, streaks and badges stay."""
        user = self._user()
        user.experience = 0
        user.level = 1
        self.session.commit()
        logger.info(f"level_reset: user={self.user_id}")
        return user
