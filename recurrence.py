import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Classification,
    FinanceRecord,
    RecurrenceDuration,
    RecurrenceInterval,
    TransactionType,
)
from periods import shift_months


logger = logging.getLogger(__name__)

MIN_FUTURE_ITEMS = 2
BATCH_SIZE = 4

_INTERVAL_MONTHS = {
    RecurrenceInterval.mensal: 1,
    RecurrenceInterval.trimestral: 3,
    RecurrenceInterval.semestral: 6,
    RecurrenceInterval.anual: 12,
}

_DURATION_MONTHS = {
    RecurrenceDuration.tres_meses: 3,
    RecurrenceDuration.seis_meses: 6,
    RecurrenceDuration.doze_meses: 12,
}


class InvalidRecurrence(ValueError):
    pass


class InvalidInterval(InvalidRecurrence):
    pass


class InvalidDuration(InvalidRecurrence):
    pass


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def coerce_interval(value: Union[RecurrenceInterval, str]) -> RecurrenceInterval:
    try:
        return RecurrenceInterval(value)
    except ValueError as exc:
        raise InvalidInterval(f"Invalid recurrence interval: {value!r}") from exc


def coerce_duration(value: Union[RecurrenceDuration, str]) -> RecurrenceDuration:
    try:
        return RecurrenceDuration(value)
    except ValueError as exc:
        raise InvalidDuration(f"Invalid recurrence duration: {value!r}") from exc


def advance_date_by_interval(
    from_date: date, interval: Union[RecurrenceInterval, str]
) -> date:
    interval = coerce_interval(interval)
    if interval == RecurrenceInterval.semanal:
        return from_date + timedelta(weeks=1)
    return shift_months(from_date, _INTERVAL_MONTHS[interval])


def calculate_end_date(
    start_date: date, duration: Union[RecurrenceDuration, str]
) -> Optional[date]:
    """Terminal date of a finite series, ``None`` for an indefinite one."""
    duration = coerce_duration(duration)
    if duration == RecurrenceDuration.indefinido:
        return None
    return shift_months(start_date, _DURATION_MONTHS[duration])


def generate_recurrence_dates(
    start_date: date,
    interval: Union[RecurrenceInterval, str],
    duration: Union[RecurrenceDuration, str],
) -> list[date]:
    """Materialize the occurrence dates of a new series, start date first.

    Finite series run up to and including the end date. Indefinite series
    get the start date plus ``BATCH_SIZE`` occurrences; later batches are
    appended by :meth:`RecurrenceService.ensure_recurrence_buffer`.
    """
    interval = coerce_interval(interval)
    end_date = calculate_end_date(start_date, duration)
    dates = [start_date]

    current = start_date
    if end_date is None:
        for _ in range(BATCH_SIZE):
            current = advance_date_by_interval(current, interval)
            dates.append(current)
        return dates

    while True:
        current = advance_date_by_interval(current, interval)
        if current > end_date:
            break
        dates.append(current)
    return dates


def is_future_date(value: date, today: date) -> bool:
    return value > today


def new_recurrence_group_id() -> str:
    return str(uuid.uuid4())


@dataclass
class RecurrenceBatch:
    records: list[FinanceRecord]
    recurrence_group_id: str

    @property
    def total_created(self) -> int:
        return len(self.records)


class RecurrenceService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create_recurrent_records(
        self,
        *,
        valor: Decimal,
        tipo: TransactionType,
        categoria: str,
        data_comprovante: date,
        recurrence_interval: Union[RecurrenceInterval, str],
        recurrence_duration: Union[RecurrenceDuration, str],
        de: Optional[str] = None,
        para: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RecurrenceBatch:
        today = today or local_today()
        valor = Decimal(valor)
        if valor <= 0:
            raise ValueError("Valor deve ser positivo")
        interval = coerce_interval(recurrence_interval)
        duration = coerce_duration(recurrence_duration)
        is_infinite = duration == RecurrenceDuration.indefinido
        group_id = new_recurrence_group_id()

        records = [
            FinanceRecord(
                user_id=self.user_id,
                valor=valor,
                tipo=tipo,
                categoria=categoria,
                de=de or None,
                para=para or None,
                classificacao=Classification.recorrente,
                data_comprovante=occurrence,
                is_future=is_future_date(occurrence, today),
                recurrence_group_id=group_id,
                recurrence_interval=interval,
                is_infinite=is_infinite,
            )
            for occurrence in generate_recurrence_dates(
                data_comprovante, interval, duration
            )
        ]
        self.session.add_all(records)
        self.session.commit()
        logger.info(
            f"recurrence_created: user={self.user_id} group={group_id} "
            f"interval={interval.value} duration={duration.value} count={len(records)}"
        )
        return RecurrenceBatch(records=records, recurrence_group_id=group_id)

    def ensure_recurrence_buffer(self, *, today: Optional[date] = None) -> int:
        """Top up open-ended series that are running out of future occurrences.

        Returns the number of records created.
        """
        has_infinite = self.session.scalar(
            select(FinanceRecord.id)
            .where(
                FinanceRecord.user_id == self.user_id,
                FinanceRecord.is_infinite.is_(True),
            )
            .limit(1)
        )
        if has_infinite is None:
            return 0

        today = today or local_today()
        groups = self.session.execute(
            select(
                FinanceRecord.recurrence_group_id,
                func.count(FinanceRecord.id).label("total"),
            )
            .where(
                FinanceRecord.user_id == self.user_id,
                FinanceRecord.is_infinite.is_(True),
                FinanceRecord.recurrence_group_id.isnot(None),
            )
            .group_by(FinanceRecord.recurrence_group_id)
        ).all()

        created = 0
        for row in groups:
            future_count = int(
                self.session.execute(
                    select(func.count(FinanceRecord.id)).where(
                        FinanceRecord.user_id == self.user_id,
                        FinanceRecord.recurrence_group_id == row.recurrence_group_id,
                        FinanceRecord.data_comprovante > today,
                    )
                ).scalar_one()
            )
            if future_count < MIN_FUTURE_ITEMS:
                created += self._generate_more_recurrences(
                    row.recurrence_group_id, today
                )

        if created:
            self.session.commit()
        return created

    def _generate_more_recurrences(self, group_id: str, today: date) -> int:
        last = self.session.scalar(
            select(FinanceRecord)
            .where(
                FinanceRecord.user_id == self.user_id,
                FinanceRecord.recurrence_group_id == group_id,
            )
            .order_by(FinanceRecord.data_comprovante.desc(), FinanceRecord.id.desc())
            .limit(1)
        )
        if last is None or last.recurrence_interval is None:
            return 0

        new_records: list[FinanceRecord] = []
        current = last.data_comprovante
        for _ in range(BATCH_SIZE):
            current = advance_date_by_interval(current, last.recurrence_interval)
            new_records.append(
                FinanceRecord(
                    user_id=last.user_id,
                    valor=last.valor,
                    tipo=last.tipo,
                    categoria=last.categoria,
                    de=last.de,
                    para=last.para,
                    classificacao=last.classificacao,
                    data_comprovante=current,
                    is_future=is_future_date(current, today),
                    recurrence_group_id=group_id,
                    recurrence_interval=last.recurrence_interval,
                    is_infinite=True,
                )
            )
        self.session.add_all(new_records)
        self.session.flush()
        logger.info(
            f"recurrence_buffer_extended: user={self.user_id} group={group_id} "
            f"created={len(new_records)} through={current.isoformat()}"
        )
        return len(new_records)

    def sync_is_future_flags(self, *, today: Optional[date] = None) -> int:
        """Reconcile ``is_future`` with ``data_comprovante > today``.

        Idempotent; returns the number of rows flipped.
        """
        today = today or local_today()
        became_future = self.session.execute(
            update(FinanceRecord)
            .where(
                FinanceRecord.user_id == self.user_id,
                FinanceRecord.data_comprovante > today,
                FinanceRecord.is_future.is_(False),
            )
            .values(is_future=True)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        became_past = self.session.execute(
            update(FinanceRecord)
            .where(
                FinanceRecord.user_id == self.user_id,
                FinanceRecord.data_comprovante <= today,
                FinanceRecord.is_future.is_(True),
            )
            .values(is_future=False)
            .execution_options(synchronize_session="fetch")
        ).rowcount
        self.session.commit()

        total = int(became_future or 0) + int(became_past or 0)
        if total:
            logger.info(
                f"is_future_synced: user={self.user_id} to_future={became_future} "
                f"to_past={became_past}"
            )
        return total


def sync_all_users(session: Session, today: Optional[date] = None) -> int:
    today = today or local_today()
    user_ids = session.scalars(select(FinanceRecord.user_id).distinct()).all()
    total = 0
    for user_id in user_ids:
        total += RecurrenceService(session, user_id).sync_is_future_flags(today=today)
    return total
