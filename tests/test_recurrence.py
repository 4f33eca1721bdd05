from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    Classification,
    FinanceRecord,
    RecurrenceDuration,
    RecurrenceInterval,
    TransactionType,
    User,
)
from recurrence import (
    BATCH_SIZE,
    InvalidDuration,
    InvalidInterval,
    RecurrenceService,
    advance_date_by_interval,
    calculate_end_date,
    generate_recurrence_dates,
    sync_all_users,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _user(session, email: str = "ana@example.com") -> User:
    user = User(email=email)
    session.add(user)
    session.commit()
    return user


def _count(session, user_id: int) -> int:
    return session.scalar(
        select(func.count(FinanceRecord.id)).where(FinanceRecord.user_id == user_id)
    )


def test_advance_monthly_snaps_to_end_of_month():
    assert advance_date_by_interval(date(2024, 1, 31), "mensal") == date(2024, 2, 29)
    assert advance_date_by_interval(date(2025, 1, 31), "mensal") == date(2025, 2, 28)
    # Chained advancing keeps the clamped day.
    assert advance_date_by_interval(date(2024, 2, 29), "mensal") == date(2024, 3, 29)


def test_advance_other_intervals():
    assert advance_date_by_interval(date(2025, 1, 1), "semanal") == date(2025, 1, 8)
    assert advance_date_by_interval(date(2025, 12, 29), "semanal") == date(2026, 1, 5)
    assert advance_date_by_interval(date(2025, 11, 30), "trimestral") == date(2026, 2, 28)
    assert advance_date_by_interval(date(2025, 8, 31), "semestral") == date(2026, 2, 28)
    assert advance_date_by_interval(date(2024, 2, 29), "anual") == date(2025, 2, 28)


def test_invalid_interval_and_duration_are_rejected():
    with pytest.raises(InvalidInterval):
        advance_date_by_interval(date(2025, 1, 1), "diario")
    with pytest.raises(InvalidDuration):
        calculate_end_date(date(2025, 1, 1), "2_meses")
    with pytest.raises(InvalidInterval):
        generate_recurrence_dates(date(2025, 1, 1), "quinzenal", "3_meses")


def test_calculate_end_date():
    assert calculate_end_date(date(2025, 1, 15), "3_meses") == date(2025, 4, 15)
    assert calculate_end_date(date(2025, 8, 31), "6_meses") == date(2026, 2, 28)
    assert calculate_end_date(date(2025, 1, 15), "12_meses") == date(2026, 1, 15)
    assert calculate_end_date(date(2025, 1, 15), "indefinido") is None


def test_generate_monthly_three_months():
    dates = generate_recurrence_dates(date(2025, 1, 15), "mensal", "3_meses")
    assert dates == [
        date(2025, 1, 15),
        date(2025, 2, 15),
        date(2025, 3, 15),
        date(2025, 4, 15),
    ]


def test_finite_series_stay_within_end_date():
    finite = [d for d in RecurrenceDuration if d != RecurrenceDuration.indefinido]
    for start in (date(2025, 1, 15), date(2024, 1, 31), date(2025, 11, 30)):
        for interval in RecurrenceInterval:
            for duration in finite:
                dates = generate_recurrence_dates(start, interval, duration)
                assert dates[0] == start
                assert dates[-1] <= calculate_end_date(start, duration)
                assert dates == sorted(dates)


def test_indefinite_series_has_fixed_first_batch():
    for interval in RecurrenceInterval:
        dates = generate_recurrence_dates(date(2025, 1, 31), interval, "indefinido")
        assert len(dates) == BATCH_SIZE + 1
        assert dates[0] == date(2025, 1, 31)


def test_yearly_series_shorter_than_interval_only_has_start():
    assert generate_recurrence_dates(date(2025, 1, 15), "anual", "6_meses") == [
        date(2025, 1, 15)
    ]


def test_create_recurrent_records_shares_group():
    session = make_session()
    user = _user(session)

    batch = RecurrenceService(session, user.id).create_recurrent_records(
        valor=Decimal("1200.00"),
        tipo=TransactionType.saida,
        categoria="Aluguel",
        data_comprovante=date(2025, 1, 15),
        recurrence_interval="mensal",
        recurrence_duration="3_meses",
        today=date(2025, 2, 1),
    )

    assert batch.total_created == 4
    assert {r.recurrence_group_id for r in batch.records} == {batch.recurrence_group_id}
    assert len(batch.recurrence_group_id) == 36
    assert all(not r.is_infinite for r in batch.records)
    assert all(r.classificacao == Classification.recorrente for r in batch.records)
    assert [r.is_future for r in batch.records] == [False, True, True, True]
    assert _count(session, user.id) == 4


@pytest.mark.parametrize("valor", [Decimal("0"), Decimal("-5.00")])
def test_create_recurrent_records_rejects_non_positive_valor(valor):
    session = make_session()
    user = _user(session)

    with pytest.raises(ValueError, match="positivo"):
        RecurrenceService(session, user.id).create_recurrent_records(
            valor=valor,
            tipo=TransactionType.saida,
            categoria="Aluguel",
            data_comprovante=date(2025, 1, 15),
            recurrence_interval="mensal",
            recurrence_duration="3_meses",
            today=date(2025, 2, 1),
        )

    assert _count(session, user.id) == 0


def _infinite_series(session, user_id: int) -> str:
    batch = RecurrenceService(session, user_id).create_recurrent_records(
        valor=Decimal("49.90"),
        tipo=TransactionType.saida,
        categoria="Ferramentas",
        data_comprovante=date(2025, 1, 10),
        recurrence_interval=RecurrenceInterval.mensal,
        recurrence_duration=RecurrenceDuration.indefinido,
        today=date(2025, 1, 10),
    )
    return batch.recurrence_group_id


def test_buffer_noop_without_infinite_series():
    session = make_session()
    user = _user(session)
    RecurrenceService(session, user.id).create_recurrent_records(
        valor=Decimal("10.00"),
        tipo=TransactionType.saida,
        categoria="Outros",
        data_comprovante=date(2025, 1, 10),
        recurrence_interval="mensal",
        recurrence_duration="3_meses",
        today=date(2025, 1, 10),
    )

    created = RecurrenceService(session, user.id).ensure_recurrence_buffer(
        today=date(2026, 1, 1)
    )
    assert created == 0
    assert _count(session, user.id) == 4


def test_buffer_noop_when_enough_future_items():
    session = make_session()
    user = _user(session)
    _infinite_series(session, user.id)
    service = RecurrenceService(session, user.id)

    # Apr 10 and May 10 are still ahead.
    assert service.ensure_recurrence_buffer(today=date(2025, 3, 20)) == 0
    assert service.ensure_recurrence_buffer(today=date(2025, 1, 20)) == 0
    assert _count(session, user.id) == 5


def test_buffer_extends_from_last_occurrence():
    session = make_session()
    user = _user(session)
    group_id = _infinite_series(session, user.id)

    created = RecurrenceService(session, user.id).ensure_recurrence_buffer(
        today=date(2025, 4, 15)
    )

    assert created == BATCH_SIZE
    records = session.scalars(
        select(FinanceRecord)
        .where(FinanceRecord.recurrence_group_id == group_id)
        .order_by(FinanceRecord.data_comprovante)
    ).all()
    assert len(records) == 9
    new = records[5:]
    assert [r.data_comprovante for r in new] == [
        date(2025, 6, 10),
        date(2025, 7, 10),
        date(2025, 8, 10),
        date(2025, 9, 10),
    ]
    assert all(r.is_infinite and r.is_future for r in new)
    assert all(r.valor == Decimal("49.90") for r in new)

    # Topped up, so a second pass on the same day writes nothing.
    again = RecurrenceService(session, user.id).ensure_recurrence_buffer(
        today=date(2025, 4, 15)
    )
    assert again == 0


def _raw(session, user_id: int, day: date, is_future: bool) -> FinanceRecord:
    record = FinanceRecord(
        user_id=user_id,
        valor=Decimal("10.00"),
        tipo=TransactionType.saida,
        categoria="Outros",
        data_comprovante=day,
        is_future=is_future,
    )
    session.add(record)
    return record


def test_sync_is_future_flags_is_idempotent():
    session = make_session()
    user = _user(session)
    today = date(2025, 3, 10)
    _raw(session, user.id, date(2025, 3, 1), True)
    _raw(session, user.id, date(2025, 4, 1), False)
    _raw(session, user.id, date(2025, 2, 1), False)
    _raw(session, user.id, today, True)
    session.commit()

    service = RecurrenceService(session, user.id)
    assert service.sync_is_future_flags(today=today) == 3
    assert service.sync_is_future_flags(today=today) == 0

    session.expire_all()
    for record in session.scalars(select(FinanceRecord)).all():
        assert record.is_future == (record.data_comprovante > today)


def test_sync_all_users_touches_every_user():
    session = make_session()
    first = _user(session, "a@example.com")
    second = _user(session, "b@example.com")
    _raw(session, first.id, date(2025, 3, 1), True)
    _raw(session, second.id, date(2025, 5, 1), False)
    session.commit()

    assert sync_all_users(session, today=date(2025, 3, 10)) == 2
    assert sync_all_users(session, today=date(2025, 3, 10)) == 0
