from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import services
from database import Base
from models import (
    FinanceRecord,
    Report,
    ReportStatus,
    ReportType,
    SubscriptionTier,
    TransactionType,
    User,
)
from periods import FinanceFilters
from report_webhook import ReportDispatchError, ReportWebhookPayload
from services import ReportService


NOW = datetime(2025, 3, 20, 12, 0)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _user(
    session,
    subscription: SubscriptionTier = SubscriptionTier.pro,
    report: ReportType = ReportType.simple,
) -> User:
    user = User(
        email="ana@example.com",
        display_name="Ana",
        subscription=subscription,
        report=report,
    )
    session.add(user)
    session.commit()
    return user


def _records(session, user_id: int, count: int, day: date) -> None:
    for i in range(count):
        session.add(
            FinanceRecord(
                user_id=user_id,
                valor=Decimal("100.00"),
                tipo=TransactionType.saida if i % 2 else TransactionType.entrada,
                categoria="Outros",
                data_comprovante=day,
            )
        )
    session.commit()


def _report(session, user_id: int, requested_at: datetime, **kwargs) -> Report:
    values = {"status": ReportStatus.sent, "type": ReportType.simple}
    values.update(kwargs)
    report = Report(user_id=user_id, requested_at=requested_at, **values)
    session.add(report)
    session.commit()
    return report


@pytest.fixture
def dispatched(monkeypatch):
    calls: list[ReportWebhookPayload] = []

    def fake_dispatch(self, payload):
        calls.append(payload)

    monkeypatch.setattr(services.ReportWebhookClient, "dispatch", fake_dispatch)
    return calls


def test_gate_rejects_unknown_user():
    session = make_session()
    eligibility = ReportService(session, 99).can_generate_report(now=NOW)
    assert eligibility.can_generate is False
    assert eligibility.code == "user_not_found"


def test_gate_rejects_free_tier_before_anything_else():
    session = make_session()
    user = _user(session, subscription=SubscriptionTier.free, report=ReportType.none)
    eligibility = ReportService(session, user.id).can_generate_report(now=NOW)
    assert eligibility.code == "not_pro"


def test_gate_requires_report_type():
    session = make_session()
    user = _user(session, report=ReportType.none)
    eligibility = ReportService(session, user.id).can_generate_report(now=NOW)
    assert eligibility.code == "report_type_not_configured"


def test_gate_cooldown_counts_any_report():
    session = make_session()
    user = _user(session)
    _records(session, user.id, 10, date(2025, 3, 1))
    requested = NOW - timedelta(hours=2)
    _report(
        session,
        user.id,
        requested,
        status=ReportStatus.insufficient_data,
        counts_for_limit=False,
    )

    eligibility = ReportService(session, user.id).can_generate_report(now=NOW)

    assert eligibility.code == "cooldown"
    assert eligibility.cooldown_ends_at == requested + timedelta(hours=24)
    assert eligibility.blocks_creation is True


def test_gate_monthly_limit():
    session = make_session()
    user = _user(session)
    _records(session, user.id, 10, date(2025, 3, 1))
    for day in (2, 5, 10):
        _report(session, user.id, datetime(2025, 3, day, 9, 0))

    eligibility = ReportService(session, user.id).can_generate_report(now=NOW)
    assert eligibility.code == "monthly_limit"


def test_gate_ignores_non_counting_and_last_month_reports():
    session = make_session()
    user = _user(session)
    _records(session, user.id, 10, date(2025, 3, 1))
    _report(session, user.id, datetime(2025, 2, 25, 9, 0))
    _report(session, user.id, datetime(2025, 2, 26, 9, 0))
    _report(session, user.id, datetime(2025, 3, 2, 9, 0))
    _report(session, user.id, datetime(2025, 3, 5, 9, 0))
    _report(
        session,
        user.id,
        datetime(2025, 3, 10, 9, 0),
        status=ReportStatus.insufficient_data,
        counts_for_limit=False,
    )

    eligibility = ReportService(session, user.id).can_generate_report(now=NOW)
    assert eligibility.can_generate is True
    assert eligibility.code is None


def test_data_sufficiency_thresholds():
    session = make_session()
    user = _user(session)
    service = ReportService(session, user.id)

    _records(session, user.id, 4, date(2025, 3, 1))
    assert service.check_data_sufficiency(today=NOW.date()) is False

    _records(session, user.id, 1, date(2025, 2, 18))
    assert service.check_data_sufficiency(today=NOW.date()) is True

    other = User(email="old@example.com")
    session.add(other)
    session.commit()
    _records(session, other.id, 9, date(2024, 1, 1))
    assert ReportService(session, other.id).check_data_sufficiency(today=NOW.date()) is False
    _records(session, other.id, 1, date(2024, 1, 1))
    assert ReportService(session, other.id).check_data_sufficiency(today=NOW.date()) is True


def test_insufficient_data_records_row_without_dispatch(dispatched):
    session = make_session()
    user = _user(session)

    result = ReportService(session, user.id).request_report(FinanceFilters(), now=NOW)

    assert result.success is False
    assert result.insufficient_data is True
    assert result.report.status == ReportStatus.insufficient_data
    assert result.report.counts_for_limit is False
    assert result.eligibility.code == "insufficient_data"
    assert dispatched == []

    # The attempt still starts a cooldown.
    again = ReportService(session, user.id).request_report(FinanceFilters(), now=NOW)
    assert again.report is None
    assert again.eligibility.code == "cooldown"


def test_request_report_dispatches_payload(dispatched):
    session = make_session()
    user = _user(session, report=ReportType.advanced)
    _records(session, user.id, 10, date(2025, 3, 1))
    filters = FinanceFilters(start_date=date(2025, 3, 1), end_date=date(2025, 3, 31))

    result = ReportService(session, user.id).request_report(filters, now=NOW)

    assert result.success is True
    assert result.report.status == ReportStatus.generating
    assert result.report.counts_for_limit is True
    assert result.report.requested_at == NOW
    assert result.report.filter_start_date == "2025-03-01"

    assert len(dispatched) == 1
    payload = dispatched[0]
    assert payload.report_id == result.report.id
    assert payload.report_type == "advanced"
    assert payload.user_email == "ana@example.com"
    assert payload.kpis["entradas"] == 500.0
    assert payload.kpis["saidas"] == 500.0
    assert payload.to_json()["summary"]["kpis"]["total_transacoes"] == 10


def test_request_report_blocked_creates_nothing(dispatched):
    session = make_session()
    user = _user(session, subscription=SubscriptionTier.free)

    result = ReportService(session, user.id).request_report(FinanceFilters(), now=NOW)

    assert result.success is False
    assert result.report is None
    assert result.message == "Apenas usuários PRO podem gerar relatórios"
    assert session.query(Report).count() == 0


def test_dispatch_failure_marks_report_failed(monkeypatch):
    session = make_session()
    user = _user(session)
    _records(session, user.id, 10, date(2025, 3, 1))

    def failing_dispatch(self, payload):
        raise ReportDispatchError("webhook down")

    monkeypatch.setattr(services.ReportWebhookClient, "dispatch", failing_dispatch)

    with pytest.raises(ReportDispatchError):
        ReportService(session, user.id).create_report(FinanceFilters(), now=NOW)

    report = session.query(Report).one()
    assert report.status == ReportStatus.failed
    assert report.error_message == "webhook down"


def test_callback_updates_status():
    session = make_session()
    user = _user(session)
    report = _report(session, user.id, NOW, status=ReportStatus.generating)
    service = ReportService(session)
    done_at = NOW + timedelta(minutes=5)

    updated = service.update_report_status(report.id, "sent", content="<html/>", now=done_at)
    assert updated.status == ReportStatus.sent
    assert updated.sent_at == done_at
    assert updated.generated_at == done_at
    assert updated.content == "<html/>"

    failed = service.update_report_status(report.id, ReportStatus.failed, now=done_at)
    assert failed.error_message == "Erro na geração do relatório"

    with pytest.raises(ValueError):
        service.update_report_status(report.id, "generating", now=done_at)
    with pytest.raises(ValueError, match="not found"):
        service.update_report_status(999, "sent", now=done_at)


def test_mark_timeout_reports():
    session = make_session()
    user = _user(session)
    stale_pending = _report(
        session, user.id, NOW - timedelta(minutes=40), status=ReportStatus.pending
    )
    stale_generating = _report(
        session, user.id, NOW - timedelta(minutes=31), status=ReportStatus.generating
    )
    fresh = _report(
        session, user.id, NOW - timedelta(minutes=10), status=ReportStatus.generating
    )
    sent = _report(session, user.id, NOW - timedelta(hours=2), status=ReportStatus.sent)

    assert ReportService(session).mark_timeout_reports(now=NOW) == 2
    assert ReportService(session).mark_timeout_reports(now=NOW) == 0

    session.expire_all()
    assert session.get(Report, stale_pending.id).status == ReportStatus.failed
    assert (
        session.get(Report, stale_generating.id).error_message
        == "Timeout na geração do relatório"
    )
    assert session.get(Report, fresh.id).status == ReportStatus.generating
    assert session.get(Report, sent.id).status == ReportStatus.sent


def test_history_and_status():
    session = make_session()
    user = _user(session)
    _records(session, user.id, 10, date(2025, 3, 1))
    for day in (1, 3, 5):
        _report(session, user.id, datetime(2025, 3, day, 9, 0))
    service = ReportService(session, user.id)

    history = service.get_report_history(limit=2)
    assert [r.requested_at.day for r in history] == [5, 3]
    with pytest.raises(ValueError):
        service.get_report_history(limit=0)
    with pytest.raises(ValueError):
        service.get_report_history(limit=101)

    status = service.get_report_status(now=NOW)
    assert status["can_generate"] is False
    assert status["remaining_reports"] == 0
    assert status["total_reports_this_month"] == 3
    assert status["last_report"].requested_at == datetime(2025, 3, 5, 9, 0)
    assert status["has_insufficient_data"] is False
