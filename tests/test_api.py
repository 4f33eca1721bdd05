from datetime import date, datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from database import Base
from models import Report, ReportStatus, ReportType, SubscriptionTier, User


@pytest.fixture
def client_and_session(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    monkeypatch.setattr(
        main, "get_settings", lambda: SimpleNamespace(internal_api_key="secret")
    )

    session = TestingSession()
    user = User(
        email="ana@example.com",
        subscription=SubscriptionTier.pro,
        report=ReportType.simple,
    )
    session.add(user)
    session.commit()

    yield TestClient(main.app), session, user
    session.close()
    main.app.dependency_overrides.clear()


def _headers(user: User) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


def test_user_header_is_required(client_and_session):
    client, _, _ = client_and_session
    assert client.get("/api/finance/kpis").status_code == 401


def test_create_and_list_records(client_and_session):
    client, _, user = client_and_session
    response = client.post(
        "/api/finance/records",
        json={
            "valor": "89.90",
            "tipo": "saida",
            "categoria": "Ferramentas",
            "data_comprovante": "2025-01-10",
            "recurrence_interval": "mensal",
            "recurrence_duration": "3_meses",
        },
        headers=_headers(user),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["total_created"] == 4
    assert body["recurrence_group_id"]

    listed = client.get("/api/finance/records", headers=_headers(user)).json()
    assert len(listed["records"]) == 4
    assert listed["records"][0]["data_comprovante"] == "2025-04-10"
    assert listed["records"][0]["valor"] == 89.9

    record_id = listed["records"][2]["id"]
    deleted = client.delete(
        f"/api/finance/records/{record_id}",
        params={"scope": "future"},
        headers=_headers(user),
    )
    assert deleted.json() == {"deleted": 3}


def test_invalid_payload_and_filters(client_and_session):
    client, _, user = client_and_session
    response = client.post(
        "/api/finance/records",
        json={
            "valor": "10.00",
            "tipo": "saida",
            "categoria": "Outros",
            "data_comprovante": "2025-01-10",
            "recurrence_interval": "mensal",
        },
        headers=_headers(user),
    )
    assert response.status_code == 422

    response = client.get(
        "/api/finance/kpis",
        params={"start_date": "2025-03-10", "end_date": "2025-03-01"},
        headers=_headers(user),
    )
    assert response.status_code == 400


def test_balance_adjustment_limit(client_and_session):
    client, _, user = client_and_session
    client.post(
        "/api/finance/records",
        json={
            "valor": "1000.00",
            "tipo": "entrada",
            "categoria": "Site",
            "data_comprovante": "2025-01-10",
        },
        headers=_headers(user),
    )

    first = client.post(
        "/api/finance/balance-adjustment",
        json={"target_balance": 1500},
        headers=_headers(user),
    )
    assert first.status_code == 201
    assert first.json()["adjustment"]["difference"] == 500.0
    assert first.json()["record"]["categoria"] == "Ajuste de Saldo"

    same = client.post(
        "/api/finance/balance-adjustment",
        json={"target_balance": 1500},
        headers=_headers(user),
    )
    assert same.status_code == 400

    for target in (1600, 1700):
        client.post(
            "/api/finance/balance-adjustment",
            json={"target_balance": target},
            headers=_headers(user),
        )
    blocked = client.post(
        "/api/finance/balance-adjustment",
        json={"target_balance": 1800},
        headers=_headers(user),
    )
    assert blocked.status_code == 403
    detail = blocked.json()["detail"]
    assert detail["code"] == "LIMITE_AJUSTE_ATINGIDO"
    assert detail["limit"] == 3
    assert detail["current"] == 3


def test_kpis_and_categories(client_and_session):
    client, _, user = client_and_session
    kpis = client.get("/api/finance/kpis", headers=_headers(user)).json()
    assert kpis["margem_liquida"] == 0
    assert kpis["total_transacoes"] == 0

    created = client.post(
        "/api/finance/categories",
        json={"name": "Pets", "tipo": "saida"},
        headers=_headers(user),
    )
    assert created.status_code == 201
    duplicate = client.post(
        "/api/finance/categories",
        json={"name": "PETS", "tipo": "saida"},
        headers=_headers(user),
    )
    assert duplicate.status_code == 400

    missing = client.delete("/api/finance/categories/999", headers=_headers(user))
    assert missing.status_code == 404

    catalog = client.get("/api/finance/categories", headers=_headers(user)).json()
    assert catalog["custom"][0]["name"] == "Pets"


def test_report_generation_without_data(client_and_session):
    client, session, user = client_and_session
    response = client.post("/api/reports/generate", json={}, headers=_headers(user))
    assert response.status_code == 400
    assert response.json()["detail"]["insufficient_data"] is True

    status = client.get("/api/reports/status", headers=_headers(user)).json()
    assert status["can_generate"] is False
    assert status["remaining_reports"] == 3
    assert status["last_report"]["status"] == "insufficient_data"

    history = client.get(
        "/api/reports/history", params={"limit": 0}, headers=_headers(user)
    )
    assert history.status_code == 422


def test_internal_routes_require_key(client_and_session):
    client, session, user = client_and_session
    report = Report(
        user_id=user.id,
        status=ReportStatus.generating,
        type=ReportType.simple,
        requested_at=datetime(2025, 3, 20, 12, 0),
    )
    session.add(report)
    session.commit()

    body = {"report_id": report.id, "status": "sent", "content": "ok"}
    assert client.post("/api/internal/reports/callback", json=body).status_code == 401

    response = client.post(
        "/api/internal/reports/callback",
        json=body,
        headers={"X-Internal-Key": "secret"},
    )
    assert response.status_code == 200
    assert response.json()["report"]["status"] == "sent"

    summary = client.get(
        "/api/internal/finance/summary",
        params={"user_id": user.id, "start_date": date(2025, 1, 1).isoformat()},
        headers={"X-Internal-Key": "secret"},
    )
    assert summary.status_code == 200
    assert summary.json()["filters"]["start_date"] == "2025-01-01"


def test_internal_key_not_configured(client_and_session, monkeypatch):
    client, _, _ = client_and_session
    monkeypatch.setattr(
        main, "get_settings", lambda: SimpleNamespace(internal_api_key=None)
    )
    response = client.post(
        "/api/internal/reports/callback",
        json={"report_id": 1, "status": "failed"},
        headers={"X-Internal-Key": "anything"},
    )
    assert response.status_code == 500


def test_editing_adjustment_through_api_keeps_classification(client_and_session):
    client, _, user = client_and_session
    created = client.post(
        "/api/finance/balance-adjustment",
        json={"target_balance": "150.00"},
        headers=_headers(user),
    )
    assert created.status_code == 201
    record = created.json()["record"]

    response = client.put(
        f"/api/finance/records/{record['id']}",
        json={
            "valor": "120.00",
            "tipo": "entrada",
            "categoria": record["categoria"],
            "data_comprovante": record["data_comprovante"],
        },
        headers=_headers(user),
    )
    assert response.status_code == 200
    assert response.json()["classificacao"] == "ajuste_saldo"


def test_alert_routes(client_and_session):
    client, _, user = client_and_session
    internal = {"X-Internal-Key": "secret"}
    for aviso, prioridade in (("baixa", "baixa"), ("alta", "alta"), ("media", "media")):
        response = client.post(
            "/api/internal/alerts",
            json={"user_id": user.id, "aviso": aviso, "prioridade": prioridade},
            headers=internal,
        )
        assert response.status_code == 201

    alerts = client.get("/api/finance/alerts", headers=_headers(user)).json()["alerts"]
    assert [a["prioridade"] for a in alerts] == ["alta", "media", "baixa"]

    resolved = client.patch(
        f"/api/finance/alerts/{alerts[0]['id']}",
        json={"status": "concluido"},
        headers=_headers(user),
    )
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "concluido"

    page = client.get("/api/finance/alerts/page", headers=_headers(user)).json()
    assert page["stats"]["total_alerts"] == 2
    assert page["stats"]["priority_counts"]["alta"] == 0

    summary = client.get("/api/finance/summary", headers=_headers(user)).json()
    assert [a["aviso"] for a in summary["alerts"]] == ["media", "baixa"]

    missing = client.patch(
        "/api/finance/alerts/999", json={"status": "ignorado"}, headers=_headers(user)
    )
    assert missing.status_code == 404


def test_internal_alert_requires_key(client_and_session):
    client, _, user = client_and_session
    response = client.post(
        "/api/internal/alerts",
        json={"user_id": user.id, "aviso": "x", "prioridade": "alta"},
    )
    assert response.status_code == 401


def test_goal_routes(client_and_session):
    client, _, user = client_and_session
    payload = {
        "title": "Economizar",
        "type": "economia",
        "target_value": "100.00",
        "start_date": "2025-01-01",
        "end_date": "2025-01-31",
    }
    created = client.post("/api/goals", json=payload, headers=_headers(user))
    assert created.status_code == 201
    goal = created.json()["goal"]
    assert goal["progress"] == 0
    assert goal["status"] == "ativo"

    client.post(
        "/api/finance/records",
        json={
            "valor": "250.00",
            "tipo": "entrada",
            "categoria": "Site",
            "data_comprovante": "2025-01-10",
        },
        headers=_headers(user),
    )
    detail = client.get(f"/api/goals/{goal['id']}", headers=_headers(user)).json()
    assert detail["calculated_progress"] == 250.0

    synced = client.post(f"/api/goals/{goal['id']}/sync", headers=_headers(user))
    assert synced.status_code == 200
    assert synced.json()["goal"]["status"] == "concluido"
    assert synced.json()["goal"]["progress"] == 100.0

    stats = client.get("/api/goals/stats", headers=_headers(user)).json()
    assert stats["completed"] == 1
    assert stats["success_rate"] == 100

    gamification = client.get(
        "/api/goals/user/gamification", headers=_headers(user)
    ).json()
    assert gamification["experience"] == 50
    assert gamification["badges"][0]["code"] == "first_goal"

    reset = client.post("/api/goals/user/reset-level", headers=_headers(user))
    assert reset.json() == {"success": True, "level": 1, "experience": 0}

    listed = client.get(
        "/api/goals", params={"status": "concluido"}, headers=_headers(user)
    ).json()
    assert [g["id"] for g in listed["goals"]] == [goal["id"]]

    assert client.get("/api/goals/alerts", headers=_headers(user)).json() == {
        "alerts": []
    }
    deleted = client.delete(f"/api/goals/{goal['id']}", headers=_headers(user))
    assert deleted.status_code == 200
    assert client.get(f"/api/goals/{goal['id']}", headers=_headers(user)).status_code == 404


def test_goal_limit_is_forbidden(client_and_session):
    client, session, user = client_and_session
    user.subscription = SubscriptionTier.free
    session.commit()
    payload = {
        "title": "Meta",
        "type": "meta_receita",
        "target_value": "10.00",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
    }
    for _ in range(2):
        assert client.post("/api/goals", json=payload, headers=_headers(user)).status_code == 201

    response = client.post("/api/goals", json=payload, headers=_headers(user))
    assert response.status_code == 403
    assert response.json()["detail"]["limit"] == 2

    bad_dates = dict(payload, end_date="2024-12-31")
    user.subscription = SubscriptionTier.pro
    session.commit()
    assert client.post("/api/goals", json=bad_dates, headers=_headers(user)).status_code == 400
