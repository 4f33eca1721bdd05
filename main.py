import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from models import GoalPeriod, GoalStatus, TransactionType
from periods import FinanceFilters, parse_filters
from recurrence import local_today
from report_webhook import ReportDispatchError
from scheduler import SchedulerManager
from schemas import (
    AlertIn,
    AlertOut,
    AlertStatusIn,
    BalanceAdjustmentIn,
    CategoryIn,
    FinanceRecordIn,
    FinanceRecordOut,
    FinanceRecordUpdate,
    GoalIn,
    GoalOut,
    GoalUpdate,
    ReportCallbackIn,
    ReportOut,
    ReportRequestIn,
)
from services import (
    AdjustmentLimitReached,
    AlertService,
    CategoryService,
    FinanceRecordService,
    FinanceService,
    GoalLimitReached,
    GoalService,
    ReportService,
    goal_progress_percent,
    is_goal_at_risk,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="FinControl")


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user context")
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid user context") from exc


def require_internal_key(x_internal_key: Optional[str] = Header(default=None)) -> None:
    expected = get_settings().internal_api_key
    if not expected:
        logger.error("internal_key_missing: FINCONTROL_INTERNAL_API_KEY is not set")
        raise HTTPException(status_code=500, detail="Internal API key not configured")
    if x_internal_key != expected:
        raise HTTPException(status_code=401, detail="Invalid internal key")


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, AdjustmentLimitReached):
        return HTTPException(
            status_code=403,
            detail={
                "error": str(exc),
                "code": exc.code,
                "limit": exc.limit,
                "current": exc.current,
            },
        )
    if isinstance(exc, GoalLimitReached):
        return HTTPException(
            status_code=403,
            detail={"error": str(exc), "limit": exc.limit, "current": exc.current},
        )
    if "not found" in str(exc).lower():
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def filters_from_request(request: Request) -> FinanceFilters:
    params = request.query_params
    try:
        return parse_filters(
            params.get("start_date"),
            params.get("end_date"),
            params.get("tipo"),
            params.get("categoria"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def record_out(record) -> FinanceRecordOut:
    return FinanceRecordOut.model_validate(record)


def alert_out(alert) -> AlertOut:
    return AlertOut.model_validate(alert)


def goal_out(goal) -> dict:
    data = GoalOut.model_validate(goal).model_dump()
    data["progress"] = goal_progress_percent(goal)
    data["at_risk"] = is_goal_at_risk(goal, local_today())
    return data


@app.get("/api/finance/records")
def list_records(
    request: Request,
    include_future: bool = True,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    records = FinanceRecordService(db, user_id).list_records(
        filters, include_future=include_future
    )
    return {"records": [record_out(r) for r in records]}


@app.post("/api/finance/records", status_code=201)
def create_record(
    payload: FinanceRecordIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        records = FinanceRecordService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "records": [record_out(r) for r in records],
        "total_created": len(records),
        "recurrence_group_id": records[0].recurrence_group_id,
    }


@app.put("/api/finance/records/{record_id}")
def update_record(
    record_id: int,
    payload: FinanceRecordUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        record = FinanceRecordService(db, user_id).update(record_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return record_out(record)


@app.delete("/api/finance/records/{record_id}")
def delete_record(
    record_id: int,
    scope: str = "single",
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        deleted = FinanceRecordService(db, user_id).delete(record_id, scope)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": deleted}


@app.post("/api/finance/balance-adjustment", status_code=201)
def adjust_balance(
    payload: BalanceAdjustmentIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        result = FinanceService(db, user_id).adjust_balance(payload.target_balance)
    except ValueError as exc:
        raise http_error(exc) from exc
    result["record"] = record_out(result["record"])
    return result


@app.get("/api/finance/kpis")
def api_kpis(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    return FinanceService(db, user_id).get_kpis(filters).as_dict()


@app.get("/api/finance/summary")
def api_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    summary = FinanceService(db, user_id).get_summary(filters)
    return {
        "kpis": summary["kpis"].as_dict(),
        "records": [record_out(r) for r in summary["records"]],
        "distribution": summary["distribution"],
        "alerts": [alert_out(a) for a in summary["alerts"]],
    }


@app.get("/api/finance/distribution")
def api_distribution(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    return FinanceService(db, user_id).get_expense_distribution(filters)


@app.get("/api/finance/health")
def api_health(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return FinanceService(db, user_id).get_health_metrics()


@app.get("/api/finance/seasonality")
def api_seasonality(
    tipo: TransactionType = TransactionType.saida,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return FinanceService(db, user_id).get_seasonality(tipo)


@app.get("/api/finance/clients")
def api_clients(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return {"clients": FinanceRecordService(db, user_id).clients()}


@app.get("/api/finance/alerts")
def list_alerts(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    alerts = FinanceService(db, user_id).get_alerts()
    return {"alerts": [alert_out(a) for a in alerts]}


@app.get("/api/finance/alerts/page")
def alerts_page(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    page = AlertService(db, user_id).get_alerts_page()
    return {"alerts": [alert_out(a) for a in page["alerts"]], "stats": page["stats"]}


@app.patch("/api/finance/alerts/{alert_id}")
def update_alert(
    alert_id: int,
    payload: AlertStatusIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        alert = AlertService(db, user_id).update_status(alert_id, payload.status)
    except ValueError as exc:
        raise http_error(exc) from exc
    return alert_out(alert)


@app.get("/api/goals")
def list_goals(
    status: Optional[GoalStatus] = None,
    period: Optional[GoalPeriod] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    goals = GoalService(db, user_id).list_goals(status=status, period=period)
    return {"goals": [goal_out(g) for g in goals]}


@app.post("/api/goals", status_code=201)
def create_goal(
    payload: GoalIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        goal = GoalService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Meta criada com sucesso", "goal": goal_out(goal)}


@app.get("/api/goals/stats")
def goal_stats(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return GoalService(db, user_id).stats()


@app.get("/api/goals/alerts")
def goal_alerts(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    alerts = AlertService(db, user_id).get_goal_alerts()
    return {"alerts": [alert_out(a) for a in alerts]}


@app.get("/api/goals/user/gamification")
def gamification(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    try:
        return GoalService(db, user_id).gamification()
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/goals/user/reset-level")
def reset_level(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    try:
        user = GoalService(db, user_id).reset_level()
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"success": True, "level": user.level, "experience": user.experience}


@app.get("/api/goals/{goal_id}")
def get_goal(
    goal_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = GoalService(db, user_id)
    try:
        goal = service.get(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    data = goal_out(goal)
    data["calculated_progress"] = float(service.calculate_progress(goal))
    return data


@app.put("/api/goals/{goal_id}")
def update_goal(
    goal_id: int,
    payload: GoalUpdate,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        goal = GoalService(db, user_id).update(goal_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Meta atualizada com sucesso", "goal": goal_out(goal)}


@app.delete("/api/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        GoalService(db, user_id).delete(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Meta excluída com sucesso"}


@app.post("/api/goals/{goal_id}/sync")
def sync_goal(
    goal_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        goal = GoalService(db, user_id).sync_progress(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Progresso sincronizado com sucesso", "goal": goal_out(goal)}


@app.get("/api/finance/categories")
def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    catalog = CategoryService(db, user_id).catalog()
    return {
        "categories": catalog["categories"],
        "custom": [
            {"id": c.id, "name": c.name, "tipo": c.tipo.value}
            for c in catalog["custom"]
        ],
    }


@app.post("/api/finance/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": category.id, "name": category.name, "tipo": category.tipo.value}


@app.put("/api/finance/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).update(category_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": category.id, "name": category.name, "tipo": category.tipo.value}


@app.delete("/api/finance/categories/{category_id}")
def delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"success": True}


@app.post("/api/reports/generate")
def generate_report(
    payload: ReportRequestIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = FinanceFilters(
        start_date=payload.filter_start_date, end_date=payload.filter_end_date
    )
    try:
        result = ReportService(db, user_id).request_report(filters)
    except ReportDispatchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        raise http_error(exc) from exc

    if result.eligibility is not None and result.eligibility.blocks_creation:
        raise HTTPException(
            status_code=403,
            detail={
                "error": result.message,
                "code": result.eligibility.code,
                "cooldown_ends_at": result.eligibility.cooldown_ends_at,
            },
        )
    if result.insufficient_data:
        raise HTTPException(
            status_code=400,
            detail={
                "error": result.message,
                "insufficient_data": True,
                "report_id": result.report.id,
            },
        )
    return {
        "success": True,
        "message": result.message,
        "report": ReportOut.model_validate(result.report),
    }


@app.get("/api/reports/status")
def report_status(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    status = ReportService(db, user_id).get_report_status()
    last_report = status["last_report"]
    status["last_report"] = ReportOut.model_validate(last_report) if last_report else None
    return status


@app.get("/api/reports/history")
def report_history(
    limit: int = Query(default=10, ge=1, le=100),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    reports = ReportService(db, user_id).get_report_history(limit)
    return {"reports": [ReportOut.model_validate(r) for r in reports]}


@app.post("/api/internal/reports/callback", dependencies=[Depends(require_internal_key)])
def report_callback(payload: ReportCallbackIn, db: Session = Depends(get_db)):
    try:
        report = ReportService(db).update_report_status(
            payload.report_id,
            payload.status,
            content=payload.content,
            error_message=payload.error_message,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    logger.info(f"report_callback: report={report.id} status={report.status.value}")
    return {"success": True, "report": ReportOut.model_validate(report)}


@app.get("/api/internal/finance/summary", dependencies=[Depends(require_internal_key)])
def internal_finance_summary(
    request: Request,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    service = FinanceService(db, user_id)
    return {
        "user_id": user_id,
        "filters": filters.as_strings(),
        "kpis": service.get_kpis(filters).as_dict(),
        "distribution": service.get_expense_distribution(filters, prepare=False),
    }


@app.post(
    "/api/internal/alerts",
    status_code=201,
    dependencies=[Depends(require_internal_key)],
)
def internal_create_alert(payload: AlertIn, db: Session = Depends(get_db)):
    try:
        alert = AlertService(db, payload.user_id).create_alert(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"success": True, "alert": alert_out(alert)}
