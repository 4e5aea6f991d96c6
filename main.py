import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import Database
from errors import InvalidParameters, StoreFailure, UserNotFound, ValidationReason
from schemas import CostOut, DeveloperOut, ReconcileOut, ReportOut, UserOut
from services import CostService, LedgerService, ReportService, UserRegistry
from validation import (
    coerce_int,
    is_valid_user_id,
    parse_cost_payload,
    parse_report_query,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cost Manager")
database = Database(settings.database_url)


def get_db():
    db = database.session()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    database.open()
    logger.info(f"database_opened: url={database.url}")


@app.on_event("shutdown")
def shutdown_event():
    database.close()
    logger.info("database_closed")


@app.exception_handler(InvalidParameters)
async def invalid_parameters_handler(request: Request, exc: InvalidParameters):
    return JSONResponse(status_code=400, content={"error": exc.reason.value})


@app.exception_handler(UserNotFound)
async def user_not_found_handler(request: Request, exc: UserNotFound):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(StoreFailure)
async def store_failure_handler(request: Request, exc: StoreFailure):
    logger.error(
        f"store_failure: method={request.method} path={request.url.path} error={exc}"
    )
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.get("/", response_class=PlainTextResponse)
def index():
    return "CostServer is live and routing!"


@app.post("/api/add", status_code=201)
async def add_cost(request: Request, db: Session = Depends(get_db)):
    try:
        payload = await request.json()
    except ValueError as exc:
        raise InvalidParameters(ValidationReason.missing_fields) from exc
    if not isinstance(payload, dict):
        raise InvalidParameters(ValidationReason.missing_fields)

    data = parse_cost_payload(payload, timezone=settings.timezone)
    cost = CostService(db).add(data)
    return CostOut.model_validate(cost).model_dump(mode="json")


@app.get("/api/report")
def get_report(request: Request, db: Session = Depends(get_db)):
    userid, year, month = parse_report_query(request.query_params)
    lookup = ReportService(db, settings.timezone).get(userid, year, month)
    return ReportOut.model_validate(lookup.summary.to_payload()).model_dump(
        mode="json"
    )


@app.get("/api/users/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db)):
    parsed = coerce_int(user_id)
    if not is_valid_user_id(parsed):
        raise InvalidParameters(ValidationReason.invalid_id)
    user = UserRegistry(db).get(parsed)
    return UserOut.model_validate(user).model_dump(mode="json")


@app.get("/api/about")
def about():
    return [
        DeveloperOut(first_name=first, last_name=last).model_dump()
        for first, last in settings.developers
    ]


@app.post("/api/admin/reconcile")
def admin_reconcile(db: Session = Depends(get_db)):
    ledger = LedgerService(db)
    users = ledger.reconcile_all()
    purged = ledger.purge_reports()
    return ReconcileOut(users=users, reports_purged=purged).model_dump()
