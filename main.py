import json
import logging
from datetime import date
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session, sessionmaker

from auth import current_user_id
from config import get_settings
from csv_utils import export_budget, parse_amount
from database import SessionLocal, session_scope
from models import ICON_BACKGROUNDS, ExpenseIcon
from periods import BudgetMonth, resolve_month
from schemas import ExpenseIn, IncomeIn, PaidToggleIn
from services import BudgetService, ExpenseService, IncomeService, PaymentPlanService
from store import DocumentNotFound, DocumentStore, StoreUnavailable

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="BudgetBox")

STREAM_KEEPALIVE_SECS = 15.0


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(factory: sessionmaker = Depends(get_session_factory)):
    db = factory()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> DocumentStore:
    return DocumentStore(db)


def require_user(authorization: Optional[str] = Header(default=None)) -> str:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    user_id = current_user_id(token)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


@app.exception_handler(StoreUnavailable)
def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.warning(f"request_failed: path={request.url.path} error=store_unavailable")
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage is temporarily unavailable, please retry"},
        headers={"Retry-After": "5"},
    )


async def read_json_object(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Body must be JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    return body


def expense_payload_from_body(body: dict) -> ExpenseIn:
    if "amount" not in body:
        raise ValueError("Amount is required")
    return ExpenseIn(
        title=body.get("title") or "",
        amount_cents=parse_amount(body["amount"]),
        icon=body.get("icon") or ExpenseIcon.restaurant,
        icon_bg_color=body.get("icon_bg_color"),
        active=body.get("active", True),
        is_payment_plan=body.get("is_payment_plan", False),
        total_payments=body.get("total_payments"),
        current_payment=body.get("current_payment"),
    )


def income_payload_from_body(body: dict) -> IncomeIn:
    if "amount" not in body:
        raise ValueError("Amount is required")
    if body.get("date"):
        received = date.fromisoformat(str(body["date"]))
        year, month, day = received.year, received.month, received.day
    else:
        year, month, day = body.get("year"), body.get("month"), body.get("day")
    return IncomeIn(
        name=body.get("name") or "",
        amount_cents=parse_amount(body["amount"]),
        year=year,
        month=month,
        day=day,
    )


def budget_events(
    store: DocumentStore,
    budget_id: str,
    user_id: str,
    keepalive: float = STREAM_KEEPALIVE_SECS,
) -> Iterator[str]:
    """Server-Sent Events for one budget: the current document first, then
    the document again after every change, with keepalive comments while idle.

    Ends with a ``deleted`` event once the budget is gone. Closing the
    generator releases the subscription.
    """
    with store.subscribe(
        "budgets", {"id": budget_id, "user_id": user_id}
    ) as subscription:
        while True:
            docs = subscription.get(timeout=keepalive)
            if docs is None:
                yield ": keepalive\n\n"
                continue
            if not docs:
                yield "event: deleted\ndata: null\n\n"
                return
            yield f"data: {json.dumps(jsonable_encoder(docs[0]))}\n\n"


def month_from_path(year: int, month: int) -> BudgetMonth:
    try:
        return BudgetMonth(year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/icons")
def icon_palette():
    return [
        {"name": icon.value, "color": color} for icon, color in ICON_BACKGROUNDS.items()
    ]


@app.get("/api/expenses")
def list_expenses(
    limit: Optional[int] = None,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    if limit is not None:
        limit = min(max(limit, 1), 500)
    return {"items": ExpenseService(store, user_id).list(limit=limit)}


@app.post("/api/expenses", status_code=201)
async def create_expense(
    request: Request,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    body = await read_json_object(request)
    try:
        payload = expense_payload_from_body(body)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseService(store, user_id).create(payload)


@app.get("/api/expenses/{expense_id}")
def get_expense(
    expense_id: str,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    try:
        return ExpenseService(store, user_id).get(expense_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/expenses/{expense_id}")
async def update_expense(
    expense_id: str,
    request: Request,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    body = await read_json_object(request)
    try:
        payload = expense_payload_from_body(body)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        return ExpenseService(store, user_id).update(expense_id, payload)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(
    expense_id: str,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    try:
        ExpenseService(store, user_id).delete(expense_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/income")
def list_income(
    month: Optional[str] = None,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    service = IncomeService(store, user_id)
    if not month:
        return {"items": service.list()}
    try:
        selected = resolve_month(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "month": selected.slug,
        "items": service.list_for_month(selected.month, selected.year),
    }


@app.post("/api/income", status_code=201)
async def create_income(
    request: Request,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    body = await read_json_object(request)
    try:
        payload = income_payload_from_body(body)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return IncomeService(store, user_id).create(payload)


@app.get("/api/income/{income_id}")
def get_income(
    income_id: str,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    try:
        return IncomeService(store, user_id).get(income_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/income/{income_id}")
async def update_income(
    income_id: str,
    request: Request,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    body = await read_json_object(request)
    try:
        payload = income_payload_from_body(body)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        return IncomeService(store, user_id).update(income_id, payload)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/income/{income_id}", status_code=204)
def delete_income(
    income_id: str,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    try:
        IncomeService(store, user_id).delete(income_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/budgets/current")
def current_budget(
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    selected = resolve_month(None)
    return BudgetService(store, user_id).for_month(selected.month, selected.year)


# Registered before the {year}/{month} route, which has the same shape.
@app.get("/api/budgets/{budget_id}/stream")
def stream_budget(
    budget_id: str,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
    factory: sessionmaker = Depends(get_session_factory),
):
    try:
        BudgetService(store, user_id).get(budget_id)
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    def events():
        # Owns its session for the lifetime of the stream.
        with session_scope(factory) as session:
            yield from budget_events(DocumentStore(session), budget_id, user_id)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/api/budgets/{year}/{month}")
def budget_for_month(
    year: int,
    month: int,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    selected = month_from_path(year, month)
    return BudgetService(store, user_id).for_month(selected.month, selected.year)


@app.get("/api/budgets/{year}/{month}/export.csv")
def export_budget_csv(
    year: int,
    month: int,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    selected = month_from_path(year, month)
    budget = BudgetService(store, user_id).for_month(selected.month, selected.year)
    filename = f"budget_{selected.slug}.csv"
    return StreamingResponse(
        iter([export_budget(budget)]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/budgets/{budget_id}/items/{expense_id}/paid")
async def mark_item_paid(
    budget_id: str,
    expense_id: str,
    request: Request,
    user_id: str = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    body = await read_json_object(request)
    try:
        payload = PaidToggleIn(**body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        budget = PaymentPlanService(store, user_id).mark_paid(
            budget_id, expense_id, payload.paid
        )
    except DocumentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if budget is None:
        raise HTTPException(status_code=404, detail="Line item not found in budget")
    return budget


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
