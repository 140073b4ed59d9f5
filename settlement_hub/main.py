import asyncio
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import Depends, FastAPI, Header, Path, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from settlement_hub.config import FundsKind, Role, settings
from settlement_hub.database import BIGINT_MAX, SessionLocal, engine, get_db, transaction
from settlement_hub.db import get_or_create_idempotency, scoped_key, store_idempotency
from settlement_hub.errors import Busy, NotFound, SettlementHubError, error_body
from settlement_hub.helpers import hash_request, serialize_event
from settlement_hub.logging_config import get_logger
from settlement_hub.models import models
from settlement_hub.notifications import background_outbox_worker, list_events
from settlement_hub.reconciliation import generate_reconciliation_csv
from settlement_hub.schemas.app_schemas import (
    AccountCreate,
    AccountResponse,
    FundsRequestCreate,
    FundsRequestResponse,
    ReferralResponse,
    RoleGrantRequest,
    RoleResponse,
    SettleRequest,
    SettleResponse,
    WagerResponse,
)
from settlement_hub.security import require_actor, require_bearer_token, verify_body_signature
from settlement_hub.services import Services, build_services


logger = get_logger(__name__)

models.Base.metadata.create_all(bind=engine)


def _bootstrap_admins(services: Services) -> None:
    if not settings.bootstrap_admin_ids:
        return
    db = SessionLocal()
    try:
        with transaction(db):
            services.guard.bootstrap_admins(db, settings.bootstrap_admin_ids)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    _bootstrap_admins(app.state.services)
    worker = None
    if settings.change_webhook_url:
        logger.info("Starting change event outbox worker")
        worker = asyncio.create_task(background_outbox_worker(SessionLocal))
    else:
        logger.info("No change webhook configured; change events are served from /events only")
    yield
    if worker is not None:
        worker.cancel()


app = FastAPI(title="Settlement Hub", lifespan=lifespan)
app.state.services = build_services(settings)


def get_services(request: Request) -> Services:
    return request.app.state.services


def _run_idempotent(db: Session, actor_id: str, idempotency_key: str | None, body: dict, operation: Callable[[], dict]) -> dict:
    """
    Run ``operation`` once per (actor, Idempotency-Key); replays return the stored response.
    """
    if not idempotency_key:
        return operation()
    key = scoped_key(actor_id, idempotency_key)
    body_hash = hash_request(body)
    existing = get_or_create_idempotency(db, key, body_hash)
    if existing:
        logger.info("Replaying stored response for idempotency key=%s", key)
        return existing
    with transaction(db):
        response = operation()
        store_idempotency(db, key, body_hash, response)
    return response


@app.exception_handler(SettlementHubError)
async def settlement_error_handler(request: Request, exc: SettlementHubError):
    if exc.internal:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.detail, exc_info=exc)
    headers = {"Retry-After": str(exc.retry_after_seconds)} if isinstance(exc, Busy) else None
    return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)

@app.post("/accounts", response_model=AccountResponse, status_code=201)
def create_account(
    request: AccountCreate,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    with transaction(db):
        account = services.ledger.create_account(db, request.username, request.referralCode, request.accountId)
    return AccountResponse.from_model(account)

@app.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    services.guard.require_self_or_role(db, actor_id, account_id)
    return AccountResponse.from_model(services.ledger.get_account(db, account_id))

@app.get("/accounts/{account_id}/wagers", response_model=list[WagerResponse])
def list_wagers(
    account_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    services.guard.require_self_or_role(db, actor_id, account_id)
    services.ledger.get_account(db, account_id)
    return [WagerResponse.from_model(w) for w in services.engine.list_wagers(db, account_id, limit, offset)]

@app.get("/accounts/{account_id}/referrals", response_model=ReferralResponse)
def referral_report(
    account_id: str,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    services.guard.require_self_or_role(db, actor_id, account_id)
    account = services.ledger.get_account(db, account_id)
    return ReferralResponse.from_summary(services.referrals.for_account(db, account))

@app.post("/games/{game_type}/settle", response_model=SettleResponse)
def settle_route(
    game_type: str,
    request: SettleRequest,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    idempotency_key: str | None = Header(None),
    x_signature: str | None = Header(None),
    x_timestamp: str | None = Header(None),
):
    body = request.model_dump()
    verify_body_signature(body, x_signature, x_timestamp)

    def operation() -> dict:
        settled = services.engine.settle(db, actor_id, game_type, request.betCents, request.options)
        return SettleResponse.from_result(settled).model_dump(mode="json")

    return _run_idempotent(db, actor_id, idempotency_key, {"route": f"settle:{game_type}", **body}, operation)

@app.post("/funds/{kind}", response_model=FundsRequestResponse, status_code=201)
def create_funds_request(
    kind: FundsKind,
    request: FundsRequestCreate,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    idempotency_key: str | None = Header(None),
    x_signature: str | None = Header(None),
    x_timestamp: str | None = Header(None),
):
    body = request.model_dump()
    verify_body_signature(body, x_signature, x_timestamp)

    def operation() -> dict:
        created = services.funds.create_request(
            db,
            actor_id,
            kind,
            request.amountCents,
            request.currency,
            request.network,
            request.externalReference,
        )
        return FundsRequestResponse.from_model(created).model_dump(mode="json")

    return _run_idempotent(db, actor_id, idempotency_key, {"route": f"funds:{kind.value}", **body}, operation)

@app.get("/funds", response_model=list[FundsRequestResponse])
def list_funds_requests(
    kind: FundsKind | None = None,
    status: str | None = None,
    account_id: str | None = Query(None, alias="accountId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    if not services.guard.has_role(db, actor_id, Role.ADMIN):
        account_id = actor_id
    requests = services.funds.list_requests(db, kind, status, account_id, limit, offset)
    return [FundsRequestResponse.from_model(r) for r in requests]

@app.post("/admin/funds/{request_id}/approve", response_model=FundsRequestResponse)
def approve_deposit(
    request_id: str,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    return FundsRequestResponse.from_model(services.funds.approve_deposit(db, actor_id, request_id))

@app.post("/admin/funds/{request_id}/complete", response_model=FundsRequestResponse)
def complete_withdrawal(
    request_id: str,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    return FundsRequestResponse.from_model(services.funds.complete_withdrawal(db, actor_id, request_id))

@app.post("/admin/funds/{request_id}/reject", response_model=FundsRequestResponse)
def reject_funds_request(
    request_id: str,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    return FundsRequestResponse.from_model(services.funds.reject(db, actor_id, request_id))

@app.get("/admin/roles", response_model=list[RoleResponse])
def list_roles(
    user_id: str | None = Query(None, alias="userId"),
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    services.guard.require_role(db, actor_id, Role.ADMIN)
    return [RoleResponse.from_model(r) for r in services.guard.list_roles(db, user_id)]

@app.post("/admin/roles", response_model=RoleResponse, status_code=201)
def grant_role(
    request: RoleGrantRequest,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    with transaction(db):
        grant = services.guard.grant_role(db, actor_id, request.userId, request.role)
    return RoleResponse.from_model(grant)

@app.delete("/admin/roles/{user_id}/{role}", status_code=204)
def revoke_role(
    user_id: str,
    role: str,
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    with transaction(db):
        services.guard.revoke_role(db, actor_id, user_id, role)
    return Response(status_code=204)

@app.get("/events")
def change_feed(
    after_id: int = Query(0, alias="afterId", ge=0, le=BIGINT_MAX),
    account_id: str | None = Query(None, alias="accountId"),
    limit: int = Query(100, ge=1, le=500),
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """
    Poll change events newer than ``afterId``. Delivery is at-least-once;
    consumers deduplicate by event id.
    """
    if not services.guard.has_role(db, actor_id, Role.ADMIN):
        account_id = actor_id
    return [serialize_event(r) for r in list_events(db, after_id, account_id, limit)]

@app.get("/admin/outbox")
def list_outbox(
    status: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    services.guard.require_role(db, actor_id, Role.ADMIN)
    query = db.query(models.ChangeEvent)
    if status:
        query = query.filter(models.ChangeEvent.status == status)
    records = query.order_by(models.ChangeEvent.id.desc()).limit(limit).all()
    return [serialize_event(r) for r in records]

@app.post("/admin/outbox/{record_id}/replay")
def force_replay(
    record_id: int = Path(..., ge=1, le=BIGINT_MAX),
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """
    Force a single change event back to pending and clear the last_error.
    """
    services.guard.require_role(db, actor_id, Role.ADMIN)
    record = db.get(models.ChangeEvent, record_id)
    if not record:
        raise NotFound("outbox record not found")
    record.status = "pending"
    record.last_error = None
    record.next_attempt_at = None
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Forced replay for change event record_id=%s", record_id)
    return serialize_event(record)

@app.get("/admin/reconciliation")
def download_reconciliation_csv(
    actor_id: str = Depends(require_actor),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    services.guard.require_role(db, actor_id, Role.ADMIN)
    csv_text, mismatch_count = generate_reconciliation_csv(db)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="reconciliation.csv"',
            "X-Mismatch-Count": str(mismatch_count),
        },
    )

@app.get("/health")
async def health():
    return {"status": "ok"}
