import asyncio
from datetime import timedelta

from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from settlement_hub.config import settings
from settlement_hub.helpers import DeliveryClient, DeliveryError
from settlement_hub.logging_config import get_logger
from settlement_hub.models import models

logger = get_logger(__name__)


def record_change(db: Session, event: BaseModel, account_id: str) -> models.ChangeEvent:
    """
    Stage a change event inside the caller's unit of work.

    The row commits or rolls back together with the mutation it describes.
    """
    payload = event.model_dump(by_alias=True)
    record = models.ChangeEvent(
        event_type=payload["event"],
        account_id=account_id,
        payload=payload,
        status="pending",
    )
    db.add(record)
    db.flush()
    return record


def list_events(db: Session, after_id: int = 0, account_id: str | None = None, limit: int = 100) -> list[models.ChangeEvent]:
    query = db.query(models.ChangeEvent).filter(models.ChangeEvent.id > after_id)
    if account_id:
        query = query.filter(models.ChangeEvent.account_id == account_id)
    return query.order_by(models.ChangeEvent.id).limit(limit).all()


delivery_client = DeliveryClient()

async def process_outbox(db: Session, target_url: str | None = None):
    target_url = target_url or (str(settings.change_webhook_url) if settings.change_webhook_url else None)
    if not target_url:
        return
    now = models.utcnow()
    pending = (
        db.query(models.ChangeEvent)
        .filter(models.ChangeEvent.status != "sent")
        .filter(or_(models.ChangeEvent.next_attempt_at.is_(None), models.ChangeEvent.next_attempt_at <= now))
        .order_by(models.ChangeEvent.id)
        .all()
    )
    for record in pending:
        record.attempt_count += 1
        try:
            logger.info(
                "Delivering change event: record_id=%s event_type=%s attempt_count=%s",
                record.id,
                record.event_type,
                record.attempt_count,
            )
            resp = await delivery_client.deliver(target_url, record.payload)
            logger.info(
                "Change event delivery response: record_id=%s status=%s attempts=%s",
                record.id,
                resp.status_code,
                record.attempt_count,
            )
            if resp.status_code >= 400:
                raise DeliveryError(f"subscriber error {resp.status_code}")
            record.status = "sent"
            record.last_error = None
        except Exception as exc:  # noqa: BLE001
            record.status = "failed"
            record.last_error = str(exc)
            record.next_attempt_at = models.utcnow() + timedelta(seconds=2 ** record.attempt_count)
            logger.warning(
                "Change event delivery failed: record_id=%s error=%s next_attempt_at=%s attempt_count=%s",
                record.id,
                exc,
                record.next_attempt_at,
                record.attempt_count,
            )
        finally:
            db.add(record)
            db.commit()

async def background_outbox_worker(db_factory):
    while True:
        db = db_factory()
        try:
            await process_outbox(db)
        finally:
            db.close()
        await asyncio.sleep(settings.outbox_poll_seconds)
