from sqlalchemy.orm import Session

from settlement_hub.errors import Conflict
from settlement_hub.models import models


def scoped_key(actor_id: str, key: str) -> str:
    return f"{actor_id}:{key}"


def get_or_create_idempotency(db: Session, key: str, body_hash: str):
    existing = db.query(models.IdempotencyKey).filter_by(key=key).first()
    if existing:
        if existing.request_hash != body_hash:
            raise Conflict("idempotency conflict")
        return existing.response_body
    return None


def store_idempotency(db: Session, key: str, body_hash: str, response_body: dict):
    """Stage the stored response in the caller's unit of work."""
    record = models.IdempotencyKey(key=key, request_hash=body_hash, response_body=response_body)
    db.add(record)
    db.flush()
    return response_body
