"""
Request authentication.

The hub sits behind a gateway: the shared bearer token proves the caller is
that gateway and ``X-User-Id`` names the player or operator it authenticated.
Mutating routes may additionally carry an HMAC over the JSON body.
"""
import hashlib
import hmac
import json
import time

from fastapi import Header, HTTPException

from settlement_hub.config import settings


def compute_signature(body: dict, timestamp: str) -> str:
    message = f"{timestamp}:{json.dumps(body, sort_keys=True)}".encode()
    return hmac.new(settings.hmac_secret.encode(), message, hashlib.sha256).hexdigest()


def verify_body_signature(body: dict, signature: str | None, timestamp: str | None) -> None:
    """Check ``X-Signature``/``X-Timestamp``; unsigned bodies pass unless signing is mandatory."""
    if not signature and not timestamp:
        if settings.require_signed_requests:
            raise HTTPException(status_code=401, detail="signature required")
        return
    if not signature or not timestamp:
        raise HTTPException(status_code=401, detail="incomplete signature headers")
    try:
        sent_at = int(timestamp)
    except ValueError:
        raise HTTPException(status_code=401, detail="invalid timestamp")
    if abs(int(time.time()) - sent_at) > settings.timestamp_skew_seconds:
        raise HTTPException(status_code=401, detail="timestamp skew")
    if not hmac.compare_digest(compute_signature(body, timestamp), signature):
        raise HTTPException(status_code=401, detail="invalid signature")


def require_bearer_token(authorization: str | None = Header(None, alias="Authorization")):
    if not settings.bearer_token:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not hmac.compare_digest(token.strip(), settings.bearer_token):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_actor(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="missing X-User-Id")
    return x_user_id.strip()
