import asyncio
import hashlib
import json
import time
from collections import deque

import httpx

from settlement_hub.config import settings
from settlement_hub.models import models
from settlement_hub.security import compute_signature


class DeliveryError(Exception):
    """Raised when a change event cannot reach its subscriber."""


def hash_request(body: dict) -> str:
    return hashlib.sha256(json.dumps(body, sort_keys=True).encode()).hexdigest()


def serialize_event(record: models.ChangeEvent) -> dict:
    return {
        "id": record.id,
        "eventType": record.event_type,
        "accountId": record.account_id,
        "status": record.status,
        "attemptCount": record.attempt_count,
        "nextAttemptAt": record.next_attempt_at.isoformat() if record.next_attempt_at else None,
        "lastError": record.last_error,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "payload": record.payload,
    }


class DeliveryClient:
    """
    Signed POSTs to the change subscriber.

    Sends are capped per rolling minute; 429 and 5xx answers are retried with
    exponential backoff (honouring ``Retry-After``) before the last response
    is handed back to the caller.
    """

    def __init__(
        self,
        rate_limit_per_minute: int | None = None,
        max_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        self.client = httpx.AsyncClient(timeout=10.0)
        self._sent_at: deque[float] = deque()
        self.rate_limit_per_minute = rate_limit_per_minute if rate_limit_per_minute is not None else settings.rate_limit_per_minute
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self.retry_backoff_seconds = retry_backoff_seconds if retry_backoff_seconds is not None else settings.retry_backoff_seconds

    def _take_slot(self) -> None:
        now = time.monotonic()
        while self._sent_at and now - self._sent_at[0] >= 60:
            self._sent_at.popleft()
        if len(self._sent_at) >= self.rate_limit_per_minute:
            raise DeliveryError("delivery rate limit reached")
        self._sent_at.append(now)

    @staticmethod
    def _signed_headers(payload: dict) -> dict:
        timestamp = str(int(time.time()))
        return {"X-Timestamp": timestamp, "X-Signature": compute_signature(payload, timestamp)}

    async def deliver(self, url: str, payload: dict) -> httpx.Response:
        backoff = self.retry_backoff_seconds
        for attempt in range(self.max_retries + 1):
            self._take_slot()
            try:
                response = await self.client.post(url, json=payload, headers=self._signed_headers(payload))
            except httpx.RequestError as exc:
                raise DeliveryError(f"subscriber request error: {exc}") from exc
            retryable = response.status_code == 429 or response.status_code >= 500
            if not retryable or attempt == self.max_retries:
                return response
            retry_after = response.headers.get("Retry-After")
            await asyncio.sleep(float(retry_after) if retry_after else backoff)
            backoff *= 2
        return response
