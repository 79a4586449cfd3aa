"""Data model of the reporting pipeline."""

import hashlib
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ethicrawler_shield.consts import RETRY_KEY_PREFIX


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """Current UTC time as ISO-8601 with a `+00:00` offset, second precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(microsecond=0).isoformat()


class ClassificationEvent(BaseModel):
    """A detected AI-bot request, as reported to the backend.

    Immutable once created. The wire format is exactly these five fields.
    """

    model_config = ConfigDict(frozen=True)

    site_id: str
    user_agent: str
    ip_address: str
    path: str
    timestamp: str = Field(default_factory=lambda: utc_timestamp())

    def to_wire(self) -> Dict[str, str]:
        return self.model_dump()

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ClassificationEvent":
        return cls.model_validate(data)


def generate_correlation_id(event: ClassificationEvent) -> str:
    """Derive a request correlation id from event content and a hi-res clock.

    The backend uses it for deduplication and log correlation.
    """
    seed = f"{event.to_json()}{time.time_ns()}"
    return hashlib.md5(seed.encode("utf-8")).hexdigest()


def retry_key_for(correlation_id: str) -> str:
    return f"{RETRY_KEY_PREFIX}{correlation_id}"


def correlation_id_from_retry_key(retry_key: str) -> str:
    if retry_key.startswith(RETRY_KEY_PREFIX):
        return retry_key[len(RETRY_KEY_PREFIX):]
    return retry_key


class RetryRecord(BaseModel):
    """Persisted state of a failed delivery awaiting re-delivery."""

    retry_key: str
    payload: ClassificationEvent
    attempt_count: int = Field(default=0, ge=0)
    expiry: float  # epoch seconds

    def remaining_ttl(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return self.expiry - now

    def is_expired(self, now: Optional[float] = None) -> bool:
        return self.remaining_ttl(now) <= 0
