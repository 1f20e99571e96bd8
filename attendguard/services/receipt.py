"""Keyed receipts for accepted submissions."""
import hashlib
import hmac
from datetime import datetime, timezone

from attendguard.config import settings


def to_millis(ts: datetime) -> int:
    """Epoch milliseconds; naive datetimes are taken as UTC (as stored by MongoDB)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


def truncate_to_millis(ts: datetime) -> datetime:
    """MongoDB keeps millisecond precision; sign what will be read back."""
    return ts.replace(microsecond=ts.microsecond - ts.microsecond % 1000)


def sign_receipt(
    session_id: str,
    matric_no: str,
    submitted_at: datetime,
    nonce: str,
    secret: str | None = None,
) -> str:
    payload = f"{session_id}:{matric_no}:{to_millis(submitted_at)}:{nonce}"
    key = (secret if secret is not None else settings.receipt_secret_key).encode()
    return hmac.new(key, payload.encode(), hashlib.sha256).hexdigest()


def verify_receipt(
    receipt: str,
    session_id: str,
    matric_no: str,
    submitted_at: datetime,
    nonce: str,
    secret: str | None = None,
) -> bool:
    expected = sign_receipt(session_id, matric_no, submitted_at, nonce, secret=secret)
    return hmac.compare_digest(expected, receipt)
