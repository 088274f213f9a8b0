"""Verification of Telegram login widget payloads.

Telegram signs the widget data with HMAC-SHA256, using the SHA-256 digest
of the bot token as key, over the received fields (except `hash`) sorted
by key and rendered as `key=value` lines joined with newlines.
"""

import hashlib
import hmac
import time
from typing import Mapping, Optional

MAX_AUTH_AGE_SECONDS = 3600


def data_check_string(data: Mapping) -> str:
    return "\n".join(f"{k}={data[k]}" for k in sorted(data) if k != "hash" and data[k] is not None)


def sign(data: Mapping, bot_token: str) -> str:
    """Hex signature Telegram would attach to `data`."""
    secret = hashlib.sha256(bot_token.encode()).digest()
    return hmac.new(secret, data_check_string(data).encode(), hashlib.sha256).hexdigest()


def verify_login(data: Mapping, bot_token: str, now: Optional[float] = None) -> None:
    """Raise ValueError unless `data` carries a valid, recent signature."""
    if not bot_token:
        raise ValueError("Telegram login is not configured")
    received = str(data.get("hash") or "")
    if not hmac.compare_digest(sign(data, bot_token), received):
        raise ValueError("Invalid Telegram signature")
    now = time.time() if now is None else now
    if now - int(data.get("auth_date") or 0) > MAX_AUTH_AGE_SECONDS:
        raise ValueError("Telegram authentication data is too old")
