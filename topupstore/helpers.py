import time
import re
import hashlib
from datetime import datetime, timezone
import hmac
from typing import Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def md5_hex(*parts: str) -> str:
    return hashlib.md5("".join(parts).encode()).hexdigest()


def sha512_hex(*parts: str) -> str:
    return hashlib.sha512("".join(parts).encode()).hexdigest()


def new_trx_id(ms: Optional[int] = None) -> str:
    return f"GASS-{now_ms() if ms is None else ms}"


def normalize_phone(phone: str, country_code: str = "62") -> str:
    """'0812-345' -> '62812345', '+62 812' -> '62812', '812' -> '62812'."""
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return ""
    if digits.startswith("0"):
        return country_code + digits[1:]
    if digits.startswith(country_code):
        return digits
    return country_code + digits
