import re
from datetime import datetime, timezone
from typing import Any, Optional

MONTHS_ID = (
    "Januari",
    "Februari",
    "Maret",
    "April",
    "Mei",
    "Juni",
    "Juli",
    "Agustus",
    "September",
    "Oktober",
    "November",
    "Desember",
)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_currency(amount: Any) -> str:
    """Rupiah with dot thousands separators and no decimals, e.g. ``Rp 15.000``."""
    try:
        value = int(round(float(amount)))
    except (TypeError, ValueError):
        return "N/A"
    sign = "-" if value < 0 else ""
    return f"{sign}Rp {abs(value):,}".replace(",", ".")


def format_date(value: Any) -> str:
    parsed = parse_iso(value)
    if parsed is None:
        return str(value or "")
    return f"{parsed.day} {MONTHS_ID[parsed.month - 1]} {parsed.year} {parsed.hour:02d}.{parsed.minute:02d}"


def format_phone_number(phone: str) -> str:
    cleaned = re.sub(r"\D", "", phone or "")

    if cleaned.startswith("62"):
        return f"+{cleaned[:2]} {cleaned[2:5]}-{cleaned[5:9]}-{cleaned[9:]}"
    if cleaned.startswith("0"):
        return f"+62 {cleaned[1:4]}-{cleaned[4:8]}-{cleaned[8:]}"
    return phone
