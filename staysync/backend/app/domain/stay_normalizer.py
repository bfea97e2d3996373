from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

_LEADING_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}")

WARN_CHECKOUT_MISSING = "checkout_missing_inferred_from_nights"
WARN_CHECKOUT_BEFORE_CHECKIN_CORRECTED = "checkout_before_checkin_corrected_from_nights"
WARN_CHECKOUT_BEFORE_CHECKIN = "checkout_before_checkin"


@dataclass(frozen=True)
class NormalizedStay:
    checkin: Optional[date]
    checkout: Optional[date]
    nights: Optional[int]
    warnings: list[str] = field(default_factory=list)


def day_only(v: Any) -> Optional[date]:
    """
    Calendar day of a date-ish value.

    Timestamps with an offset are read as UTC days. Anything unparseable falls
    back to a leading YYYY-MM-DD token, and to None when even that is absent.
    """
    if v is None:
        return None
    if isinstance(v, datetime):
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).date()
        return v.date()
    if isinstance(v, date):
        return v

    s = str(v).strip()
    if not s:
        return None

    try:
        iso = s[:-1] + "+00:00" if s.endswith(("Z", "z")) else s
        dt = datetime.fromisoformat(iso)
        if dt.tzinfo is not None:
            return dt.astimezone(timezone.utc).date()
        return dt.date()
    except ValueError:
        pass

    m = _LEADING_DAY.match(s)
    if not m:
        return None
    try:
        return date.fromisoformat(m.group(0))
    except ValueError:
        return None


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=int(days))


def diff_days(start: date, end: date) -> int:
    return (end - start).days


def to_positive_int(v: Any) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    try:
        n = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n):
        return None
    i = int(n)
    return i if i > 0 else None


def normalize_stay(checkin: Any = None, checkout: Any = None, nights: Any = None) -> NormalizedStay:
    """
    Resolve checkin / checkout / nights into one interval.

    nights wins over a disagreeing checkout; a checkout before checkin is
    repaired from nights when possible and only reported otherwise.
    Never raises.
    """
    warnings: list[str] = []
    ci = day_only(checkin)
    co = day_only(checkout)
    n = to_positive_int(nights)

    if ci and n:
        inferred = add_days(ci, n)
        if co is None:
            co = inferred
            warnings.append(WARN_CHECKOUT_MISSING)
        else:
            diff = diff_days(ci, co)
            if diff != n:
                co = inferred
                warnings.append(f"checkout_mismatch_inferred_from_nights(diff={diff},nights={n})")

    if ci and co and co < ci:
        if n:
            co = add_days(ci, n)
            warnings.append(WARN_CHECKOUT_BEFORE_CHECKIN_CORRECTED)
        else:
            warnings.append(WARN_CHECKOUT_BEFORE_CHECKIN)

    return NormalizedStay(checkin=ci, checkout=co, nights=n, warnings=warnings)
