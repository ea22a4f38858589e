from __future__ import annotations

import logging

log = logging.getLogger(__name__)

SEC_PER_MINUTE = 60
SEC_PER_HOUR = 60 * SEC_PER_MINUTE
SEC_PER_DAY = 24 * SEC_PER_HOUR
SEC_PER_YEAR = 31_557_600  # 365.25d
SEC_PER_MONTH = SEC_PER_YEAR // 12  # 2629800

MAX_SECONDS = 2**64 - 1
_MAX_DIGITS = len(str(MAX_SECONDS))

# "mo" must be tried before "m"
_UNITS: tuple[tuple[str, int], ...] = (
    ("mo", SEC_PER_MONTH),
    ("y", SEC_PER_YEAR),
    ("d", SEC_PER_DAY),
    ("h", SEC_PER_HOUR),
    ("m", SEC_PER_MINUTE),
    ("s", 1),
)


class ValidityError(ValueError):
    pass


def parse_validity_strict(text: str | None) -> int:
    """
    Parse an EJBCA style validity string ("1y 2mo 4d 1h") into seconds.

    Empty input is 0. Anything malformed raises ValidityError:
    - a token without leading digits
    - a missing or unknown unit (allowed: y, mo, d, h, m, s)
    - a total that does not fit an unsigned 64 bit counter
    """
    s = (text or "").strip()
    total = 0
    i = 0
    while i < len(s):
        while i < len(s) and s[i].isspace():
            i += 1
        if i >= len(s):
            break

        start = i
        while i < len(s) and s[i] in "0123456789":
            i += 1
        if start == i:
            raise ValidityError(f"expected number at {s[start:]!r}")
        digits = s[start:i].lstrip("0")
        if len(digits) > _MAX_DIGITS:
            raise ValidityError(f"overflow: number at {start} has {len(digits)} digits")
        n = int(digits or "0")

        while i < len(s) and s[i].isspace():
            i += 1
        if i >= len(s):
            raise ValidityError(f"missing unit after {n}")

        for unit, mul in _UNITS:
            if s.startswith(unit, i):
                i += len(unit)
                break
        else:
            raise ValidityError(f"unknown unit at {s[i:]!r} (allowed: y, mo, d, h, m, s)")

        add = n * mul
        if add > MAX_SECONDS:
            raise ValidityError(f"overflow computing {n} * {mul}")
        if total > MAX_SECONDS - add:
            raise ValidityError(f"overflow adding {add}")
        total += add
    return total


def parse_validity(text: str | None) -> int:
    """Lenient variant: malformed input is logged and yields 0."""
    try:
        return parse_validity_strict(text)
    except ValidityError as e:
        log.error("invalid validity %r: %s", text, e)
        return 0


def human_duration(seconds: float) -> str:
    neg = seconds < 0
    sec = int(abs(seconds))

    year = 365 * SEC_PER_DAY
    y, sec = divmod(sec, year)
    d, sec = divmod(sec, SEC_PER_DAY)
    h, sec = divmod(sec, SEC_PER_HOUR)
    m, sec = divmod(sec, SEC_PER_MINUTE)

    parts = [f"{v}{u}" for v, u in ((y, "y"), (d, "d"), (h, "h"), (m, "m")) if v > 0]
    if sec > 0 or not parts:
        parts.append(f"{sec}s")
    out = " ".join(parts)
    return "-" + out if neg else out
