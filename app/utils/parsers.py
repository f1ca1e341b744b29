import re
from datetime import datetime, timezone, timedelta
from decimal import Decimal, InvalidOperation, ROUND_CEILING


DURATION_PATTERN = r'^([0-9]+(\.[0-9]+)?(s|m|h))+$'

_DURATION_RE = re.compile(DURATION_PATTERN)
_DURATION_PART_RE = re.compile(r'([0-9]+(?:\.[0-9]+)?)(s|m|h)')
_DURATION_UNITS = {'s': 1, 'm': 60, 'h': 3600}

_BINARY_SUFFIXES = {
    'Ki': 2 ** 10, 'Mi': 2 ** 20, 'Gi': 2 ** 30,
    'Ti': 2 ** 40, 'Pi': 2 ** 50, 'Ei': 2 ** 60,
}
_DECIMAL_SUFFIXES = {
    'm': Decimal('0.001'), '': Decimal(1), 'k': Decimal(10) ** 3, 'M': Decimal(10) ** 6,
    'G': Decimal(10) ** 9, 'T': Decimal(10) ** 12, 'P': Decimal(10) ** 15, 'E': Decimal(10) ** 18,
}
_QUANTITY_RE = re.compile(r'^([+-]?[0-9]+(?:\.[0-9]*)?|[+-]?\.[0-9]+)([eE][+-]?[0-9]+|[A-Za-z]*)$')


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_duration(s: str) -> timedelta:
    # "10m" → 600s, "1h30m" → 5400s, "1.5h" → 5400s
    s = s.strip()
    if not _DURATION_RE.match(s):
        raise ValueError(f"invalid duration {s!r}: expected e.g. '30s', '10m', '1h30m'")
    seconds = Decimal(0)
    for number, unit in _DURATION_PART_RE.findall(s):
        seconds += Decimal(number) * _DURATION_UNITS[unit]
    return timedelta(seconds=float(seconds))


def format_duration(td: timedelta) -> str:
    total = td.total_seconds()
    hours, rest = divmod(int(total), 3600)
    minutes, seconds = divmod(rest, 60)
    fraction = total - int(total)
    out = ''
    if hours:
        out += f"{hours}h"
    if minutes:
        out += f"{minutes}m"
    if seconds or fraction or not out:
        out += f"{seconds + fraction:g}s"
    return out


def parse_quantity(s: str) -> int:
    # "8Gi" → 8589934592, "512Mi" → 536870912, "1.5G" → 1500000000, "1e3" → 1000
    s = str(s).strip()
    m = _QUANTITY_RE.match(s)
    if not m:
        raise ValueError(f"invalid quantity {s!r}")
    number, suffix = m.groups()
    try:
        value = Decimal(number)
    except InvalidOperation:
        raise ValueError(f"invalid quantity {s!r}")
    if suffix in _BINARY_SUFFIXES:
        value *= _BINARY_SUFFIXES[suffix]
    elif suffix in _DECIMAL_SUFFIXES:
        value *= _DECIMAL_SUFFIXES[suffix]
    elif suffix[:1] in ('e', 'E') and len(suffix) > 1:
        value *= Decimal(10) ** int(suffix[1:])
    else:
        raise ValueError(f"invalid quantity suffix {suffix!r} in {s!r}")
    if value < 0:
        raise ValueError(f"quantity must not be negative: {s!r}")
    # round up to whole bytes like the apiserver does
    return int(value.to_integral_value(rounding=ROUND_CEILING))
