from __future__ import annotations

import re
from typing import List, Optional, Pattern, Sequence

from ppclient.errors import ValidationError
from ppclient.models import ModToken

# ids and counts are i64/usize on the server
MAX_INT = 2**63 - 1

_UINT_RE = re.compile(r"^\d{1,19}$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

# Tried in order; the first one whose captured id parses wins.
BEATMAP_URL_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"beatmapsets/\d+/?#\w+/(\d+)"),
    re.compile(r"/b/(\d+)"),
    re.compile(r"/beatmaps/(\d+)"),
)

ALLOWED_MODS = {m.value for m in ModToken}


def parse_optional_int(raw: Optional[str]) -> Optional[int]:
    """Non-negative integer from a text field, or None when it isn't one."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not _UINT_RE.match(text):
        return None
    value = int(text)
    return value if value <= MAX_INT else None


def parse_percentage(raw: Optional[str]) -> Optional[float]:
    """Decimal number with `.` or `,` as separator, or None.

    Only plain decimal notation is accepted, so "nan", "inf" and exponents are
    treated as missing rather than leaking through float().
    """
    if raw is None:
        return None
    text = str(raw).strip().replace(",", ".")
    if not _DECIMAL_RE.match(text):
        return None
    return float(text)


def resolve_beatmap(raw: Optional[str]) -> int:
    """Beatmap id from a literal id or an osu! beatmap URL."""
    text = (raw or "").strip()
    literal = parse_optional_int(text)
    if literal is not None:
        return literal
    for pattern in BEATMAP_URL_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        found = parse_optional_int(m.group(1))
        if found is not None:
            return found
    raise ValidationError("beatmap", "beatmap field invalid")


def normalize_mods(raw: Optional[str]) -> List[ModToken]:
    """Turn "hd, dt" into [HD, DT].

    Order is kept and repeats collapse. One unknown token rejects the whole
    list.
    """
    tokens = [t.strip() for t in (raw or "").upper().split(",")]
    tokens = [t for t in tokens if t]
    unknown = [t for t in tokens if t not in ALLOWED_MODS]
    if unknown:
        raise ValidationError("mods", "mods field invalid")
    mods: List[ModToken] = []
    for t in tokens:
        mod = ModToken(t)
        if mod not in mods:
            mods.append(mod)
    return mods
