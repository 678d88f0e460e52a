from __future__ import annotations

import re
import unicodedata
from typing import Optional


# Disambiguating punctuation that catalogs use interchangeably:
# "Song (Live)", "Song - Live", "Song [Live]", "Song – Live".
_DISAMBIGUATION_PATTERN = re.compile(r"[\-\u2010-\u2015()\[\]]")
_MULTISPACE_PATTERN = re.compile(r"\s+")
_ISO_DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)

DURATION_TOLERANCE_MS = 2000


def _strip_diacritics(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def normalize_title(value: Optional[str]) -> str:
    """Normalize a title for equality comparison.

    Idempotent: ``normalize_title(normalize_title(t)) == normalize_title(t)``.
    """
    value = value or ""
    # Case folding and decomposition can feed each other, so run to a fixed point
    while True:
        new_value = _strip_diacritics(value).lower()
        new_value = _DISAMBIGUATION_PATTERN.sub(" ", new_value)
        new_value = _MULTISPACE_PATTERN.sub(" ", new_value).strip()
        if new_value == value:
            break
        value = new_value
    return value


def titles_equal(a: Optional[str], b: Optional[str]) -> bool:
    left = normalize_title(a)
    return bool(left) and left == normalize_title(b)


def normalize_barcode(value: Optional[str]) -> str:
    # UPC-A and EAN-13 spell the same code with and without a leading zero.
    digits = "".join(c for c in (value or "") if c.isdigit())
    return digits.lstrip("0")


def normalize_isrc(value: Optional[str]) -> str:
    return (value or "").replace("-", "").strip().upper()


def within_duration_tolerance(a: Optional[int], b: Optional[int],
                              tolerance_ms: int = DURATION_TOLERANCE_MS) -> bool:
    if a is None or b is None:
        return False
    return abs(a - b) <= tolerance_ms


def parse_iso8601_duration_ms(value: Optional[str]) -> Optional[int]:
    """Convert an ISO-8601 duration such as ``PT3M20S`` to milliseconds."""
    if not value:
        return None
    match = _ISO_DURATION_PATTERN.match(value.strip())
    if not match or not any(match.groupdict().values()):
        return None
    parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
    seconds = (
        parts["days"] * 86400
        + parts["hours"] * 3600
        + parts["minutes"] * 60
        + parts["seconds"]
    )
    return int(round(seconds * 1000))
