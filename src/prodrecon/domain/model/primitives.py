"""Value helpers: GTIN validation and price arithmetic."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Final

from prodrecon.domain.errors import InvalidIdentifierError

GTIN_LENGTHS: Final[frozenset[int]] = frozenset({8, 12, 13, 14})
GTIN_WIDTH: Final[int] = 14
_SEPARATORS: Final[str] = " -."


def gtin_check_digit(body: str) -> int:
    """Return the GS1 modulo-10 check digit for ``body`` (all digits but the last)."""

    total = 0
    for position, char in enumerate(reversed(body)):
        weight = 3 if position % 2 == 0 else 1
        total += int(char) * weight
    return (10 - total % 10) % 10


def parse_gtin(value: str) -> str:
    """Validate an EAN-8/UPC-A/EAN-13/GTIN-14 and return it zero-padded to 14 digits.

    Spreadsheet artefacts such as a trailing ``.0`` and grouping separators are
    tolerated; anything else that is not a well-formed code with a correct check
    digit raises ``InvalidIdentifierError``.
    """

    raw = value.strip()
    if raw.endswith(".0"):
        raw = raw[:-2]
    digits = "".join(ch for ch in raw if ch not in _SEPARATORS)
    if not digits:
        raise InvalidIdentifierError(value, "empty")
    if not digits.isdigit():
        raise InvalidIdentifierError(value, "non-digit characters")
    if len(digits) not in GTIN_LENGTHS:
        raise InvalidIdentifierError(value, f"unsupported length {len(digits)}")
    if set(digits) == {"0"}:
        raise InvalidIdentifierError(value, "all zeros")
    if gtin_check_digit(digits[:-1]) != int(digits[-1]):
        raise InvalidIdentifierError(value, "check digit mismatch")
    return digits.zfill(GTIN_WIDTH)


def normalize_gtin(value: str | None) -> str | None:
    """Return the normalised GTIN, or ``None`` when absent or invalid."""

    if value is None:
        return None
    try:
        return parse_gtin(value)
    except InvalidIdentifierError:
        return None


def is_valid_gtin(value: str | None) -> bool:
    return normalize_gtin(value) is not None


def parse_price(value: object) -> Decimal | None:
    """Parse ``12.50``, ``"12,50 €"`` or ``"1 234,50"`` into a two-place Decimal."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"))
    if isinstance(value, int | float):
        return Decimal(str(value)).quantize(Decimal("0.01"))
    text = str(value).strip()
    cleaned = "".join(ch for ch in text if ch.isdigit() or ch in ",.-")
    if not cleaned:
        return None
    if "," in cleaned and "." in cleaned:
        # the right-most separator is the decimal one
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    else:
        cleaned = cleaned.replace(",", ".")
    try:
        return Decimal(cleaned).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def price_change_percent(old: Decimal | None, new: Decimal | None) -> Decimal | None:
    """Relative change from ``old`` to ``new`` in percent, ``None`` if undefined."""

    if old is None or new is None or old == 0:
        return None
    return (abs(new - old) / abs(old) * 100).quantize(Decimal("0.01"))
