"""Heuristic expense field parsing from recognized receipt text.

Extracts the amount, date, and merchant name with independent,
first-match-wins regular expressions. There is no scoring, no
backtracking across candidates, and no plausibility check on the
values found; a field with no match is simply ``None``.
"""

import datetime as dt
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from receipt_intake.utils.logger import get_logger

logger = get_logger(__name__)

# Period-decimal forms first (optionally with thousands commas), then the
# comma-as-decimal fallback.
_NUMBER = (
    r"\d{1,3}(?:,\d{3})+(?:\.\d{2})?(?![\d,])"
    r"|\d+\.\d{2}(?!\d)"
    r"|\d+(?:,\d{2})?(?![\d,])"
)

_AMOUNT_PATTERN = re.compile(
    rf"[$£€¥₹]\s*(?P<before>{_NUMBER})"
    rf"|(?<![\d.,])(?P<after>{_NUMBER})\s*(?:USD|EUR|GBP|INR)",
    re.IGNORECASE,
)

_MONTHS = r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)"

_DATE_PATTERN = re.compile(
    r"(?<!\d)\d{1,2}[-/]\d{1,2}[-/]\d{2,4}(?!\d)"
    r"|(?<!\d)\d{4}[-/]\d{1,2}[-/]\d{1,2}(?!\d)"
    rf"|{_MONTHS}[a-z]*\.?\s+\d{{1,2}},?\s+\d{{4}}(?!\d)",
    re.IGNORECASE,
)

_ISO_DATE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{2,4})$")
_SPELLED_DATE = re.compile(r"^([A-Za-z]{3})[a-z]*\.?\s+(\d{1,2}),?\s+(\d{4})$", re.IGNORECASE)

_DIGIT_RUN = re.compile(r"\d{3,}")
_MERCHANT_MIN_LENGTH = 3
_MERCHANT_MAX_LENGTH = 49


@dataclass(frozen=True)
class ParsedFields:
    """Best-guess expense fields parsed from receipt text.

    Attributes:
        amount: First currency-adjacent amount found.
        date: Date text exactly as it appeared on the receipt.
        normalized_date: ``date`` rendered as ``YYYY-MM-DD`` when it is a
            real calendar date.
        merchant_name: First line that looks like a business name.
    """

    amount: Decimal | None = None
    date: str | None = None
    normalized_date: str | None = None
    merchant_name: str | None = None


def _to_decimal(token: str) -> Decimal | None:
    if "." in token:
        token = token.replace(",", "")
    elif re.fullmatch(r"\d+,\d{2}", token):
        token = token.replace(",", ".")
    else:
        token = token.replace(",", "")
    try:
        return Decimal(token)
    except InvalidOperation:
        return None


def parse_amount(text: str) -> Decimal | None:
    """Extract the first currency-adjacent amount in reading order.

    Args:
        text: Recognized receipt text.

    Returns:
        The amount, or ``None`` when no currency-adjacent number exists.
    """
    match = _AMOUNT_PATTERN.search(text)
    if not match:
        return None
    token = match.group("before") or match.group("after")
    amount = _to_decimal(token)
    logger.debug("Parsed amount %s from %r", amount, match.group(0))
    return amount


def parse_date(text: str) -> str | None:
    """Return the first date-shaped substring, unvalidated.

    Accepts ``MM/DD/YYYY`` or ``DD/MM/YYYY`` style slash/dash dates,
    ISO ``YYYY-MM-DD``, and ``Mon DD, YYYY``.
    """
    match = _DATE_PATTERN.search(text)
    return match.group(0) if match else None


def normalize_date(value: str) -> str | None:
    """Render a matched date as ISO ``YYYY-MM-DD`` if it is a real date.

    Numeric dates are read month-first; when the first number cannot be
    a month but the second can, they are read day-first. Two-digit
    years are taken as 20YY.

    Args:
        value: Date text as returned by :func:`parse_date`.

    Returns:
        The ISO date, or ``None`` if the text is not a valid date.
    """
    value = value.strip()
    iso = _ISO_DATE.match(value)
    numeric = _NUMERIC_DATE.match(value)
    spelled = _SPELLED_DATE.match(value)
    try:
        if iso:
            year, month, day = (int(g) for g in iso.groups())
        elif numeric:
            month, day, year = (int(g) for g in numeric.groups())
            if year < 100:
                year += 2000
            if month > 12 and day <= 12:
                month, day = day, month
        elif spelled:
            month = dt.datetime.strptime(spelled.group(1).title(), "%b").month
            day, year = int(spelled.group(2)), int(spelled.group(3))
        else:
            return None
        return dt.date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_merchant_name(text: str) -> str | None:
    """Pick the first line that plausibly names the merchant.

    Lines with three or more consecutive digits (addresses, phone
    numbers) and lines outside 3-49 characters are skipped.
    """
    for line in text.splitlines():
        candidate = line.strip()
        if not candidate:
            continue
        if _DIGIT_RUN.search(candidate):
            continue
        if not _MERCHANT_MIN_LENGTH <= len(candidate) <= _MERCHANT_MAX_LENGTH:
            continue
        return candidate
    return None


def parse_fields(text: str) -> ParsedFields:
    """Parse amount, date, and merchant name from recognized text.

    Args:
        text: Recognized receipt text, one receipt line per text line.

    Returns:
        Parsed fields; any field without a match is ``None``.
    """
    if not text or not text.strip():
        return ParsedFields()

    date = parse_date(text)
    fields = ParsedFields(
        amount=parse_amount(text),
        date=date,
        normalized_date=normalize_date(date) if date else None,
        merchant_name=parse_merchant_name(text),
    )
    logger.info(
        "Parsed fields: amount=%s date=%s merchant=%s",
        fields.amount,
        fields.date,
        fields.merchant_name,
    )
    return fields
