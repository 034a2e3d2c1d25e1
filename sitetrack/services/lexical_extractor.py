"""
Lexical Extractor: amounts, descriptions, dates and priority words.

Pure functions over normalized (lowercased, whitespace-collapsed) message
text. Two trigger-verb vocabularies are supported, English and Luganda,
checked in that order; the first vocabulary with a matching token wins.

Nothing here guesses: a missing amount is ``None``, never zero.
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from sitetrack.schemas.intent import Priority

# =============================================================================
# Vocabularies
# =============================================================================

CURRENCY_CODES = ("ugx", "ush", "ksh", "tzs", "usd", "eur", "gbp")

# Ordered: earlier vocabularies take precedence. Token sets are disjoint.
TRIGGER_VOCABULARIES: Tuple[Tuple[str, frozenset], ...] = (
    ("english", frozenset({"spent", "paid", "used", "bought", "purchased"})),
    ("luganda", frozenset({"nimaze", "nasasudde", "naguze", "natundidde", "omaze", "wasasudde"})),
)

PREPOSITIONS = frozenset({"on", "for", "ku", "pa"})
LEADING_FILLERS = frozenset({"i", "we", "just", "have", "has", "today", "yesterday", "leero"})

# Longest phrases first so "not urgent" never reads as "urgent".
PRIORITY_PHRASES: Tuple[Tuple[str, Priority], ...] = (
    ("not urgent", Priority.LOW),
    ("low priority", Priority.LOW),
    ("medium priority", Priority.MEDIUM),
    ("high priority", Priority.HIGH),
    ("urgent", Priority.HIGH),
    ("asap", Priority.HIGH),
    ("important", Priority.HIGH),
    ("whenever", Priority.LOW),
)

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

MAX_DESCRIPTION_LENGTH = 255

# =============================================================================
# Patterns
# =============================================================================

_CURRENCY = "|".join(CURRENCY_CODES)
_MONTH = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|jun(?:e)?|jul(?:y)?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)

# Grouped thousands or a plain run of digits, optional k/m shorthand.
NUMBER = r"(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?(?:[km](?!\w))?"


def amount_pattern(group: str = "amount") -> str:
    """Regex fragment for an amount with an optional currency code on either side."""
    return (
        rf"(?<![\w.,/-])(?:(?:{_CURRENCY})\s?)?(?P<{group}>{NUMBER})(?![\w/%-])"
        rf"(?:\s?(?:{_CURRENCY})\b)?"
    )


AMOUNT_RE = re.compile(amount_pattern())
CURRENCY_RE = re.compile(rf"\b({_CURRENCY})\b")

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_DMY_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})\b")
_DAY_MONTH_RE = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+{_MONTH}\b\.?(?:\s+(\d{{4}}))?")
_MONTH_DAY_RE = re.compile(rf"\b{_MONTH}\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s+(\d{{4}}))?")
_RELATIVE_DATE_RE = re.compile(r"\b(today|leero|yesterday)\b")


@dataclass(frozen=True)
class LexicalFeatures:
    """Everything the extractor found in one message."""

    text: str
    raw_text: str = ""
    undated_text: str = ""
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    trigger_verb: Optional[str] = None
    vocabulary: Optional[str] = None
    date_token: Optional[str] = None
    resolved_date: Optional[date] = None
    priority: Optional[Priority] = None
    currency: Optional[str] = None


# =============================================================================
# Pure helpers
# =============================================================================


def normalize_text(text: Optional[str]) -> str:
    """Lowercase and collapse whitespace."""
    if not text:
        return ""
    return " ".join(text.lower().split())


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """
    Parse an amount token into a positive Decimal.

    Handles "1000", "1,000", "1000.50", "500k", "2m" and a currency code
    around the number. Returns None for anything that is not strictly positive.
    """
    if not raw:
        return None

    cleaned = CURRENCY_RE.sub("", raw.lower()).strip().replace(",", "")
    multiplier = 1
    if cleaned.endswith("k"):
        multiplier, cleaned = 1_000, cleaned[:-1]
    elif cleaned.endswith("m"):
        multiplier, cleaned = 1_000_000, cleaned[:-1]

    try:
        value = Decimal(cleaned.strip()) * multiplier
    except InvalidOperation:
        return None

    if value <= 0:
        return None
    if value == value.to_integral_value():
        return value.quantize(Decimal(1))
    return value


def find_trigger(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (verb, vocabulary) for the first vocabulary with a matching token."""
    tokens = re.findall(r"[a-z]+", text)
    for vocabulary, verbs in TRIGGER_VOCABULARIES:
        for token in tokens:
            if token in verbs:
                return token, vocabulary
    return None, None


def find_currency(text: str) -> Optional[str]:
    match = CURRENCY_RE.search(text)
    return match.group(1).upper() if match else None


def find_priority(text: str) -> Optional[Priority]:
    for phrase, priority in PRIORITY_PHRASES:
        if re.search(rf"\b{phrase}\b", text):
            return priority
    return None


def _month_number(name: str) -> int:
    return MONTHS[name[:3]]


def find_date(text: str, today: Optional[date] = None) -> Tuple[Optional[str], Optional[date]]:
    """
    Find an unambiguous date token.

    Returns (token, resolved date). Tokens that look like dates but do not
    form a valid calendar date are ignored.
    """
    today = today or date.today()

    match = _ISO_DATE_RE.search(text)
    if match:
        try:
            return match.group(0), date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            pass

    match = _DMY_DATE_RE.search(text)
    if match:
        year = int(match.group(3))
        if year < 100:
            year += 2000
        try:
            return match.group(0), date(year, int(match.group(2)), int(match.group(1)))
        except ValueError:
            pass

    match = _DAY_MONTH_RE.search(text)
    if match:
        year = int(match.group(3)) if match.group(3) else today.year
        try:
            return match.group(0), date(year, _month_number(match.group(2)), int(match.group(1)))
        except ValueError:
            pass

    match = _MONTH_DAY_RE.search(text)
    if match:
        year = int(match.group(3)) if match.group(3) else today.year
        try:
            return match.group(0), date(year, _month_number(match.group(1)), int(match.group(2)))
        except ValueError:
            pass

    match = _RELATIVE_DATE_RE.search(text)
    if match:
        word = match.group(1)
        if word == "yesterday":
            return word, today - timedelta(days=1)
        return word, today

    return None, None


def find_amount(text: str) -> Tuple[Optional[Decimal], Optional[Tuple[int, int]]]:
    """Return the first plausible amount and the span it occupies."""
    for match in AMOUNT_RE.finditer(text):
        value = parse_amount(match.group("amount"))
        if value is not None:
            return value, match.span()
    return None, None


def clean_description(text: Optional[str]) -> Optional[str]:
    """Normalize whitespace, drop trailing punctuation and cap the length."""
    if not text:
        return None
    cleaned = " ".join(text.split())
    cleaned = re.sub(r"[,.;:!]+$", "", cleaned).strip()
    if not cleaned:
        return None
    return cleaned[:MAX_DESCRIPTION_LENGTH]


def strip_edge_words(text: str) -> str:
    """Drop prepositions and fillers from both ends of a phrase."""
    words = text.split()
    while words and (words[0] in PREPOSITIONS or words[0] in LEADING_FILLERS):
        words.pop(0)
    while words and words[-1] in PREPOSITIONS:
        words.pop()
    return " ".join(words)


# =============================================================================
# Feature extraction
# =============================================================================


def _blank_span(text: str, span: Tuple[int, int]) -> str:
    start, end = span
    return text[:start] + " " * (end - start) + text[end:]


def extract_features(text: Optional[str], today: Optional[date] = None) -> LexicalFeatures:
    """
    Scan a message for everything the intent rules need.

    The date token is blanked out before looking for the amount so that
    "15 feb" never reads as 15.
    """
    normalized = normalize_text(text)
    if not normalized:
        return LexicalFeatures(text="")

    date_token, resolved_date = find_date(normalized, today)
    scan = normalized
    if date_token:
        start = scan.find(date_token)
        scan = _blank_span(scan, (start, start + len(date_token)))

    amount, amount_span = find_amount(scan)
    verb, vocabulary = find_trigger(scan)

    # Whatever remains after removing the verb and the amount is the object
    remainder = _blank_span(scan, amount_span) if amount_span else scan
    if verb:
        remainder = re.sub(rf"\b{verb}\b", " ", remainder)
    remainder = CURRENCY_RE.sub(" ", remainder)
    description = clean_description(strip_edge_words(" ".join(remainder.split())))

    return LexicalFeatures(
        text=normalized,
        raw_text=" ".join(text.split()),
        undated_text=" ".join(scan.split()),
        amount=amount,
        description=description,
        trigger_verb=verb,
        vocabulary=vocabulary,
        date_token=date_token,
        resolved_date=resolved_date,
        priority=find_priority(normalized),
        currency=find_currency(normalized),
    )
