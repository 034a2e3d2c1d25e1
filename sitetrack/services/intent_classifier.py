"""
Intent Classifier: ordered rule matching over lexical features.

Rules are (name, kind, confidence, matcher) entries evaluated in a fixed
order; the first matcher that returns fields wins. Confidence is a property
of the rule, never computed. A wrong structured action on money is worse
than an honest Unknown, so ambiguous shapes carry low confidence and are
left for the Dispatcher's threshold to reject.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from sitetrack.config import settings
from sitetrack.logging_config import get_logger
from sitetrack.schemas.intent import IntentKind, ParsedIntent, Priority
from sitetrack.services.lexical_extractor import (
    CURRENCY_RE,
    TRIGGER_VOCABULARIES,
    LexicalFeatures,
    amount_pattern,
    clean_description,
    extract_features,
    parse_amount,
    strip_edge_words,
)

logger = get_logger(__name__)

Fields = Dict[str, Any]
Matcher = Callable[[LexicalFeatures], Optional[Fields]]

AMT = amount_pattern()

IMAGE_CONFIDENCE = 0.95
CAPTIONED_IMAGE_CONFIDENCE = 0.90
CAPTION_PENALTY = 0.95

_ALL_TRIGGER_VERBS = frozenset().union(*(verbs for _, verbs in TRIGGER_VOCABULARIES))


@dataclass(frozen=True)
class IntentRule:
    """One tagged predicate/result pair."""

    name: str
    kind: IntentKind
    confidence: float
    matcher: Matcher


# =============================================================================
# Matchers
# =============================================================================


def _describe(raw: Optional[str]) -> Optional[str]:
    """Turn a captured phrase into an expense description."""
    if not raw:
        return None
    text = CURRENCY_RE.sub(" ", raw)
    words = [w for w in text.split() if w not in _ALL_TRIGGER_VERBS]
    return clean_description(strip_edge_words(" ".join(words)))


def _task(pattern: str, priority: Optional[Priority] = None) -> Matcher:
    # Titles keep the sender's casing
    regex = re.compile(pattern, re.IGNORECASE)

    def match(features: LexicalFeatures) -> Optional[Fields]:
        found = regex.search(features.raw_text)
        if not found:
            return None
        title = clean_description(found.group("title"))
        if not title:
            return None
        return {
            "description": title,
            "priority": priority or features.priority or Priority.MEDIUM,
        }

    return match


def _budget(pattern: str) -> Matcher:
    regex = re.compile(pattern)

    def match(features: LexicalFeatures) -> Optional[Fields]:
        found = regex.search(features.text)
        if not found:
            return None
        amount = parse_amount(found.group("amount"))
        if amount is None:
            return None
        return {"amount": amount}

    return match


def _expense(
    pattern: str,
    vocabulary: Optional[str] = None,
    default_description: Optional[str] = None,
) -> Matcher:
    """Expense matcher; verb-led rules are gated on the vocabulary the extractor found."""
    regex = re.compile(pattern)

    def match(features: LexicalFeatures) -> Optional[Fields]:
        if vocabulary and features.vocabulary != vocabulary:
            return None
        found = regex.search(features.undated_text)
        if not found:
            return None
        amount = parse_amount(found.group("amount"))
        if amount is None:
            return None
        description = _describe(found.groupdict().get("desc")) or default_description
        if not description:
            return None
        return {"amount": amount, "description": description}

    return match


def _query(patterns: Sequence[str]) -> Matcher:
    regexes = [re.compile(p) for p in patterns]

    def match(features: LexicalFeatures) -> Optional[Fields]:
        if any(r.search(features.text) for r in regexes):
            return {}
        return None

    return match


def _bare_amount(features: LexicalFeatures) -> Optional[Fields]:
    if features.amount is None or not features.description:
        return None
    return {"amount": features.amount, "description": features.description}


# =============================================================================
# Rule table (order is significant)
# =============================================================================

TASK_RULES: Tuple[IntentRule, ...] = (
    IntentRule("task_prefix", IntentKind.CREATE_TASK, 0.95,
               _task(r"^(?:add\s+)?task\s*:\s*(?P<title>.+)$")),
    IntentRule("todo_prefix", IntentKind.CREATE_TASK, 0.95,
               _task(r"^(?:todo|to\s+do)\s*:\s*(?P<title>.+)$")),
    IntentRule("priority_prefix", IntentKind.CREATE_TASK, 0.95,
               _task(r"^(?:urgent|important|priority)\s*:\s*(?P<title>.+)$", Priority.HIGH)),
    IntentRule("reminder_phrase", IntentKind.CREATE_TASK, 0.90,
               _task(r"^(?:please\s+)?(?:(?:i|we)\s+)?(?:remind\s+me\s+to|need\s+to|have\s+to)\s+(?P<title>.+)$")),
)

BUDGET_RULES: Tuple[IntentRule, ...] = (
    IntentRule("budget_possessive", IntentKind.SET_BUDGET, 0.95,
               _budget(rf"\b(?:my|project)\s+budget\s+(?:is\s+)?{AMT}")),
    IntentRule("set_budget", IntentKind.SET_BUDGET, 0.95,
               _budget(rf"\b(?:set\s+(?:the\s+)?)?budget(?:\s+(?:is|to|of))?\s+{AMT}")),
    IntentRule("budget_luganda", IntentKind.SET_BUDGET, 0.90,
               _budget(rf"\bbudget\s+(?:yange|yaffe)\s+{AMT}")),
)

# Verb-led rules only fire for the vocabulary the extractor matched.
EXPENSE_RULES: Tuple[IntentRule, ...] = (
    IntentRule("spent_amount_first", IntentKind.LOG_EXPENSE, 0.95,
               _expense(rf"\b(?:spent|paid|used)\s+{AMT}\s+(?:(?:on|for)\s+)?(?P<desc>.+)$", "english")),
    IntentRule("bought_item_first", IntentKind.LOG_EXPENSE, 0.95,
               _expense(rf"\b(?:bought|purchased)\s+(?P<desc>.+?)\s+(?:for\s+)?{AMT}", "english")),
    IntentRule("spent_item_first", IntentKind.LOG_EXPENSE, 0.90,
               _expense(rf"\b(?:spent|paid|used)\s+(?P<desc>.+?)\s+(?:for\s+)?{AMT}\s*$", "english")),
    IntentRule("nimaze_amount_first", IntentKind.LOG_EXPENSE, 0.95,
               _expense(rf"\b(?:nimaze|nasasudde)\s+{AMT}\s+(?:(?:ku|pa)\s+)?(?P<desc>.+)$", "luganda")),
    IntentRule("naguze_item_first", IntentKind.LOG_EXPENSE, 0.95,
               _expense(rf"\b(?:naguze|natundidde)\s+(?P<desc>.+?)\s+{AMT}", "luganda")),
    IntentRule("omaze_amount", IntentKind.LOG_EXPENSE, 0.90,
               _expense(rf"\b(?:omaze|wasasudde)\s+{AMT}(?:\s+(?:ku\s+)?(?P<desc>.+))?$", "luganda", "Expense")),
    IntentRule("amount_first", IntentKind.LOG_EXPENSE, 0.85,
               _expense(rf"^{AMT}\s+(?:for\s+)?(?P<desc>.+)$")),
    IntentRule("item_first", IntentKind.LOG_EXPENSE, 0.80,
               _expense(rf"^(?P<desc>[a-z][a-z ]*?)\s+{AMT}(?:\s.*)?$")),
)

QUERY_RULES: Tuple[IntentRule, ...] = (
    IntentRule("expense_query", IntentKind.QUERY_EXPENSES, 0.90, _query((
        r"\bhow\s+much\b|\btotal\b|\bwhat\b.*\bspent\b|\bshow\b.*\bexpenses\b|\blist\b.*\bexpenses\b",
        r"\b(?:report|summary|balance|remaining)\b",
        r"\bspent\s+this\s+(?:week|month)\b",
        r"\bwhere\b.*\bmoney\b|\bhow\b.*\bmuch\b.*\bleft\b|\bbudget\s+status\b",
        r"\bssente\s+zmeka\b|\bomaze\s+meka\b|\bensimbi\s+zmeka\b",
        r"\b(?:lipoota|okebera)\b",
    ))),
)

FALLBACK_RULES: Tuple[IntentRule, ...] = (
    IntentRule("bare_amount", IntentKind.LOG_EXPENSE, 0.60, _bare_amount),
)

RULES: Tuple[IntentRule, ...] = TASK_RULES + BUDGET_RULES + EXPENSE_RULES + QUERY_RULES + FALLBACK_RULES


# =============================================================================
# Classifier
# =============================================================================


class IntentClassifier:
    """
    First-match-wins classifier.

    Stateless apart from configuration: the default currency for amounts
    without an explicit code and a clock for resolving relative dates.
    """

    def __init__(
        self,
        rules: Sequence[IntentRule] = RULES,
        default_currency: Optional[str] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.rules = tuple(rules)
        self.default_currency = default_currency or settings.default_currency
        self._today = today or date.today

    def classify(self, text: Optional[str], media_refs: Sequence[str] = ()) -> ParsedIntent:
        """Classify one message; only the first media reference is considered."""
        features = extract_features(text, today=self._today())
        media_ref = media_refs[0] if media_refs else None

        if media_ref:
            intent = self._classify_media(text, features, media_ref)
        else:
            intent = self._classify_text(features)

        logger.info(
            "Intent classified",
            kind=intent.kind.value,
            confidence=intent.confidence,
            rule=intent.rule,
            text=features.text[:100],
        )
        return intent

    def _classify_text(self, features: LexicalFeatures) -> ParsedIntent:
        if not features.text:
            return ParsedIntent.unknown()
        for rule in self.rules:
            fields = rule.matcher(features)
            if fields is not None:
                return self._build(rule, fields, features)
        return ParsedIntent.unknown()

    def _classify_media(
        self, caption: Optional[str], features: LexicalFeatures, media_ref: str
    ) -> ParsedIntent:
        if not features.text:
            return ParsedIntent(
                kind=IntentKind.LOG_IMAGE,
                confidence=IMAGE_CONFIDENCE,
                media_ref=media_ref,
                rule="image",
            )

        if features.amount is not None:
            for rule in self.rules:
                if rule.kind != IntentKind.LOG_EXPENSE or rule in FALLBACK_RULES:
                    continue
                fields = rule.matcher(features)
                if fields is not None:
                    intent = self._build(rule, fields, features)
                    return intent.model_copy(update={
                        "confidence": round(rule.confidence * CAPTION_PENALTY, 4),
                        "media_ref": media_ref,
                        "rule": f"captioned_{rule.name}",
                    })

        return ParsedIntent(
            kind=IntentKind.LOG_IMAGE,
            confidence=CAPTIONED_IMAGE_CONFIDENCE,
            description=clean_description(caption),
            media_ref=media_ref,
            rule="captioned_image",
        )

    def _build(self, rule: IntentRule, fields: Fields, features: LexicalFeatures) -> ParsedIntent:
        if rule.kind == IntentKind.LOG_EXPENSE:
            fields = {
                **fields,
                "currency": features.currency or self.default_currency,
                "expense_date": features.resolved_date,
            }
        elif rule.kind == IntentKind.SET_BUDGET:
            fields = {**fields, "currency": features.currency or self.default_currency}
        return ParsedIntent(kind=rule.kind, confidence=rule.confidence, rule=rule.name, **fields)
