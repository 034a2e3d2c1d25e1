"""
Category Resolver.

Maps an expense description to one of a fixed, ordered set of categories
by keyword stem. The first category (in precedence order) with a matching
stem wins; nothing matching means ``Miscellaneous``.
"""

import json
import re
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sitetrack.config import settings
from sitetrack.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CATEGORY = "Miscellaneous"

# Precedence order matters: earlier categories win ties.
DEFAULT_CATEGORY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Materials", (
        "cement", "sand", "brick", "steel", "iron", "timber", "wood", "stone",
        "gravel", "aggregate", "nail", "tile", "block", "pipe",
    )),
    ("Labor", (
        "worker", "labour", "labor", "mason", "carpenter", "plumber",
        "electrician", "painter", "wage", "salary", "fundi",
    )),
    ("Equipment", (
        "equipment", "tool", "machine", "excavator", "mixer", "generator",
        "scaffold", "wheelbarrow",
    )),
    ("Transport", (
        "transport", "delivery", "fuel", "petrol", "diesel", "lorry", "truck",
        "vehicle", "boda",
    )),
    (DEFAULT_CATEGORY, ("misc", "other", "sundry")),
)

_TOKEN_RE = re.compile(r"[a-z]+")


class CategoryResolver:
    """Ordered keyword-stem lookup. Total: always returns a category."""

    def __init__(self, keywords: Optional[Iterable[Tuple[str, Sequence[str]]]] = None):
        pairs = list(keywords) if keywords is not None else list(DEFAULT_CATEGORY_KEYWORDS)
        self._keywords: List[Tuple[str, Tuple[str, ...]]] = [
            (category, tuple(stem.lower() for stem in stems)) for category, stems in pairs
        ]

    @property
    def categories(self) -> List[str]:
        """Categories in precedence order, default last if not configured."""
        ordered = [category for category, _ in self._keywords]
        if DEFAULT_CATEGORY not in ordered:
            ordered.append(DEFAULT_CATEGORY)
        return ordered

    def resolve(self, description: Optional[str]) -> str:
        if not description:
            return DEFAULT_CATEGORY

        tokens = _TOKEN_RE.findall(description.lower())
        for category, stems in self._keywords:
            if any(token.startswith(stem) for token in tokens for stem in stems):
                return category
        return DEFAULT_CATEGORY

    def precedence(self, category: str) -> int:
        """Position of a category in the fixed order; unknown categories sort last."""
        ordered = self.categories
        return ordered.index(category) if category in ordered else len(ordered)

    @classmethod
    def from_file(cls, path: str) -> "CategoryResolver":
        """
        Load keywords from a JSON object of ``{"Category": ["stem", ...]}``.

        Key order in the file is the precedence order.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Category keyword file {path} must contain a JSON object")

        pairs: List[Tuple[str, Sequence[str]]] = []
        for category, stems in raw.items():
            if not isinstance(stems, list) or not all(isinstance(s, str) for s in stems):
                raise ValueError(f"Keywords for category {category!r} must be a list of strings")
            pairs.append((category, stems))

        logger.info("Category keywords loaded", path=path, categories=len(pairs))
        return cls(pairs)


@lru_cache(maxsize=1)
def get_category_resolver() -> CategoryResolver:
    """Process-wide resolver, loaded once from ``CATEGORY_KEYWORDS_PATH`` if set."""
    if settings.category_keywords_path:
        return CategoryResolver.from_file(settings.category_keywords_path)
    return CategoryResolver()


def category_totals_sorted(
    totals: Dict[str, Decimal], resolver: Optional[CategoryResolver] = None
) -> List[Tuple[str, Decimal]]:
    """Totals by descending spend, ties broken by category precedence."""
    resolver = resolver or CategoryResolver()
    return sorted(totals.items(), key=lambda item: (-item[1], resolver.precedence(item[0])))
