"""
Content Policy
==============
Keyword classifier for carrier-restricted content categories.
"""

import re
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Pattern


class ContentCategory(str, Enum):
    """Restricted categories (SHAFT plus phishing lures)."""
    SEX = "sex"
    HATE = "hate"
    ALCOHOL = "alcohol"
    FIREARMS = "firearms"
    TOBACCO = "tobacco"
    CANNABIS = "cannabis"
    PHISHING = "phishing"


DEFAULT_RULES: Dict[ContentCategory, List[str]] = {
    ContentCategory.SEX: [r"\bxxx\b", r"\bnudes?\b", r"\bescorts?\b", r"\badult (?:content|videos?)\b"],
    ContentCategory.HATE: [r"\bwhite power\b", r"\bethnic cleansing\b"],
    ContentCategory.ALCOHOL: [r"\bbeer\b", r"\bwine\b", r"\bvodka\b", r"\bwhiske?y\b", r"\bliquor\b", r"\bhappy hour\b"],
    ContentCategory.FIREARMS: [r"\bguns?\b", r"\bfirearms?\b", r"\bammo\b", r"\bammunition\b", r"\brifles?\b"],
    ContentCategory.TOBACCO: [r"\bcigarettes?\b", r"\bcigars?\b", r"\bvapes?\b", r"\bvaping\b", r"\btobacco\b"],
    ContentCategory.CANNABIS: [r"\bcannabis\b", r"\bmarijuana\b", r"\bweed\b", r"\bthc\b", r"\bcbd\b", r"\bdispensary\b"],
    ContentCategory.PHISHING: [
        r"\bverify your (?:account|password)\b",
        r"\baccount (?:has been )?(?:suspended|locked)\b.*\bhttps?://",
        r"\b(?:bit\.ly|tinyurl\.com)/\S+.*\b(?:login|password)\b",
    ],
}


class ContentClassifier:
    """
    Matches message text against per-category regex rules.

    Rules are case-insensitive; categories are evaluated in definition order.
    """

    def __init__(self, rules: Optional[Dict[ContentCategory, Iterable[str]]] = None):
        rules = DEFAULT_RULES if rules is None else rules
        self._rules: Dict[ContentCategory, List[Pattern[str]]] = {
            category: [re.compile(p, re.IGNORECASE) for p in patterns]
            for category, patterns in rules.items()
        }

    def classify(self, text: str) -> List[ContentCategory]:
        """Return every category the text matches."""
        return [
            category
            for category, patterns in self._rules.items()
            if any(p.search(text) for p in patterns)
        ]

    def first_unauthorized(
        self,
        text: str,
        authorized: FrozenSet[str],
    ) -> Optional[ContentCategory]:
        """First matched category not in ``authorized``, if any."""
        for category in self.classify(text):
            if category.value not in authorized:
                return category
        return None
