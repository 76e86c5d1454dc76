"""
Opt-out Registry
================
Suppression entries, keyword extraction and the registry that ties them
together.
"""

from .models import GLOBAL_SCOPE, OptOutEntry, OptOutMethod, campaign_scope
from .keywords import (
    KeywordAction,
    KeywordMatch,
    STOP_KEYWORDS,
    START_KEYWORDS,
    extract_keyword,
)
from .registry import OptOutRegistry, scopes_for

__all__ = [
    "GLOBAL_SCOPE",
    "OptOutEntry",
    "OptOutMethod",
    "campaign_scope",
    "KeywordAction",
    "KeywordMatch",
    "STOP_KEYWORDS",
    "START_KEYWORDS",
    "extract_keyword",
    "OptOutRegistry",
    "scopes_for",
]
