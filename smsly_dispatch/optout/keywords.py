"""
Opt-out Keyword Extraction
==========================
Detects carrier-mandated STOP/START keywords in inbound message text.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class KeywordAction(str, Enum):
    OPT_OUT = "opt_out"
    OPT_OUT_ALL = "opt_out_all"
    OPT_IN = "opt_in"


STOP_KEYWORDS = frozenset({"STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "QUIT", "END"})
START_KEYWORDS = frozenset({"START", "UNSTOP"})

_WORD = re.compile(r"[A-Za-z]+")


@dataclass(frozen=True)
class KeywordMatch:
    action: KeywordAction
    keyword: str

    @property
    def is_opt_out(self) -> bool:
        return self.action in (KeywordAction.OPT_OUT, KeywordAction.OPT_OUT_ALL)


def extract_keyword(text: Optional[str]) -> Optional[KeywordMatch]:
    """
    Scan text for whole-word opt-out or opt-in keywords, case-insensitively.

    A STOP-class keyword anywhere in the text takes precedence over a
    START-class one, so "START? no, STOP" opts out. STOPALL always opts out
    globally.

    Returns:
        The winning KeywordMatch, or None
    """
    if not text:
        return None

    words = [w.upper() for w in _WORD.findall(text)]

    for word in words:
        if word == "STOPALL":
            return KeywordMatch(KeywordAction.OPT_OUT_ALL, word)
    for word in words:
        if word in STOP_KEYWORDS:
            return KeywordMatch(KeywordAction.OPT_OUT, word)
    for word in words:
        if word in START_KEYWORDS:
            return KeywordMatch(KeywordAction.OPT_IN, word)
    return None
