"""
Compliance
==========
Admission checks: campaign status, opt-outs, quiet hours and content policy.
"""

from .content import ContentCategory, ContentClassifier, DEFAULT_RULES
from .window import NANP_TIMEZONES, QuietHoursPolicy, SendWindow, TimezoneResolver
from .gate import AdmissionDecision, ComplianceGate

__all__ = [
    "ContentCategory",
    "ContentClassifier",
    "DEFAULT_RULES",
    "NANP_TIMEZONES",
    "QuietHoursPolicy",
    "SendWindow",
    "TimezoneResolver",
    "AdmissionDecision",
    "ComplianceGate",
]
