"""
Message Segmentation and Encoding
==================================
Encoding detection, segment counting and cost estimation for outbound SMS.
"""

from .models import (
    EncodingType,
    SegmentEstimate,
    SegmentMismatch,
    GSM7_BASIC,
    GSM7_EXTENDED,
)
from .encoding import detect_encoding, count_units
from .segmentation import (
    calculate_segments,
    estimate,
    estimate_cost,
    split_message,
    reconcile,
)
from .phone_utils import validate_e164, normalize_phone, nanp_area_code

__all__ = [
    # Models
    "EncodingType",
    "SegmentEstimate",
    "SegmentMismatch",
    "GSM7_BASIC",
    "GSM7_EXTENDED",
    # Encoding
    "detect_encoding",
    "count_units",
    # Segmentation
    "calculate_segments",
    "estimate",
    "estimate_cost",
    "split_message",
    "reconcile",
    # Phone
    "validate_e164",
    "normalize_phone",
    "nanp_area_code",
]
