"""
Messaging Models
================
Encoding types, segment limits and estimate results.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional


class EncodingType(str, Enum):
    """SMS encoding types."""
    GSM7 = "GSM-7"
    UCS2 = "UCS-2"


# (single-segment limit, per-part limit once concatenated)
SEGMENT_LIMITS = {
    EncodingType.GSM7: (160, 153),
    EncodingType.UCS2: (70, 67),
}

# GSM 03.38 default alphabet
GSM7_BASIC = frozenset(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)

# Extension table, each costs an escape septet plus the character
GSM7_EXTENDED = frozenset("\f^{}\\[~]|€")


@dataclass(frozen=True)
class SegmentEstimate:
    """Reproducible segmentation and cost for one message body."""
    encoding: EncodingType
    segments: int
    units: int  # septets for GSM-7, UTF-16 code units for UCS-2
    cost: Decimal


@dataclass(frozen=True)
class SegmentMismatch:
    """Difference between the local estimate and what the provider billed."""
    expected_segments: int
    reported_segments: Optional[int]
    expected_cost: Decimal
    reported_cost: Optional[Decimal]

    @property
    def segments_differ(self) -> bool:
        return (
            self.reported_segments is not None
            and self.reported_segments != self.expected_segments
        )

    @property
    def cost_differs(self) -> bool:
        return (
            self.reported_cost is not None
            and self.reported_cost != self.expected_cost
        )
