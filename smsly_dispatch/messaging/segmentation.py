"""
Message Segmentation
====================
Segment calculation, cost estimation and reconciliation against the
provider's billed values.
"""

from decimal import Decimal
from typing import List, Optional, Tuple, Union

from .models import (
    EncodingType,
    GSM7_EXTENDED,
    SEGMENT_LIMITS,
    SegmentEstimate,
    SegmentMismatch,
)
from .encoding import detect_encoding, count_units

Rate = Union[Decimal, str, int]


def calculate_segments(text: str) -> Tuple[int, EncodingType, int]:
    """
    Calculate the number of SMS segments required.

    Segment limits:
    - GSM-7: 160 units (single), 153 units per part (concatenated)
    - UCS-2: 70 units (single), 67 units per part (concatenated)

    Args:
        text: Message content

    Returns:
        Tuple of (segments, encoding, unit_count)
    """
    encoding = detect_encoding(text)
    units = count_units(text, encoding)
    single, part = SEGMENT_LIMITS[encoding]

    if units <= single:
        return 1, encoding, units
    return -(-units // part), encoding, units


def estimate(text: str, cost_per_segment: Rate) -> SegmentEstimate:
    """Segment a message and price it at ``cost_per_segment``."""
    segments, encoding, units = calculate_segments(text)
    return SegmentEstimate(
        encoding=encoding,
        segments=segments,
        units=units,
        cost=segments * Decimal(cost_per_segment),
    )


def estimate_cost(text: str, cost_per_segment: Rate = Decimal("0.01")) -> Decimal:
    """
    Estimate the cost to send a message.

    Args:
        text: Message content
        cost_per_segment: Cost per SMS segment

    Returns:
        Estimated cost
    """
    return estimate(text, cost_per_segment).cost


def split_message(text: str) -> List[str]:
    """
    Split a message into its segments for preview.

    GSM-7 parts never break an escape sequence, so an extension character
    that would straddle a boundary moves to the next part.
    """
    segments, encoding, _ = calculate_segments(text)

    if segments == 1:
        return [text]

    _, part = SEGMENT_LIMITS[encoding]
    result: List[str] = []
    current: List[str] = []
    used = 0

    for char in text:
        if encoding == EncodingType.GSM7:
            cost = 2 if char in GSM7_EXTENDED else 1
        else:
            cost = 2 if ord(char) > 0xFFFF else 1

        if used + cost > part:
            result.append("".join(current))
            current, used = [], 0

        current.append(char)
        used += cost

    if current:
        result.append("".join(current))
    return result


def reconcile(
    expected: SegmentEstimate,
    reported_segments: Optional[int] = None,
    reported_cost: Optional[Decimal] = None,
) -> Optional[SegmentMismatch]:
    """
    Compare a local estimate with values reported by the provider.

    Returns:
        A SegmentMismatch when either reported value differs, else None
    """
    mismatch = SegmentMismatch(
        expected_segments=expected.segments,
        reported_segments=reported_segments,
        expected_cost=expected.cost,
        reported_cost=reported_cost,
    )
    if mismatch.segments_differ or mismatch.cost_differs:
        return mismatch
    return None
