"""
Encoding Detection
==================
Functions for SMS encoding detection and character counting.
"""

from .models import EncodingType, GSM7_BASIC, GSM7_EXTENDED


def detect_encoding(text: str) -> EncodingType:
    """
    Detect the required encoding for a message.

    Args:
        text: Message content

    Returns:
        EncodingType.GSM7 when every character is in the 7-bit default
        alphabet (including its extension table), else EncodingType.UCS2
    """
    for char in text:
        if char not in GSM7_BASIC and char not in GSM7_EXTENDED:
            return EncodingType.UCS2
    return EncodingType.GSM7


def count_units(text: str, encoding: EncodingType) -> int:
    """
    Count the transmission units a message occupies.

    GSM-7 extension characters take two septets. UCS-2 is counted in UTF-16
    code units, so characters outside the BMP (most emoji) take two.
    """
    if encoding == EncodingType.GSM7:
        return sum(2 if char in GSM7_EXTENDED else 1 for char in text)
    return len(text.encode("utf-16-le")) // 2
