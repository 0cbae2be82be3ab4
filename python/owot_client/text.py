"""Splitting text into canvas characters.

The canvas stores one user-perceived character per cell. A cell may hold a
surrogate pair (when text was decoded with surrogates kept apart) or a base
character followed by up to 15 combining marks.
"""

from typing import List, Sequence, Union

COMBINING_LIMIT = 15
PLACEHOLDER = "?"

_COMBINING_RANGES = (
    (0x0300, 0x036F),
    (0x1DC0, 0x1DFF),
    (0x20D0, 0x20FF),
    (0xFE20, 0xFE2F),
)


def is_high_surrogate(code: int) -> bool:
    return 0xD800 <= code <= 0xDBFF


def is_low_surrogate(code: int) -> bool:
    return 0xDC00 <= code <= 0xDFFF


def is_combining(code: int) -> bool:
    return any(low <= code <= high for low, high in _COMBINING_RANGES)


def split_chars(
    text: Union[str, Sequence[str]],
    surrogates: bool = True,
    combining: bool = True,
) -> List[str]:
    """
    Split text into one string per canvas cell.

    Args:
        text: The text to split. A sequence is assumed to be split already
            and is returned as a new list.
        surrogates: Join a high surrogate with the low surrogate after it.
            An unpaired surrogate becomes "?".
        combining: Attach combining marks to the preceding character. When
            False, combining marks are dropped.

    Returns:
        The list of characters.
    """
    if not isinstance(text, str):
        return list(text)

    chars: List[str] = []
    buffer = ""
    pending_high = ""
    comb_count = 0

    for char in text:
        code = ord(char)

        if pending_high:
            if is_low_surrogate(code):
                if buffer:
                    chars.append(buffer)
                buffer = pending_high + char
                pending_high = ""
                comb_count = 0
                continue
            chars.append(PLACEHOLDER)
            pending_high = ""

        if is_low_surrogate(code):
            if buffer:
                chars.append(buffer)
                buffer = ""
            chars.append(PLACEHOLDER)
            comb_count = 0
            continue

        if surrogates and is_high_surrogate(code):
            if buffer:
                chars.append(buffer)
                buffer = ""
            pending_high = char
            continue

        if is_combining(code):
            # a mark with nothing to attach to is dropped
            if combining and buffer and comb_count < COMBINING_LIMIT:
                buffer += char
                comb_count += 1
            continue

        if buffer:
            chars.append(buffer)
        buffer = char
        comb_count = 0

    if pending_high:
        if buffer:
            chars.append(buffer)
            buffer = ""
        chars.append(PLACEHOLDER)
    if buffer:
        chars.append(buffer)

    return chars
