"""Bit-level packing primitives.

Every wire format in the simulator is described as a list of field widths in
bits. `spread` packs (value, width) pairs most-significant-bit first into bytes
and `divide` splits bytes back into integers, so fields may straddle byte
boundaries freely.
"""

from typing import Iterable, List, Optional, Sequence, Tuple


def limit(value: int, bits: int) -> int:
    """Mask a value to its low `bits` bits.

    Args:
        value: Integer to mask.
        bits: Number of bits to keep.

    Returns:
        The masked value.
    """
    return int(value) & ((1 << bits) - 1)


def spread(*fields: Tuple[int, int]) -> bytes:
    """Pack (value, width) pairs into a byte sequence.

    Fields are written most-significant-bit first. When the total width is not
    a multiple of 8 the last byte is padded with zero bits on the right.

    Args:
        *fields: Pairs of (value, width in bits).

    Returns:
        The packed bytes.

    Raises:
        ValueError: If a width is not positive or a value does not fit its width.
    """
    accumulator = 0
    total = 0
    for value, width in fields:
        if width <= 0:
            raise ValueError(f"Field width must be positive, got {width}")
        if value < 0 or value >> width:
            raise ValueError(f"Value {value} does not fit in {width} bits")
        accumulator = (accumulator << width) | value
        total += width
    padding = -total % 8
    return (accumulator << padding).to_bytes((total + padding) // 8, "big")


def divide(data: bytes, widths: Sequence[int]) -> List[int]:
    """Split a byte sequence into integers of the given bit widths.

    Bits left over after the last declared width are returned as further
    8-bit chunks, the final chunk being smaller if fewer bits remain.

    Args:
        data: Bytes to split.
        widths: Bit widths of the leading fields.

    Returns:
        One integer per declared width followed by the trailing chunks.

    Raises:
        ValueError: If the widths need more bits than `data` holds.
    """
    available = len(data) * 8
    if sum(widths) > available:
        raise ValueError(
            f"Widths need {sum(widths)} bits but only {available} are available"
        )
    number = int.from_bytes(data, "big")
    remaining = available
    values: List[int] = []

    def take(width: int) -> int:
        nonlocal remaining
        remaining -= width
        return (number >> remaining) & ((1 << width) - 1)

    for width in widths:
        values.append(take(width))
    while remaining > 0:
        values.append(take(min(8, remaining)))
    return values


def pad_to_32bit_words(
    data: Iterable[int], min_length: int = 0, max_length: Optional[int] = None
) -> bytes:
    """Left-pad data with zero bytes up to the next multiple of 4 bytes.

    Args:
        data: Bytes (or byte values) to pad.
        min_length: Minimum length of the result in bytes.
        max_length: Maximum length of the result in bytes, if bounded.

    Returns:
        The padded bytes.

    Raises:
        ValueError: If the padded data would exceed `max_length`.
    """
    data = bytes(data)
    length = max(-(-len(data) // 4) * 4, min_length)
    if max_length is not None and length > max_length:
        raise ValueError(f"{len(data)} bytes cannot be padded within {max_length}")
    return bytes(length - len(data)) + data


def to_binary(data: bytes) -> str:
    """Render bytes as a string of zeros and ones."""
    return "".join(f"{byte:08b}" for byte in data)
