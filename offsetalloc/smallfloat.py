"""Small floating point encoding used to map sizes onto allocator bins.

Bin sizes follow a floating point (exponent + mantissa) distribution, a
piecewise linear approximation of a logarithm.  This keeps the average
overhead percentage the same for every size class.
"""

from __future__ import annotations

MANTISSA_BITS = 3
MANTISSA_VALUE = 1 << MANTISSA_BITS
MANTISSA_MASK = MANTISSA_VALUE - 1

_UINT32_MAX = 0xFFFFFFFF


def _check_uint32(value: int, name: str) -> None:
    if not 0 <= value <= _UINT32_MAX:
        raise ValueError(f"{name} must be an unsigned 32-bit integer, got {value}")


def _split(size: int) -> tuple[int, int, int]:
    """Return (exponent, mantissa, mantissa start bit) for a normalized size."""
    highest_set_bit = size.bit_length() - 1
    mantissa_start_bit = highest_set_bit - MANTISSA_BITS
    exponent = mantissa_start_bit + 1
    mantissa = (size >> mantissa_start_bit) & MANTISSA_MASK
    return exponent, mantissa, mantissa_start_bit


def uint_to_float_round_up(size: int) -> int:
    """Encode ``size`` as a small float, rounding up to the next bin."""
    _check_uint32(size, "size")
    if size < MANTISSA_VALUE:
        return size
    exponent, mantissa, start_bit = _split(size)
    if size & ((1 << start_bit) - 1):
        mantissa += 1
    # Addition lets a mantissa overflow carry into the exponent.
    return (exponent << MANTISSA_BITS) + mantissa


def uint_to_float_round_down(size: int) -> int:
    """Encode ``size`` as a small float, rounding down to the enclosing bin."""
    _check_uint32(size, "size")
    if size < MANTISSA_VALUE:
        return size
    exponent, mantissa, _ = _split(size)
    return (exponent << MANTISSA_BITS) | mantissa


def float_to_uint(float_value: int) -> int:
    """Decode a small float back into the size at the bottom of its bin."""
    if float_value < 0:
        raise ValueError(f"float_value must be non-negative, got {float_value}")
    exponent = float_value >> MANTISSA_BITS
    mantissa = float_value & MANTISSA_MASK
    if exponent == 0:
        return mantissa
    return (mantissa | MANTISSA_VALUE) << (exponent - 1)


def find_lowest_set_bit_after(bit_mask: int, start_bit_index: int) -> int | None:
    """Return the index of the lowest set bit at or above ``start_bit_index``.

    Returns ``None`` when no such bit is set.
    """
    if bit_mask < 0 or start_bit_index < 0:
        raise ValueError("bit_mask and start_bit_index must be non-negative")
    bits_after = bit_mask & ~((1 << start_bit_index) - 1)
    if not bits_after:
        return None
    return (bits_after & -bits_after).bit_length() - 1