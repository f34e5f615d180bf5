"""16-bit payload checksum used by the wire format."""
import zlib


def fold_checksum(data):
    """Return the CRC-32 of ``data`` folded to 16 bits.

    The low and high halves of the standard CRC-32 are XORed together. The
    same derivation is used when writing a payload and when verifying one.

    Args:
        data: Any bytes-like object.

    Returns:
        int: Checksum in range [0, 0xFFFF].

    Example:
        >>> hex(fold_checksum(b'123456789'))
        '0xf2d2'
    """
    crc = zlib.crc32(data) & 0xFFFFFFFF
    return (crc & 0xFFFF) ^ (crc >> 16)
