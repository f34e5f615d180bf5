"""Bloom filter engine: sizing, hashing and bit set/test.

The engine owns the mathematics of the filter and nothing else. It knows
how large a bit array a given capacity and error rate require, how to turn
an item into bit positions, and how to set and test those positions. The
handle in ``pyblossom.filter`` and the codec in ``pyblossom.codec`` build on
the small functional surface exposed here: ``init``, ``add``, ``check`` and
``free``.

Sizing:
    - Number of slices (hash functions): k = ceil(log2(1/P))
    - Bits per slice: m = ceil(n × |ln(P)| / (k × (ln(2))²))
    - Bytes in the buffer: ceil(k × m / 8)

The bit array is allocated in whole bytes so its buffer carries no pad bits;
the trailing bits past ``k × m`` are never addressed by a hash.

Requirements:
    - bitarray: bit array storage exposing the buffer protocol
    - xxhash: fast non-cryptographic hashing for typical filter sizes
"""
import hashlib
import logging
import math
from struct import pack, unpack

import xxhash

try:
    import bitarray
except ImportError:
    raise ImportError('pyblossom requires bitarray >= 2.0')

logger = logging.getLogger(__name__)

UINT32_MAX = 0xFFFFFFFF


def make_hashfuncs(num_slices, num_bits):
    """Create the hash generator for a filter of the given shape.

    A single digest is unpacked into several slice indices, so the digest
    function is picked by how many bits the whole set of indices needs:
    xxh128 up to 128 bits, then SHA-1, SHA-256, SHA-384 and SHA-512.

    Args:
        num_slices (int): Number of indices to yield per item.
        num_bits (int): Size of each slice; indices fall in [0, num_bits).

    Returns:
        tuple: ``(hash_maker, hashfn)`` where ``hash_maker(key)`` yields
            ``num_slices`` indices and ``hashfn`` is the digest constructor.
    """
    if num_bits >= (1 << 31):
        fmt_code, chunk_size = 'Q', 8
    elif num_bits >= (1 << 15):
        fmt_code, chunk_size = 'I', 4
    else:
        fmt_code, chunk_size = 'H', 2

    total_hash_bits = 8 * num_slices * chunk_size
    if total_hash_bits > 384:
        hashfn = hashlib.sha512
    elif total_hash_bits > 256:
        hashfn = hashlib.sha384
    elif total_hash_bits > 160:
        hashfn = hashlib.sha256
    elif total_hash_bits > 128:
        hashfn = hashlib.sha1
    else:
        hashfn = xxhash.xxh128

    fmt = fmt_code * (hashfn().digest_size // chunk_size)
    num_salts, extra = divmod(num_slices, len(fmt))
    if extra:
        num_salts += 1
    salts = tuple(hashfn(hashfn(pack('I', i)).digest()) for i in range(num_salts))

    def _hash_maker(key):
        key = item_bytes(key)
        i = 0
        for salt in salts:
            h = salt.copy()
            h.update(key)
            for uint in unpack(fmt, h.digest()):
                yield uint % num_bits
                i += 1
                if i >= num_slices:
                    return

    return _hash_maker, hashfn


def item_bytes(item):
    """Normalize a member to bytes.

    ``str`` items are UTF-8 encoded; bytes-like items (``bytes``,
    ``bytearray``, ``memoryview``) are used as-is.

    Raises:
        TypeError: If ``item`` is neither text nor bytes-like.
    """
    if isinstance(item, str):
        return item.encode('utf-8')
    if isinstance(item, bytes):
        return item
    if isinstance(item, (bytearray, memoryview)):
        return bytes(item)
    raise TypeError("filter members must be str or bytes-like, not %s"
                    % type(item).__name__)


class FilterState:
    """Sized bit array plus the parameters it was sized for.

    Instances are created by ``init`` and owned by exactly one handle. The
    buffer length never changes after allocation.

    Attributes:
        capacity (int): Number of members the filter is sized for.
        error_rate (float): Target false positive probability.
        num_slices (int): Number of hash functions.
        bits_per_slice (int): Bits addressed by each hash function.
        num_bits (int): Bits addressed in total, ``num_slices * bits_per_slice``.
        bytes_len (int): Length of the bit array buffer in bytes.
        bit_array (bitarray.bitarray): The bits, ``bytes_len * 8`` long, or
            ``None`` once freed.
    """

    def __init__(self, capacity, error_rate, num_slices, bits_per_slice):
        self.capacity = capacity
        self.error_rate = error_rate
        self.num_slices = num_slices
        self.bits_per_slice = bits_per_slice
        self.num_bits = num_slices * bits_per_slice
        self.bytes_len = (self.num_bits + 7) // 8
        self.make_hashes, self.hashfn = make_hashfuncs(num_slices, bits_per_slice)
        self.bit_array = bitarray.bitarray(self.bytes_len * 8, endian='little')
        self.bit_array.setall(False)

    def __repr__(self):
        return '<FilterState capacity=%d error_rate=%r bytes_len=%d>' % (
            self.capacity, self.error_rate, self.bytes_len)


def sizing(capacity, error_rate):
    """Compute the shape of a filter without allocating it.

    Args:
        capacity (int): Members the filter should hold, 1 to 2**32 - 1.
        error_rate (float): Target false positive probability in (0, 1).

    Returns:
        tuple: ``(num_slices, bits_per_slice, bytes_len)``.

    Raises:
        ValueError: If either parameter is out of range.
    """
    if not (0 < error_rate < 1):
        raise ValueError("Error_Rate must be between 0 and 1.")
    if not 0 < capacity <= UINT32_MAX:
        raise ValueError("Capacity must be between 1 and 2**32 - 1")

    num_slices = int(math.ceil(math.log(1.0 / error_rate, 2)))
    bits_per_slice = int(math.ceil(
        (capacity * abs(math.log(error_rate))) /
        (num_slices * (math.log(2) ** 2))))
    return num_slices, bits_per_slice, (num_slices * bits_per_slice + 7) // 8


def init(capacity, error_rate):
    """Allocate a zeroed ``FilterState`` for ``capacity`` and ``error_rate``.

    Args:
        capacity (int): Members the filter should hold, 1 to 2**32 - 1.
        error_rate (float): Target false positive probability in (0, 1).

    Returns:
        FilterState: A freshly allocated state with every bit cleared.

    Raises:
        ValueError: If either parameter is out of range.
        MemoryError: If the bit array cannot be allocated.
    """
    num_slices, bits_per_slice, _ = sizing(capacity, error_rate)
    state = FilterState(capacity, error_rate, num_slices, bits_per_slice)
    logger.debug(f"Allocated filter state capacity={capacity} "
                 f"error_rate={error_rate} bytes_len={state.bytes_len}")
    return state


def add(state, item):
    """Set the bits derived from ``item``."""
    bits = state.bit_array
    bits_per_slice = state.bits_per_slice
    offset = 0
    for k in state.make_hashes(item):
        bits[offset + k] = True
        offset += bits_per_slice


def check(state, item):
    """Return True if ``item`` may be a member, False if it certainly is not."""
    bits = state.bit_array
    bits_per_slice = state.bits_per_slice
    offset = 0
    for k in state.make_hashes(item):
        if not bits[offset + k]:
            return False
        offset += bits_per_slice
    return True


def free(state):
    """Detach the bit array from ``state``.

    Memory is reclaimed once no buffer exported from the array is alive.
    """
    state.bit_array = None
    state.bytes_len = 0
