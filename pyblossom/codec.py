"""Binary wire format for a single Bloom filter.

Layout (all integers big-endian, no padding):

    ======  ====  ===============  =========================================
    Offset  Size  Field            Encoding
    ======  ====  ===============  =========================================
    0       2     checksum         CRC-32 of the payload folded to 16 bits
    2       2     error_rate_code  round(1 / error_rate), nonzero
    4       4     cardinality      capacity the filter was created with
    8       N     payload          raw bit array bytes
    ======  ====  ===============  =========================================

The payload carries no length field. Its length is implied by the
cardinality and error rate through the engine's sizing and is checked
against the bytes actually supplied when decoding.

The error rate travels as the rounded reciprocal, so decoding always yields
``1 / error_rate_code``. Only rates whose reciprocal is an integer up to
65535 survive a round trip unchanged.
"""
import logging
from struct import calcsize, pack, unpack_from

from pyblossom import engine
from pyblossom.checksum import fold_checksum
from pyblossom.errors import (ChecksumMismatchError, InitializationError,
                              InvalidParametersError, MalformedPayloadError,
                              SizeMismatchError)

logger = logging.getLogger(__name__)

HEADER_FMT = '>HHI'
HEADER_SIZE = calcsize(HEADER_FMT)
MIN_PAYLOAD_SIZE = HEADER_SIZE + 1
MIN_ERROR_RATE_CODE = 2
MAX_ERROR_RATE_CODE = 0xFFFF


def error_rate_code(error_rate):
    """Return the 16-bit wire code for ``error_rate``.

    Code 1 is never produced: it would decode to an error rate of 1.0, which
    the engine rejects.

    Raises:
        InvalidParametersError: If the rounded reciprocal is below 2 (error
            rates above 2/3) or does not fit in 16 unsigned bits (error rates
            below 1/65535).
    """
    code = int(round(1.0 / error_rate))
    if code < MIN_ERROR_RATE_CODE:
        raise InvalidParametersError(
            "error rate %r cannot be encoded: reciprocal rounds to %d, "
            "need at least %d" % (error_rate, code, MIN_ERROR_RATE_CODE))
    if code > MAX_ERROR_RATE_CODE:
        raise InvalidParametersError(
            "error rate %r cannot be encoded: reciprocal %d does not fit "
            "in 16 bits" % (error_rate, code))
    return code


def encode(state):
    """Serialize a ``FilterState`` to a fresh ``bytes`` object.

    The checksum covers the bit array only, never the header. The state is
    not modified.

    Args:
        state (engine.FilterState): The state to serialize.

    Returns:
        bytes: Header followed by the raw bit array bytes.

    Raises:
        InvalidParametersError: If the error rate cannot be expressed as a
            16-bit code.

    Example:
        >>> state = engine.init(1000, 0.01)
        >>> payload = encode(state)
        >>> len(payload) == HEADER_SIZE + state.bytes_len
        True
    """
    code = error_rate_code(state.error_rate)
    payload = state.bit_array.tobytes()
    header = pack(HEADER_FMT, fold_checksum(payload), code, state.capacity)
    return header + payload


def decode(data):
    """Rebuild a ``FilterState`` from its serialized form.

    The checks run in wire order: length, checksum, error rate code, engine
    parameters, payload size. All of them run before the bit array is
    allocated, so a header declaring a huge filter costs nothing. Any
    failure is a rejection; no state is returned.

    Args:
        data: A bytes-like object holding a complete serialized filter.

    Returns:
        engine.FilterState: A new state with the payload copied in.

    Raises:
        TypeError: If ``data`` does not support the buffer protocol.
        MalformedPayloadError: If ``data`` is shorter than 9 bytes.
        ChecksumMismatchError: If the payload does not match the checksum.
        InvalidParametersError: If the error rate code is zero or the engine
            rejects the declared parameters.
        InitializationError: If the engine cannot allocate the bit array.
        SizeMismatchError: If the payload length differs from the length the
            engine computes for the declared parameters.
    """
    with memoryview(data) as raw:
        view = raw.cast('B')
        try:
            return _decode_view(view)
        finally:
            view.release()


def _decode_view(view):
    if len(view) < MIN_PAYLOAD_SIZE:
        raise MalformedPayloadError(
            "incomplete payload: %d bytes, need at least %d"
            % (len(view), MIN_PAYLOAD_SIZE))

    checksum, code, cardinality = unpack_from(HEADER_FMT, view)
    payload = view[HEADER_SIZE:]

    expected = fold_checksum(payload)
    if expected != checksum:
        logger.warning(f"Checksum mismatch: stored {checksum:#06x}, "
                       f"computed {expected:#06x}")
        raise ChecksumMismatchError(
            "checksum mismatch: stored %#06x, computed %#06x"
            % (checksum, expected))

    if code == 0:
        raise InvalidParametersError("error rate code must be nonzero")

    error_rate = 1.0 / code
    try:
        _, _, bytes_len = engine.sizing(cardinality, error_rate)
    except ValueError as exc:
        raise InvalidParametersError(
            "invalid filter parameters cardinality=%d error_rate=%r: %s"
            % (cardinality, error_rate, exc)) from exc

    if len(payload) != bytes_len:
        raise SizeMismatchError(
            "invalid data length: got %d bytes, expected %d"
            % (len(payload), bytes_len))

    try:
        state = engine.init(cardinality, error_rate)
    except MemoryError as exc:
        raise InitializationError(
            "could not allocate filter for cardinality=%d" % cardinality) from exc

    with memoryview(state.bit_array) as target:
        target[:] = payload
    logger.debug(f"Decoded filter cardinality={cardinality} "
                 f"error_rate_code={code} bytes_len={state.bytes_len}")
    return state
