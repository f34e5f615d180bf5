"""Test suite for the filter wire format.

Test Coverage:
- Header layout and byte order
- Round trips, including the lossy error rate encoding
- Rejection of short, corrupted and inconsistent payloads
"""
from struct import pack, unpack

import pytest

from pyblossom import codec, engine
from pyblossom.checksum import fold_checksum
from pyblossom.errors import (BlossomError, ChecksumMismatchError,
                              InvalidParametersError, MalformedPayloadError,
                              SizeMismatchError)


# =============================================================================
# Helpers
# =============================================================================

@pytest.fixture
def populated_state():
    """Create a capacity=1000, error_rate=0.01 state holding a few names."""
    state = engine.init(1000, 0.01)
    for name in ["alice", "bob", "carol", "dave"]:
        engine.add(state, name)
    return state


def build_payload(code, cardinality, body, checksum=None):
    if checksum is None:
        checksum = fold_checksum(body)
    return pack('>HHI', checksum, code, cardinality) + body


def flip_bit(payload, index, bit):
    data = bytearray(payload)
    data[index] ^= 1 << bit
    return bytes(data)


# =============================================================================
# Encode Tests
# =============================================================================

class TestEncode:
    """Test serialization of a FilterState."""

    def test_header_size(self):
        assert codec.HEADER_SIZE == 8
        assert codec.MIN_PAYLOAD_SIZE == 9

    def test_length_is_header_plus_bit_array(self, populated_state):
        payload = codec.encode(populated_state)
        assert len(payload) == codec.HEADER_SIZE + populated_state.bytes_len

    def test_header_fields_are_big_endian(self, populated_state):
        """Test the header layout.

        Purpose:
            Offsets 0, 2 and 4 hold checksum, error rate code and
            cardinality in network byte order.

        Expected:
            Fields decode with '>HHI' to the state's values.
        """
        payload = codec.encode(populated_state)
        checksum, code, cardinality = unpack('>HHI', payload[:8])
        assert checksum == fold_checksum(payload[8:])
        assert code == 100
        assert cardinality == 1000
        assert payload[4:8] == b'\x00\x00\x03\xe8'

    def test_payload_is_raw_bit_array(self, populated_state):
        payload = codec.encode(populated_state)
        assert payload[8:] == populated_state.bit_array.tobytes()

    def test_checksum_excludes_header(self):
        state = engine.init(100, 0.01)
        payload = codec.encode(state)
        assert unpack('>H', payload[:2])[0] == fold_checksum(bytes(state.bytes_len))

    def test_encode_does_not_mutate_state(self, populated_state):
        before = populated_state.bit_array.tobytes()
        codec.encode(populated_state)
        assert populated_state.bit_array.tobytes() == before

    def test_returns_independent_bytes(self, populated_state):
        payload = codec.encode(populated_state)
        engine.add(populated_state, "eve")
        assert isinstance(payload, bytes)
        assert payload != codec.encode(populated_state)

    @pytest.mark.parametrize("error_rate,code", [
        (0.01, 100),
        (0.001, 1000),
        (0.003, 333),
        (0.5, 2),
        (0.4, 2),
        (1.0 / 65535, 65535),
    ])
    def test_error_rate_code_is_rounded_reciprocal(self, error_rate, code):
        assert codec.error_rate_code(error_rate) == code

    def test_error_rate_below_16_bit_range_is_rejected(self):
        state = engine.init(100, 0.00001)
        with pytest.raises(InvalidParametersError, match="does not fit in 16 bits"):
            codec.encode(state)

    @pytest.mark.parametrize("error_rate", [0.7, 0.9, 0.99])
    def test_error_rate_above_two_thirds_is_rejected(self, error_rate):
        """Test that code 1 is never written.

        Purpose:
            A code of 1 decodes to an error rate of 1.0, which no filter can
            have, so such a payload could never be loaded again.

        Expected:
            encode raises instead of producing an undecodable payload.
        """
        state = engine.init(100, error_rate)
        with pytest.raises(InvalidParametersError, match="need at least 2"):
            codec.encode(state)


# =============================================================================
# Round Trip Tests
# =============================================================================

class TestRoundTrip:
    """Test decode(encode(state)) for exactly representable error rates."""

    @pytest.mark.parametrize("capacity,error_rate", [
        (1, 0.5),
        (100, 0.01),
        (1000, 0.001),
        (10000, 0.1),
        (1000, 0.05),
        (50000, 0.0001),
    ])
    def test_round_trip_preserves_state(self, capacity, error_rate):
        state = engine.init(capacity, error_rate)
        for i in range(min(capacity, 200)):
            engine.add(state, f"element_{i}")

        restored = codec.decode(codec.encode(state))

        assert restored.capacity == capacity
        assert restored.error_rate == 1.0 / round(1.0 / error_rate)
        assert restored.bytes_len == state.bytes_len
        assert restored.bit_array.tobytes() == state.bit_array.tobytes()
        for i in range(min(capacity, 200)):
            assert engine.check(restored, f"element_{i}")

    def test_error_rate_is_round_tripped_through_code(self):
        """Test the lossy error rate encoding.

        Purpose:
            0.003 is written as 333, so it comes back as 1/333.

        Expected:
            The decoded error rate is 1/333, not 0.003.
        """
        state = engine.init(1000, 0.003)
        restored = codec.decode(codec.encode(state))
        assert restored.error_rate == 1.0 / 333
        assert restored.error_rate != 0.003

    def test_alice_survives_round_trip(self):
        state = engine.init(1000, 0.01)
        engine.add(state, "alice")
        restored = codec.decode(codec.encode(state))
        assert engine.check(restored, "alice")

    def test_decode_copies_input(self, populated_state):
        data = bytearray(codec.encode(populated_state))
        restored = codec.decode(data)
        data[8:] = bytes(len(data) - 8)
        assert restored.bit_array.tobytes() == populated_state.bit_array.tobytes()

    @pytest.mark.parametrize("wrap", [bytes, bytearray, memoryview])
    def test_decode_accepts_bytes_like(self, populated_state, wrap):
        restored = codec.decode(wrap(codec.encode(populated_state)))
        assert restored.capacity == 1000

    def test_decode_rejects_text(self):
        with pytest.raises(TypeError):
            codec.decode("not a buffer at all")


# =============================================================================
# Rejection Tests
# =============================================================================

class TestDecodeRejections:
    """Test that invalid payloads are rejected without producing state."""

    @pytest.mark.parametrize("length", range(9))
    def test_short_input_is_malformed(self, length):
        with pytest.raises(MalformedPayloadError, match="incomplete payload"):
            codec.decode(b'\x00' * length)

    def test_nine_bytes_matching_engine_size(self):
        """Test the smallest valid payload.

        Purpose:
            capacity=1, error_rate=1/2 sizes to a one byte bit array.

        Expected:
            A header plus one byte decodes successfully.
        """
        restored = codec.decode(build_payload(2, 1, b'\xa5'))
        assert restored.capacity == 1
        assert restored.error_rate == 0.5
        assert restored.bit_array.tobytes() == b'\xa5'

    def test_nine_bytes_not_matching_engine_size(self):
        with pytest.raises(SizeMismatchError, match="invalid data length"):
            codec.decode(build_payload(100, 1000, b'\x00'))

    def test_single_bit_flips_in_one_byte_payload(self):
        payload = build_payload(2, 1, b'\x3c')
        for bit in range(8):
            with pytest.raises(ChecksumMismatchError):
                codec.decode(flip_bit(payload, 8, bit))

    def test_bit_flips_in_last_payload_byte(self, populated_state):
        payload = codec.encode(populated_state)
        for bit in range(8):
            with pytest.raises(ChecksumMismatchError, match="checksum mismatch"):
                codec.decode(flip_bit(payload, len(payload) - 1, bit))

    def test_corrupted_checksum_field(self, populated_state):
        payload = codec.encode(populated_state)
        with pytest.raises(ChecksumMismatchError):
            codec.decode(flip_bit(payload, 0, 0))

    def test_truncated_payload(self, populated_state):
        payload = codec.encode(populated_state)
        with pytest.raises(ChecksumMismatchError):
            codec.decode(payload[:-1])

    def test_truncated_payload_with_valid_checksum(self, populated_state):
        body = populated_state.bit_array.tobytes()[:-1]
        with pytest.raises(SizeMismatchError):
            codec.decode(build_payload(100, 1000, body))

    def test_zero_error_rate_code(self, populated_state):
        """Test that a zeroed error rate code is guarded.

        Purpose:
            The code is the divisor of the reconstructed error rate and is
            not covered by the checksum.

        Expected:
            InvalidParametersError instead of ZeroDivisionError.
        """
        payload = bytearray(codec.encode(populated_state))
        payload[2:4] = b'\x00\x00'
        with pytest.raises(InvalidParametersError, match="must be nonzero"):
            codec.decode(bytes(payload))

    def test_error_rate_code_one_is_rejected_by_engine(self):
        with pytest.raises(InvalidParametersError) as excinfo:
            codec.decode(build_payload(1, 1, b'\x00'))
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_zero_cardinality(self):
        with pytest.raises(InvalidParametersError):
            codec.decode(build_payload(2, 0, b'\x00'))

    def test_header_change_is_caught_by_size_check(self, populated_state):
        payload = bytearray(codec.encode(populated_state))
        payload[4:8] = pack('>I', 2000)
        with pytest.raises(SizeMismatchError):
            codec.decode(bytes(payload))

    def test_huge_declared_filter_is_rejected_before_allocation(self, monkeypatch):
        """Test that a tiny payload cannot force a large allocation.

        Purpose:
            The header alone declares the filter size. The largest
            encodable filter needs about 12 GB, so the payload length must
            be checked before the engine allocates anything.

        Expected:
            SizeMismatchError, with engine.init never called.
        """
        def fail_init(capacity, error_rate):
            raise AssertionError("bit array allocated for a rejected payload")

        monkeypatch.setattr(engine, 'init', fail_init)
        with pytest.raises(SizeMismatchError, match="invalid data length"):
            codec.decode(build_payload(0xFFFF, 0xFFFFFFFF, b'\x00'))

    def test_mismatched_payload_never_allocates(self, populated_state, monkeypatch):
        body = populated_state.bit_array.tobytes()[:-1]
        calls = []
        monkeypatch.setattr(engine, 'init', lambda *args: calls.append(args))
        with pytest.raises(SizeMismatchError):
            codec.decode(build_payload(100, 1000, body))
        assert calls == []

    @pytest.mark.parametrize("exc_type", [
        MalformedPayloadError,
        ChecksumMismatchError,
        InvalidParametersError,
        SizeMismatchError,
    ])
    def test_rejections_are_value_errors(self, exc_type):
        assert issubclass(exc_type, BlossomError)
        assert issubclass(exc_type, ValueError)
