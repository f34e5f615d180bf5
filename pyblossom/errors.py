"""Exception hierarchy for pyblossom.

Every failure raised by the codec or the filter handle derives from
``BlossomError``. The kinds that describe bad input also derive from
``ValueError`` so callers that already guard filter construction with
``except ValueError`` keep working.
"""


class BlossomError(Exception):
    """Base exception for all pyblossom errors."""
    pass


class MalformedPayloadError(BlossomError, ValueError):
    """Raised when a serialized filter is shorter than the minimum wire size."""
    pass


class ChecksumMismatchError(BlossomError, ValueError):
    """Raised when the stored checksum disagrees with the payload bytes."""
    pass


class InvalidParametersError(BlossomError, ValueError):
    """Raised for a zero or out-of-range error rate code, or parameters the
    engine rejects outright."""
    pass


class SizeMismatchError(BlossomError, ValueError):
    """Raised when supplied bit-array bytes do not match the engine's sizing."""
    pass


class InitializationError(BlossomError):
    """Raised when the engine cannot allocate or configure a filter."""
    pass


class FilterClosedError(BlossomError, ValueError):
    """Raised when a closed filter handle is used."""
    pass
