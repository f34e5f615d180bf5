"""Filter parameters.

Groups the two values a filter is created from so they can be passed around
and validated before any memory is allocated.
"""
from dataclasses import dataclass

from pyblossom import codec
from pyblossom.engine import UINT32_MAX
from pyblossom.errors import InvalidParametersError

DEFAULT_ERROR_RATE = 0.001


@dataclass
class FilterConfig:
    """Parameters for a Bloom filter.

    Attributes:
        capacity: Number of members the filter is sized for (1 to 2**32 - 1)
        error_rate: Target false positive probability, 0 < error_rate < 1
    """

    capacity: int
    error_rate: float = DEFAULT_ERROR_RATE

    def validate(self):
        """Raise InvalidParametersError if the engine would reject these values."""
        if not (0 < self.error_rate < 1):
            raise InvalidParametersError(
                "error_rate must be between 0 and 1, got %r" % self.error_rate)
        if not 0 < self.capacity <= UINT32_MAX:
            raise InvalidParametersError(
                "capacity must be between 1 and 2**32 - 1, got %r" % self.capacity)

    @property
    def error_rate_code(self):
        """The 16-bit code the codec writes for this error rate.

        Raises:
            InvalidParametersError: If the codec cannot encode the error rate.
        """
        return codec.error_rate_code(self.error_rate)

    @property
    def wire_compatible(self):
        """True if the error rate can be written by the codec."""
        if not (0 < self.error_rate < 1):
            return False
        try:
            self.error_rate_code
        except InvalidParametersError:
            return False
        return True
