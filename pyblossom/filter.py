"""Bloom filter handle with integrity-checked serialization and zero-copy views.

This module provides ``Filter``, the object callers hold on to. It owns one
engine ``FilterState`` for its whole life and offers two ways of getting the
bit array out:

1. ``export_copy``: an independent ``bytes`` payload in the checksummed wire
   format of ``pyblossom.codec``.
2. ``export_view`` / ``borrow_mutable_view``: ``memoryview`` objects over the
   live bit array, with no copy and no checksum.

Views are borrows. While one is in use the caller must not ``add`` to,
``close`` or mutably re-borrow the same filter, and no view may outlive the
filter. ``close`` releases every view the filter handed out, so a view used
after close raises ``ValueError`` instead of reading freed memory. The
handle does no locking; concurrent use from several threads needs an
external lock.

Module-level ``load``, ``dump`` and ``dump_ex`` mirror the functional
surface of the original ``pyblossom`` extension module.
"""
import itertools
import logging
import weakref
from typing import NamedTuple

from pyblossom import codec, engine
from pyblossom.config import DEFAULT_ERROR_RATE
from pyblossom.errors import (BlossomError, FilterClosedError,
                              InitializationError, SizeMismatchError)

logger = logging.getLogger(__name__)

error = BlossomError


class FilterView(NamedTuple):
    """Parameters of a filter plus a read-only view of its bit array."""

    capacity: int
    error_rate: float
    buffer: memoryview


class Filter:
    """A fixed-size Bloom filter.

    Example:
        >>> f = Filter(capacity=1000, error_rate=0.01)
        >>> f.add("alice")
        >>> f.check("alice")
        True
        >>> restored = Filter.from_bytes(f.export_copy())
        >>> "alice" in restored
        True
        >>> f.close()
    """

    def __init__(self, capacity, error_rate=DEFAULT_ERROR_RATE, data=None):
        """Create a filter, optionally seeded with raw bit array bytes.

        Args:
            capacity (int): Members the filter should hold without exceeding
                ``error_rate``. Must be between 1 and 2**32 - 1.
            error_rate (float, optional): Target false positive probability
                in (0, 1). Default is 0.001.
            data (optional): Bytes-like object copied verbatim into the bit
                array, typically the buffer of ``export_view`` from a filter
                with the same parameters. Its length must equal the size the
                engine computes for ``capacity`` and ``error_rate``. No
                checksum is involved.

        Raises:
            InitializationError: If the engine rejects the parameters or
                cannot allocate the bit array.
            TypeError: If ``data`` does not support the buffer protocol.
            SizeMismatchError: If ``data`` has the wrong length.
        """
        self._state = None
        self._views = weakref.WeakValueDictionary()
        self._view_ids = itertools.count()

        try:
            _, _, bytes_len = engine.sizing(capacity, error_rate)
        except ValueError as exc:
            raise InitializationError(
                "internal initialization failed: %s" % exc) from exc

        if data is None:
            self._state = self._allocate(capacity, error_rate)
            return

        try:
            source = memoryview(data)
        except TypeError as exc:
            raise TypeError("buffer interface is not supported by "
                            "provided data type") from exc

        with source:
            if source.nbytes != bytes_len:
                raise SizeMismatchError(
                    "invalid data length: got %d bytes, expected %d"
                    % (source.nbytes, bytes_len))
            state = self._allocate(capacity, error_rate)
            with memoryview(state.bit_array) as target:
                target[:] = source.cast('B')

        self._state = state

    @staticmethod
    def _allocate(capacity, error_rate):
        try:
            return engine.init(capacity, error_rate)
        except MemoryError as exc:
            raise InitializationError(
                "internal initialization failed: %s" % exc) from exc

    @classmethod
    def _adopt(cls, state):
        handle = cls.__new__(cls)
        handle._state = state
        handle._views = weakref.WeakValueDictionary()
        handle._view_ids = itertools.count()
        return handle

    @classmethod
    def from_bytes(cls, data):
        """Create a filter from a payload produced by ``export_copy``.

        Raises:
            The errors of ``pyblossom.codec.decode``.
        """
        return cls._adopt(codec.decode(data))

    @classmethod
    def from_config(cls, config, data=None):
        """Create a filter from a ``FilterConfig``."""
        config.validate()
        return cls(config.capacity, config.error_rate, data)

    def _require_state(self):
        if self._state is None:
            raise FilterClosedError("operation on closed filter")
        return self._state

    @property
    def closed(self):
        return self._state is None

    @property
    def capacity(self):
        return self._require_state().capacity

    @property
    def error_rate(self):
        return self._require_state().error_rate

    @property
    def nbytes(self):
        """Length of the bit array in bytes."""
        return self._require_state().bytes_len

    def add(self, item):
        """Add a member to the filter.

        Args:
            item (str or bytes-like): The member. Text is UTF-8 encoded.

        Raises:
            FilterClosedError: If the filter has been closed.
            TypeError: If ``item`` is neither text nor bytes-like.
        """
        engine.add(self._require_state(), item)

    def check(self, item):
        """Test whether ``item`` may be a member.

        Returns:
            bool: False if ``item`` was certainly never added; True if it was
                added or is a false positive.

        Raises:
            FilterClosedError: If the filter has been closed.
        """
        return engine.check(self._require_state(), item)

    def __contains__(self, item):
        return self.check(item)

    def export_copy(self):
        """Serialize the filter into an independent, checksummed payload.

        The returned bytes stay valid after the filter is mutated or closed.

        Returns:
            bytes: The wire payload described in ``pyblossom.codec``.
        """
        return codec.encode(self._require_state())

    def export_view(self):
        """Return the filter parameters and a read-only view of its bits.

        No copy is made and no checksum is computed. The view is released
        when the filter is closed.

        Returns:
            FilterView: ``(capacity, error_rate, buffer)``.
        """
        state = self._require_state()
        with memoryview(state.bit_array) as base:
            view = base.toreadonly()
        self._track(view)
        return FilterView(state.capacity, state.error_rate, view)

    def borrow_mutable_view(self):
        """Return a writable view over the live bit array.

        Writes through the view change the filter directly, for example to
        bulk-load bits from another source. The view is released when the
        filter is closed.

        Returns:
            memoryview: Writable, one byte per item, ``nbytes`` long.
        """
        view = memoryview(self._require_state().bit_array)
        self._track(view)
        return view

    def _track(self, view):
        # Weakly held: views the caller drops are forgotten.
        self._views[next(self._view_ids)] = view

    def close(self):
        """Release every outstanding view and free the bit array.

        Calling ``close`` on a closed filter does nothing.

        Raises:
            BufferError: If a caller still holds a buffer exported from one
                of the views. The filter stays open in that case.
        """
        if self._state is None:
            return
        for key, view in list(self._views.items()):
            view.release()
            del self._views[key]
        engine.free(self._state)
        self._state = None
        logger.debug("Closed filter")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        if self._state is None:
            return '<Filter closed>'
        return '<Filter capacity=%d error_rate=%r nbytes=%d>' % (
            self._state.capacity, self._state.error_rate, self._state.bytes_len)


def load(data):
    """Create a ``Filter`` from a serialized payload."""
    return Filter.from_bytes(data)


def dump(bloom):
    """Serialize ``bloom`` into a checksummed payload."""
    return bloom.export_copy()


def dump_ex(bloom):
    """Return ``bloom``'s parameters and a read-only view, without a checksum."""
    return bloom.export_view()
