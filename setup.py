#!/usr/bin/env python3
"""Setup script for pyblossom - Bloom filter with a checksummed wire format."""
from setuptools import setup

VERSION = "1.0.0"
DESCRIPTION = "Bloom filter with compact, integrity-checked serialization"
LONG_DESCRIPTION = """
A fixed-size Bloom filter with a compact binary serialization format and
zero-copy access to its bit array.

The wire format is an 8-byte big-endian header (16-bit folded CRC-32
checksum, 16-bit error rate code, 32-bit capacity) followed by the raw bit
array. Decoding verifies the checksum and re-derives the bit array size from
the header before accepting a payload.

Features:
- Owning, checksummed export and load (dump / load)
- Zero-copy read-only and writable memoryview access to the bit array
- Seeding a filter from raw bit array bytes
- Explicit, idempotent close that invalidates outstanding views
- Fast xxHash hashing and bitarray storage
"""

CLASSIFIERS = [
    "Development Status :: 5 - Production/Stable",
    "Intended Audience :: Developers",
    "License :: OSI Approved :: MIT License",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.8",
    "Programming Language :: Python :: 3.9",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3 :: Only",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Utilities",
]

setup(
    name="pyblossom",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/plain",
    classifiers=CLASSIFIERS,
    keywords=[
        "bloom filter",
        "probabilistic",
        "data structures",
        "set membership",
        "serialization",
        "crc32",
        "xxhash",
    ],
    license="MIT License",
    platforms=["any"],
    python_requires=">=3.8",
    install_requires=["bitarray>=2.0", "xxhash>=3.0.0"],
    extras_require={"test": ["pytest>=7.0"]},
    packages=["pyblossom"],
    zip_safe=True,
)
