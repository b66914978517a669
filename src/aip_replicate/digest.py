# ABOUTME: Streaming digest and byte-count wrappers used by every package writer
# ABOUTME: Provides DigestWriter, AtomicCounter, stream copying and file digests
"""Checksum utilities for aip-replicate"""

import hashlib
import threading
from pathlib import Path
from typing import BinaryIO

COPY_CHUNK_SIZE = 64 * 1024


class AtomicCounter:
    """Lock-guarded integer counter."""

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def add(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    def get(self) -> int:
        with self._lock:
            return self._value

    def __str__(self):
        return str(self.get())


class DigestWriter:
    """Write-through wrapper that digests and counts every byte written.

    The wrapped stream is closed when the writer is closed, so opening the
    target file and wrapping it can share a single ``with`` block::

        with DigestWriter(open(path, "xb"), "md5") as out:
            out.write(data)
        checksum = out.hexdigest()
    """

    def __init__(self, stream: BinaryIO, algorithm: str = "md5"):
        self.stream = stream
        self.algorithm = algorithm
        self._digest = hashlib.new(algorithm)
        self.count = 0

    def write(self, data: bytes) -> int:
        self.stream.write(data)
        self._digest.update(data)
        self.count += len(data)
        return len(data)

    def hexdigest(self) -> str:
        return self._digest.hexdigest()

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> "DigestWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def copy_stream(source: BinaryIO, target, chunk_size: int = COPY_CHUNK_SIZE) -> int:
    """Copy ``source`` into ``target`` chunk by chunk.

    Returns:
        Number of bytes copied
    """
    copied = 0
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        target.write(chunk)
        copied += len(chunk)
    return copied


def file_digest(path: Path, algorithm: str = "md5") -> str:
    """Compute the hex digest of a file on disk."""
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(COPY_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def human_size(num_bytes: int) -> str:
    """Render a byte count the way bag-info Bag-Size values are written.

    Whole units only, e.g. ``512 bytes``, ``3 KB``, ``1 GB``.
    """
    for unit, factor in (("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if num_bytes >= factor:
            return f"{num_bytes // factor} {unit}"
    return f"{num_bytes} bytes"
