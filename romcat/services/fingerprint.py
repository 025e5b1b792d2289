"""Single-pass CRC32/MD5/SHA1 fingerprinting of files and archive entries."""

import hashlib
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import structlog

from .errors import FileSystemError

log = structlog.stdlib.get_logger()

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Fingerprint:
    """Digests of one byte stream, uppercase hex."""
    crc32: str
    md5: str
    sha1: str
    size: int


def fingerprint_stream(
    stream: BinaryIO,
    expected_size: int | None = None,
    name: str | None = None,
    chunk_size: int = CHUNK_SIZE,
) -> Fingerprint:
    """Hash ``stream`` once, feeding every chunk to all three accumulators.

    Args:
        stream: Readable binary stream, consumed from its current position
        expected_size: Declared length; a short or long read is an error
        name: Label used in errors and logs
        chunk_size: Bytes read per iteration

    Returns:
        Fingerprint of the whole stream

    Raises:
        FileSystemError: If the stream fails or ends before ``expected_size``
    """
    crc = 0
    md5 = hashlib.md5()
    sha1 = hashlib.sha1()
    size = 0

    try:
        for chunk in iter(lambda: stream.read(chunk_size), b""):
            crc = zlib.crc32(chunk, crc)
            md5.update(chunk)
            sha1.update(chunk)
            size += len(chunk)
    except (OSError, EOFError, ValueError, zlib.error) as e:
        # zipfile reports a truncated member as EOFError and a damaged deflate stream as zlib.error
        raise FileSystemError(
            "Failed while reading data to hash",
            original_error=e,
            path=name,
            operation="fingerprint",
        ) from e

    if expected_size is not None and size != expected_size:
        raise FileSystemError(
            f"Read {size} bytes but expected {expected_size}",
            path=name,
            operation="fingerprint",
        )

    return Fingerprint(
        crc32=f"{crc & 0xFFFFFFFF:08X}",
        md5=md5.hexdigest().upper(),
        sha1=sha1.hexdigest().upper(),
        size=size,
    )


def fingerprint_file(path: Path) -> Fingerprint:
    """Fingerprint a file on disk.

    Raises:
        FileSystemError: If the file cannot be opened or fully read
    """
    try:
        expected_size = path.stat().st_size
        with open(path, "rb") as f:
            fingerprint = fingerprint_stream(f, expected_size=expected_size, name=str(path))
    except OSError as e:
        raise FileSystemError(
            "Cannot read file",
            original_error=e,
            path=str(path),
            operation="fingerprint",
        ) from e

    log.debug("File fingerprinted", path=str(path), crc32=fingerprint.crc32, size=fingerprint.size)
    return fingerprint
