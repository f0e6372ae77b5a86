"""
Streaming archive compression.

The snapshot directory is tarred and gzip-compressed straight into the
destination tier directory while the compressed bytes are hashed, so no
uncompressed archive is ever written. pigz is used when available and the
in-process gzip stream otherwise. Output goes to a `.partial` file that is
renamed into place only once complete.
"""

import gzip
import hashlib
import logging
import os
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from octeth_backup.core.exceptions import CompressionError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PARTIAL_SUFFIX = ".partial"


class Compressor(Enum):
    PIGZ = "pigz"
    GZIP = "gzip"


@dataclass(frozen=True)
class CompressionResult:
    path: Path
    checksum: str
    size_bytes: int
    compressor: Compressor


def resolve_compressor(preference: str = "auto") -> Compressor:
    """
    Pick the compressor for a run.

    "auto" prefers pigz; an explicit "pigz" that is not installed falls
    back to gzip with a warning.
    """
    has_pigz = shutil.which("pigz") is not None
    match preference:
        case "gzip":
            return Compressor.GZIP
        case "pigz" if not has_pigz:
            logger.warning("pigz requested but not installed, falling back to gzip")
            return Compressor.GZIP
        case _:
            return Compressor.PIGZ if has_pigz else Compressor.GZIP


class _HashingWriter:
    """File-like sink that hashes and counts everything written through it."""

    def __init__(self, raw: BinaryIO):
        self._raw = raw
        self._hasher = hashlib.sha256()
        self.size = 0

    def write(self, data: bytes) -> int:
        self._hasher.update(data)
        self.size += len(data)
        return self._raw.write(data)

    def flush(self) -> None:
        self._raw.flush()

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()


def _stream_gzip(source_dir: Path, sink: _HashingWriter, level: int) -> None:
    with gzip.GzipFile(fileobj=sink, mode="wb", compresslevel=level) as gz:
        with tarfile.open(fileobj=gz, mode="w|") as tar:
            tar.add(source_dir, arcname=source_dir.name)


def _stream_pigz(source_dir: Path, sink: _HashingWriter, level: int, threads: int) -> None:
    # stderr goes to spool files; a full stderr pipe nobody drains would stall tar
    with tempfile.TemporaryFile() as tar_log, tempfile.TemporaryFile() as pigz_log:
        tar_proc = subprocess.Popen(
            ["tar", "-cf", "-", "-C", str(source_dir.parent), source_dir.name],
            stdout=subprocess.PIPE,
            stderr=tar_log,
        )
        pigz_proc = subprocess.Popen(
            ["pigz", f"-{level}", "-p", str(threads)],
            stdin=tar_proc.stdout,
            stdout=subprocess.PIPE,
            stderr=pigz_log,
        )
        # Let tar receive SIGPIPE if pigz exits early
        tar_proc.stdout.close()

        try:
            for chunk in iter(lambda: pigz_proc.stdout.read(CHUNK_SIZE), b""):
                sink.write(chunk)
        finally:
            pigz_proc.stdout.close()
            pigz_code = pigz_proc.wait()
            tar_code = tar_proc.wait()

        if tar_code != 0:
            raise CompressionError(f"tar exited {tar_code}: {_read_log(tar_log)}")
        if pigz_code != 0:
            raise CompressionError(f"pigz exited {pigz_code}: {_read_log(pigz_log)}")


def _read_log(log: BinaryIO) -> str:
    log.seek(0)
    return log.read().decode(errors="replace").strip()


def compress_directory(
    source_dir: Path,
    dest_path: Path,
    compressor: Compressor = Compressor.GZIP,
    level: int = 6,
    threads: int = 1,
) -> CompressionResult:
    """
    Archive source_dir into dest_path as a gzip-compressed tar stream.

    The archive holds a single top-level directory named after source_dir.

    Returns:
        CompressionResult with the SHA-256 and size of the compressed bytes

    Raises:
        CompressionError: If archiving fails; no partial file is left behind
    """
    if not source_dir.is_dir():
        raise CompressionError(f"Snapshot directory {source_dir} does not exist")

    dest_path.parent.mkdir(parents=True, exist_ok=True)
    partial = dest_path.with_name(dest_path.name + PARTIAL_SUFFIX)
    logger.info(f"Compressing {source_dir.name} with {compressor.value} (level {level})")

    try:
        with open(partial, "wb") as raw:
            sink = _HashingWriter(raw)
            if compressor == Compressor.PIGZ:
                _stream_pigz(source_dir, sink, level, threads)
            else:
                _stream_gzip(source_dir, sink, level)
            raw.flush()
            os.fsync(raw.fileno())
        os.replace(partial, dest_path)
    except (OSError, tarfile.TarError) as e:
        partial.unlink(missing_ok=True)
        raise CompressionError(f"Compression of {source_dir.name} failed: {e}") from e
    except BaseException:
        partial.unlink(missing_ok=True)
        raise

    return CompressionResult(
        path=dest_path,
        checksum=sink.hexdigest(),
        size_bytes=sink.size,
        compressor=compressor,
    )
