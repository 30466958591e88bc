"""Splitting a byte stream into temporary part files."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from typing import IO, BinaryIO

_TEMP_PREFIX = "tusd-s3-tmp-"
_COPY_CHUNK = 64 * 1024


def clean_up_temp_file(file: IO[bytes]) -> None:
    """Close a temporary file and remove it from disk."""
    file.close()
    try:
        os.remove(file.name)
    except FileNotFoundError:
        pass


class PartProducer:
    """Turns the data read from ``reader`` into a sequence of files on disk."""

    def __init__(self, reader: BinaryIO, temporary_directory: str = "") -> None:
        self.reader = reader
        self.temporary_directory = temporary_directory

    def produce(self, part_size: int) -> Iterator[IO[bytes]]:
        """Yield temporary files of at most ``part_size`` bytes, rewound to the start.

        The consumer owns every file it receives and must clean it up. Errors
        while reading are raised after the files already yielded.
        """
        while True:
            file = self._next_part(part_size)
            if file is None:
                return
            yield file

    def _next_part(self, size: int) -> IO[bytes] | None:
        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=_TEMP_PREFIX,
            dir=self.temporary_directory or None,
            delete=False,
        )
        try:
            written = 0
            while written < size:
                chunk = self.reader.read(min(size - written, _COPY_CHUNK))
                if not chunk:
                    break
                file.write(chunk)
                written += len(chunk)
        except BaseException:
            clean_up_temp_file(file)
            raise

        if written == 0:
            clean_up_temp_file(file)
            return None

        file.flush()
        file.seek(0)
        return file