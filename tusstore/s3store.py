"""Storage backend keeping uploads in an S3 bucket or a compatible service.

Each upload is stored as an S3 multipart upload, with a JSON ``.info`` object
next to it describing the upload. Data that is too small to become a part is
kept in a ``.part`` object until more data arrives.
"""

from __future__ import annotations

import dataclasses
import re
import secrets
import tempfile
from dataclasses import dataclass
from typing import IO, Any

from .fileinfo import FileInfo
from .partproducer import clean_up_temp_file
from .s3api import AwsError, S3API, is_aws_error
from .s3upload import S3Upload

# Matches every character that is not valid in an HTTP header value.
_NON_PRINTABLE = re.compile(r"[^\x09\x20-\x7E]")

_TEMP_PREFIX = "tusd-s3-tmp-"
_COPY_CHUNK = 64 * 1024
_MISSING_PART_CODES = ("NoSuchKey", "NotFound", "AccessDenied")


def _new_uid() -> str:
    return secrets.token_hex(16)


def _close(body: Any) -> None:
    close = getattr(body, "close", None)
    if close is not None:
        close()


def _with_prefix(prefix: str, key: str) -> str:
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix + key


@dataclass(eq=False)
class S3Store:
    """Settings and service shared by all uploads kept in one bucket."""

    bucket: str
    service: S3API
    # Prepended to the name of every object holding upload content.
    object_prefix: str = ""
    # Prepended to .info and .part objects; falls back to object_prefix.
    metadata_object_prefix: str = ""
    max_part_size: int = 5 * 1024 * 1024 * 1024
    min_part_size: int = 5 * 1024 * 1024
    preferred_part_size: int = 50 * 1024 * 1024
    max_multipart_parts: int = 10000
    max_object_size: int = 5 * 1024 * 1024 * 1024 * 1024
    max_buffered_parts: int = 20
    # Directory for temporary files; empty means the system default.
    temporary_directory: str = ""
    disable_content_hashes: bool = False

    # -- uploads ----------------------------------------------------------

    def new_upload(self, info: FileInfo) -> S3Upload:
        """Create a multipart upload and its info object, returning the new upload."""
        if info.size > self.max_object_size:
            raise ValueError(
                f"s3store: upload size of {info.size} bytes exceeds "
                f"MaxObjectSize of {self.max_object_size} bytes"
            )

        info = dataclasses.replace(info)
        upload_id = info.id or _new_uid()

        metadata = {
            key: _NON_PRINTABLE.sub("?", value)
            for key, value in (info.meta_data or {}).items()
        }

        try:
            res = self.service.create_multipart_upload(
                Bucket=self.bucket,
                Key=self.key_with_prefix(upload_id),
                Metadata=metadata,
            )
        except Exception as err:
            raise RuntimeError(f"s3store: unable to create multipart upload:\n{err}") from err

        info.id = f"{upload_id}+{res['UploadId']}"
        info.storage = {
            "Type": "s3store",
            "Bucket": self.bucket,
            "Key": self.key_with_prefix(upload_id),
        }

        upload = S3Upload(info.id, self)
        try:
            upload._write_info(info)
        except Exception as err:
            raise RuntimeError(f"s3store: unable to create info file:\n{err}") from err
        return upload

    def get_upload(self, id: str) -> S3Upload:
        """Return a handle for an existing upload; nothing is fetched yet."""
        return S3Upload(id, self)

    # -- part sizes -------------------------------------------------------

    def calc_optimal_part_size(self, size: int) -> int:
        """Pick a part size that fits ``size`` bytes into the allowed number of parts."""
        if size <= self.preferred_part_size:
            optimal = self.preferred_part_size
        elif size <= self.preferred_part_size * self.max_multipart_parts:
            optimal = self.preferred_part_size
        elif size % self.max_multipart_parts == 0:
            optimal = size // self.max_multipart_parts
        else:
            # Round up so the upload still fits into max_multipart_parts parts.
            optimal = size // self.max_multipart_parts + 1

        if optimal > self.max_part_size:
            raise ValueError(
                f"calcOptimalPartSize: to upload {size} bytes optimalPartSize {optimal} "
                f"must exceed MaxPartSize {self.max_part_size}"
            )
        return optimal

    # -- keys -------------------------------------------------------------

    def key_with_prefix(self, key: str) -> str:
        """Return the object key for upload content."""
        return _with_prefix(self.object_prefix, key)

    def metadata_key_with_prefix(self, key: str) -> str:
        """Return the object key for .info and .part objects."""
        return _with_prefix(self.metadata_object_prefix or self.object_prefix, key)

    # -- parts ------------------------------------------------------------

    def list_all_parts(self, id: str) -> list[dict[str, Any]]:
        """List every part of the multipart upload, following pagination."""
        from .s3upload import split_ids

        upload_id, multipart_id = split_ids(id)
        parts: list[dict[str, Any]] = []
        marker = 0
        while True:
            res = self.service.list_parts(
                Bucket=self.bucket,
                Key=self.key_with_prefix(upload_id),
                UploadId=multipart_id,
                PartNumberMarker=marker,
            )
            parts.extend(res.get("Parts") or [])
            if not res.get("IsTruncated"):
                return parts
            marker = res["NextPartNumberMarker"]

    def get_incomplete_part(self, upload_id: str) -> dict[str, Any] | None:
        """Fetch the .part object, or return None if there is none."""
        try:
            return self.service.get_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
            )
        except AwsError as err:
            if any(is_aws_error(err, code) for code in _MISSING_PART_CODES):
                return None
            raise

    def download_incomplete_part(self, upload_id: str) -> tuple[IO[bytes] | None, int]:
        """Copy the .part object into a temporary file, returning it and its size."""
        obj = self.get_incomplete_part(upload_id)
        if obj is None:
            return None, 0

        body = obj["Body"]
        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=_TEMP_PREFIX,
            dir=self.temporary_directory or None,
            delete=False,
        )
        try:
            copied = 0
            while chunk := body.read(_COPY_CHUNK):
                file.write(chunk)
                copied += len(chunk)
            if copied < (obj.get("ContentLength") or 0):
                raise OSError("short read of incomplete upload")
            file.flush()
            file.seek(0)
        except BaseException:
            clean_up_temp_file(file)
            raise
        finally:
            _close(body)
        return file, copied

    def put_incomplete_part(self, upload_id: str, file: IO[bytes]) -> None:
        """Store ``file`` as the .part object and remove the file afterwards."""
        try:
            self.service.put_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
                Body=file,
            )
        finally:
            clean_up_temp_file(file)

    def delete_incomplete_part(self, upload_id: str) -> None:
        """Delete the .part object."""
        self.service.delete_object(
            Bucket=self.bucket,
            Key=self.metadata_key_with_prefix(upload_id + ".part"),
        )