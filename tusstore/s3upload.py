"""A single upload kept in an S3 bucket as a multipart upload."""

from __future__ import annotations

import contextlib
import dataclasses
import io
import os
import shutil
import tempfile
import threading
import urllib.error
import urllib.request
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import IO, TYPE_CHECKING, Any, BinaryIO

from .errors import HTTPError, MultiError, NotFoundError
from .fileinfo import FileInfo
from .partproducer import PartProducer, clean_up_temp_file
from .s3api import AwsError, is_aws_error

if TYPE_CHECKING:
    from .s3store import S3Store

_CONCAT_TEMP_PREFIX = "tusd-s3-concat-tmp-"
_PRESIGN_EXPIRY_SECONDS = 15 * 60


def split_ids(id: str) -> tuple[str, str]:
    """Split an upload ID into the object ID and the multipart upload ID."""
    upload_id, sep, multipart_id = id.partition("+")
    if not sep:
        return "", ""
    return upload_id, multipart_id


def _close(body: Any) -> None:
    close = getattr(body, "close", None)
    if close is not None:
        close()


class _ChainedReader:
    """Reads from several binary readers one after another."""

    def __init__(self, *readers: BinaryIO) -> None:
        self._readers = deque(readers)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = b"".join(reader.read() for reader in self._readers)
            self._readers.clear()
            return data
        while self._readers:
            chunk = self._readers[0].read(size)
            if chunk:
                return chunk
            self._readers.popleft()
        return b""


class S3Upload:
    """An upload whose data lives in a multipart upload and whose info lives in a ``.info`` object."""

    def __init__(self, id: str, store: S3Store, info: FileInfo | None = None) -> None:
        self.id = id
        self.store = store
        # Cached upload info; fetched from S3 on first use.
        self.info = info

    # -- info -------------------------------------------------------------

    def _write_info(self, info: FileInfo) -> None:
        store = self.store
        upload_id, _ = split_ids(self.id)
        self.info = dataclasses.replace(info)
        data = info.to_json()
        store.service.put_object(
            Bucket=store.bucket,
            Key=store.metadata_key_with_prefix(upload_id + ".info"),
            Body=io.BytesIO(data),
            ContentLength=len(data),
        )

    def get_info(self) -> FileInfo:
        """Return the upload's info, fetching it from S3 if not yet known."""
        if self.info is None:
            self.info = self._fetch_info()
        return dataclasses.replace(self.info)

    def _fetch_info(self) -> FileInfo:
        store = self.store
        upload_id, _ = split_ids(self.id)

        try:
            res = store.service.get_object(
                Bucket=store.bucket,
                Key=store.metadata_key_with_prefix(upload_id + ".info"),
            )
        except AwsError as err:
            if is_aws_error(err, "NoSuchKey"):
                raise NotFoundError() from err
            raise

        body = res["Body"]
        try:
            info = FileInfo.from_json(body.read())
        finally:
            _close(body)

        try:
            parts = store.list_all_parts(self.id)
        except AwsError as err:
            # The multipart upload is gone although the info exists, so the
            # upload has been completed.
            if is_aws_error(err, "NoSuchUpload") or is_aws_error(err, "NoSuchKey"):
                info.offset = info.size
                return info
            raise

        offset = sum(part["Size"] for part in parts)

        incomplete = store.get_incomplete_part(upload_id)
        if incomplete is not None:
            try:
                offset += incomplete["ContentLength"]
            finally:
                _close(incomplete.get("Body"))

        info.offset = offset
        return info

    # -- writing ----------------------------------------------------------

    def write_chunk(self, offset: int, src: BinaryIO) -> int:
        """Write data from ``src`` at ``offset`` and return the number of bytes accepted."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        info = self.get_info()
        size = info.size
        part_size = store.calc_optimal_part_size(size)

        parts = store.list_all_parts(self.id)
        next_part_number = len(parts) + 1

        incomplete_file, incomplete_size = store.download_incomplete_part(upload_id)
        reader: Any = src
        if incomplete_file is not None:
            try:
                store.delete_incomplete_part(upload_id)
            except BaseException:
                clean_up_temp_file(incomplete_file)
                raise
            reader = _ChainedReader(incomplete_file, src)

        bytes_uploaded = 0
        files = PartProducer(reader, store.temporary_directory).produce(part_size)
        try:
            for file in files:
                try:
                    n = os.fstat(file.fileno()).st_size
                except BaseException:
                    clean_up_temp_file(file)
                    raise

                is_final_chunk = not info.size_is_deferred and size == (offset - incomplete_size) + n
                if n >= store.min_part_size or is_final_chunk:
                    self._put_part(upload_id, multipart_id, next_part_number, file, n)
                else:
                    store.put_incomplete_part(upload_id, file)
                    bytes_uploaded += n
                    return bytes_uploaded - incomplete_size

                offset += n
                bytes_uploaded += n
                next_part_number += 1
        finally:
            files.close()
            if incomplete_file is not None:
                clean_up_temp_file(incomplete_file)

        return bytes_uploaded - incomplete_size

    def _put_part(self, upload_id: str, multipart_id: str, part_number: int,
                  file: IO[bytes], size: int) -> None:
        store = self.store
        params = {
            "Bucket": store.bucket,
            "Key": store.key_with_prefix(upload_id),
            "UploadId": multipart_id,
            "PartNumber": part_number,
        }
        try:
            if not store.disable_content_hashes:
                store.service.upload_part(Body=file, **params)
            else:
                self._put_part_presigned(params, file, size)
        finally:
            clean_up_temp_file(file)

    def _put_part_presigned(self, params: dict[str, Any], file: IO[bytes], size: int) -> None:
        # The body is sent outside the SDK so that no payload hash is computed.
        presign = getattr(self.store.service, "generate_presigned_url", None)
        if presign is None:
            raise RuntimeError("s3store: failed to cast S3 service for presigning")

        url = presign("upload_part", Params=params, ExpiresIn=_PRESIGN_EXPIRY_SECONDS)
        # An explicit Content-Length avoids chunked transfer encoding, which S3 rejects.
        request = urllib.request.Request(
            url, data=file, method="PUT", headers={"Content-Length": str(size)}
        )
        try:
            with urllib.request.urlopen(request) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as err:
            status = err.code
            body = err.read()

        if status != 200:
            text = body.decode("utf-8", "replace")
            raise RuntimeError(
                f"s3store: unexpected response code {status} for presigned upload: {text}"
            )

    # -- reading ----------------------------------------------------------

    def get_reader(self) -> BinaryIO:
        """Return a readable stream of a finished upload's content."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        try:
            res = store.service.get_object(Bucket=store.bucket, Key=store.key_with_prefix(upload_id))
        except AwsError as err:
            if not is_aws_error(err, "NoSuchKey"):
                raise
        else:
            return res["Body"]

        # Find out whether the upload never existed or is just not finished.
        try:
            store.service.list_parts(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                UploadId=multipart_id,
                MaxParts=0,
            )
        except AwsError as err:
            if is_aws_error(err, "NoSuchUpload"):
                raise NotFoundError() from err
            raise

        raise HTTPError("cannot stream non-finished upload", 400)

    # -- termination and completion --------------------------------------

    def terminate(self) -> None:
        """Abort the multipart upload and delete the content, part and info objects."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        def abort() -> list[BaseException]:
            try:
                store.service.abort_multipart_upload(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                )
            except Exception as err:
                if not is_aws_error(err, "NoSuchUpload"):
                    return [err]
            return []

        def delete() -> list[BaseException]:
            try:
                res = store.service.delete_objects(
                    Bucket=store.bucket,
                    Delete={
                        "Objects": [
                            {"Key": store.key_with_prefix(upload_id)},
                            {"Key": store.metadata_key_with_prefix(upload_id + ".part")},
                            {"Key": store.metadata_key_with_prefix(upload_id + ".info")},
                        ],
                        "Quiet": True,
                    },
                )
            except Exception as err:
                return [err]
            return [
                RuntimeError(
                    f"AWS S3 Error ({s3_err['Code']}) for object {s3_err['Key']}: {s3_err['Message']}"
                )
                for s3_err in (res or {}).get("Errors") or []
                if s3_err["Code"] != "NoSuchKey"
            ]

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(abort), pool.submit(delete)]
            errors = [err for future in futures for err in future.result()]

        if errors:
            raise MultiError(errors)

    def finish_upload(self) -> None:
        """Complete the multipart upload from all parts uploaded so far."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        parts = store.list_all_parts(self.id)
        if not parts:
            # S3 needs at least one part, so an empty upload gets an empty part.
            res = store.service.upload_part(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                UploadId=multipart_id,
                PartNumber=1,
                Body=io.BytesIO(b""),
            )
            parts = [{"ETag": (res or {}).get("ETag"), "PartNumber": 1}]

        completed = [{"ETag": part.get("ETag"), "PartNumber": part.get("PartNumber")} for part in parts]
        store.service.complete_multipart_upload(
            Bucket=store.bucket,
            Key=store.key_with_prefix(upload_id),
            UploadId=multipart_id,
            MultipartUpload={"Parts": completed},
        )

    # -- concatenation ----------------------------------------------------

    def concat_uploads(self, partial_uploads: list[S3Upload]) -> None:
        """Build this upload from the content of the given finished uploads."""
        has_small_part = any(
            partial.get_info().size < self.store.min_part_size for partial in partial_uploads
        )
        # Parts below the minimum size cannot be copied into a multipart upload.
        if has_small_part:
            self._concat_using_download(partial_uploads)
        else:
            self._concat_using_multipart(partial_uploads)

    def _concat_using_download(self, partial_uploads: list[S3Upload]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=_CONCAT_TEMP_PREFIX,
            dir=store.temporary_directory or None,
            delete=False,
        )
        try:
            for partial in partial_uploads:
                partial_id, _ = split_ids(partial.id)
                res = store.service.get_object(Bucket=store.bucket, Key=store.key_with_prefix(partial_id))
                body = res["Body"]
                try:
                    shutil.copyfileobj(body, file)
                finally:
                    _close(body)

            file.flush()
            file.seek(0)
            store.service.put_object(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                Body=file,
            )
        finally:
            clean_up_temp_file(file)

        def abort() -> None:
            # The outcome does not change the result, so failures are ignored.
            with contextlib.suppress(Exception):
                store.service.abort_multipart_upload(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                )

        threading.Thread(target=abort, daemon=True).start()

    def _concat_using_multipart(self, partial_uploads: list[S3Upload]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        def copy(part_number: int, partial_id: str) -> BaseException | None:
            try:
                store.service.upload_part_copy(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                    PartNumber=part_number,
                    CopySource=f"{store.bucket}/{store.key_with_prefix(partial_id)}",
                )
            except Exception as err:
                return err
            return None

        with ThreadPoolExecutor(max_workers=max(1, len(partial_uploads))) as pool:
            futures = [
                pool.submit(copy, number, split_ids(partial.id)[0])
                for number, partial in enumerate(partial_uploads, start=1)
            ]
            errors = [err for err in (future.result() for future in futures) if err is not None]

        if errors:
            raise MultiError(errors)

        self.finish_upload()

    # -- deferred length --------------------------------------------------

    def declare_length(self, length: int) -> None:
        """Set the size of an upload whose length was deferred."""
        info = self.get_info()
        info.size = length
        info.size_is_deferred = False
        self._write_info(info)