"""The interface the S3 store expects from its storage service."""

from __future__ import annotations

from typing import Any, Protocol


class AwsError(Exception):
    """An error reported by the S3 service, identified by its code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class S3API(Protocol):
    """Calls made to an S3-compatible service.

    Each method takes the request fields as keyword arguments (``Bucket``,
    ``Key``, ``UploadId`` and so on) and returns a dictionary of response
    fields. Failures are raised as :class:`AwsError`.

    ``get_object`` returns ``{"Body": <readable>, "ContentLength": int}``;
    ``list_parts`` returns ``{"Parts": [{"Size", "ETag", "PartNumber"}],
    "IsTruncated": bool, "NextPartNumberMarker": int}``;
    ``create_multipart_upload`` returns ``{"UploadId": str}``;
    ``upload_part`` returns ``{"ETag": str}``;
    ``delete_objects`` returns ``{"Errors": [{"Code", "Key", "Message"}]}``.
    """

    def put_object(self, **kwargs: Any) -> dict[str, Any] | None: ...

    def list_parts(self, **kwargs: Any) -> dict[str, Any]: ...

    def upload_part(self, **kwargs: Any) -> dict[str, Any] | None: ...

    def get_object(self, **kwargs: Any) -> dict[str, Any]: ...

    def create_multipart_upload(self, **kwargs: Any) -> dict[str, Any]: ...

    def abort_multipart_upload(self, **kwargs: Any) -> dict[str, Any] | None: ...

    def delete_object(self, **kwargs: Any) -> dict[str, Any] | None: ...

    def delete_objects(self, **kwargs: Any) -> dict[str, Any] | None: ...

    def complete_multipart_upload(self, **kwargs: Any) -> dict[str, Any] | None: ...

    def upload_part_copy(self, **kwargs: Any) -> dict[str, Any] | None: ...


def is_aws_error(err: BaseException | None, code: str) -> bool:
    """Tell whether ``err`` is an :class:`AwsError` with the given code."""
    return isinstance(err, AwsError) and err.code == code